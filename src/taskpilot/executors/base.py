"""Shared contract for external coding-agent processes."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import ClassVar, List, Optional

__all__ = [
    "ExecutorAdapter",
    "ExecutorConfig",
    "ExecutorError",
    "ExecutorTool",
]

LOGGER = logging.getLogger(__name__)


class ExecutorTool(str, Enum):
    """Supported external coding assistants."""

    OPENCODE = "opencode"
    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"
    KILO = "kilo"


class ExecutorError(RuntimeError):
    """Raised when the agent process cannot be launched or exits nonzero."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@dataclass(frozen=True, slots=True)
class ExecutorConfig:
    """Per-invocation options understood by every adapter."""

    model: Optional[str] = None
    session_id: Optional[str] = None
    continue_last_session: bool = False

    def merged(self, override: "ExecutorConfig | None") -> "ExecutorConfig":
        """Overlay ``override`` on top of this config; set values win."""
        if override is None:
            return self
        return ExecutorConfig(
            model=override.model if override.model is not None else self.model,
            session_id=override.session_id if override.session_id is not None else self.session_id,
            continue_last_session=override.continue_last_session or self.continue_last_session,
        )


class ExecutorAdapter:
    """Spawn a coding assistant that takes over the terminal until it exits.

    Subclasses describe their command line via :meth:`build_args`; this base
    class merges configuration, handles the dry-run preview and waits for the
    child process. Nothing is captured: the agent inherits stdin, stdout and
    stderr.
    """

    tool: ClassVar[ExecutorTool]
    binary: ClassVar[str]
    display_name: ClassVar[str]
    supports_session_resumption: ClassVar[bool] = True

    def __init__(self, config: ExecutorConfig | None = None, *, cwd: Path | str | None = None) -> None:
        self.config = config or ExecutorConfig()
        self.cwd = Path(cwd) if cwd is not None else None

    @property
    def name(self) -> str:
        return self.tool.value

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        raise NotImplementedError("Subclasses must implement build_args().")

    def resolve_config(self, config: ExecutorConfig | None) -> ExecutorConfig:
        final = self.config.merged(config)
        if not self.supports_session_resumption and (final.continue_last_session or final.session_id):
            LOGGER.warning(
                "%s cannot resume sessions; starting a fresh session instead.",
                self.display_name,
            )
            final = replace(final, continue_last_session=False, session_id=None)
        return final

    def command(self, message: str, config: ExecutorConfig | None = None) -> List[str]:
        """Return the full argv for ``message`` without running it."""
        return [self.binary, *self.build_args(message, self.resolve_config(config))]

    def execute(self, message: str, dry_run: bool = False, config: ExecutorConfig | None = None) -> None:
        final = self.resolve_config(config)
        argv = [self.binary, *self.build_args(message, final)]

        if final.model:
            LOGGER.info("Using model: %s", final.model)
        if final.continue_last_session:
            LOGGER.info("Continuing last session")
        elif final.session_id:
            LOGGER.info("Resuming session: %s", final.session_id)

        if dry_run:
            LOGGER.info("Using executor: %s", self.name)
            LOGGER.info("%s", shlex.join(argv))
            return

        try:
            process = subprocess.run(argv, cwd=self.cwd, check=False)  # noqa: S603 - argv built from known flags
        except OSError as error:
            LOGGER.error("Failed to launch %s: %s", self.display_name, error)
            raise ExecutorError(f"Failed to launch {self.display_name}: {error}") from error

        if process.returncode != 0:
            message_text = f"{self.display_name} exited with code {process.returncode}"
            LOGGER.error("%s", message_text)
            raise ExecutorError(message_text, exit_code=process.returncode)
        LOGGER.info("%s execution completed successfully", self.display_name)
