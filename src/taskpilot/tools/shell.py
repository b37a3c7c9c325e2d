"""Thin subprocess wrapper used for verification commands and git plumbing."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

__all__ = ["Shell", "ShellCommandError", "ShellResult"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ShellResult:
    """Captured output of a finished command."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ShellCommandError(RuntimeError):
    """Raised when a checked command exits with a nonzero status."""

    def __init__(self, result: ShellResult) -> None:
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
        super().__init__(f"Command failed: {result.command}: {detail}")

    @property
    def command(self) -> str:
        return self.result.command

    @property
    def stdout(self) -> str:
        return self.result.stdout

    @property
    def stderr(self) -> str:
        return self.result.stderr


class Shell:
    """Run commands in an explicit working directory and capture their output.

    Strings are handed to the system shell so verification commands such as
    ``npm run build && npm test`` behave as typed. Sequences are executed
    directly, which is how git plumbing is invoked.
    """

    def run(
        self,
        command: str | Sequence[str],
        *,
        cwd: Path | str,
        check: bool = True,
    ) -> ShellResult:
        use_shell = isinstance(command, str)
        display = command if isinstance(command, str) else " ".join(command)
        LOGGER.debug("$ %s (cwd=%s)", display, cwd)
        try:
            process = subprocess.run(  # noqa: S602,S603 - commands come from task configuration
                command if use_shell else list(command),
                cwd=Path(cwd),
                shell=use_shell,
                capture_output=True,
                text=False,
                check=False,
            )
        except OSError as error:
            result = ShellResult(command=display, exit_code=127, stdout="", stderr=str(error))
            if check:
                raise ShellCommandError(result) from error
            return result

        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = ShellResult(command=display, exit_code=process.returncode, stdout=stdout, stderr=stderr)
        if check and not result.ok:
            raise ShellCommandError(result)
        return result
