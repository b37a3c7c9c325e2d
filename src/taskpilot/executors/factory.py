"""Registry that maps executor names to their adapter classes."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple

from .adapters import ClaudeCodeExecutor, CodexExecutor, GeminiExecutor, KiloExecutor, OpencodeExecutor
from .base import ExecutorAdapter, ExecutorConfig, ExecutorTool

__all__ = [
    "ExecutorFactory",
    "create_executor",
    "normalize_tool",
    "parse_executor_model",
]

_REGISTRY: Dict[ExecutorTool, type[ExecutorAdapter]] = {
    ExecutorTool.OPENCODE: OpencodeExecutor,
    ExecutorTool.CLAUDE: ClaudeCodeExecutor,
    ExecutorTool.GEMINI: GeminiExecutor,
    ExecutorTool.CODEX: CodexExecutor,
    ExecutorTool.KILO: KiloExecutor,
}


class ExecutorFactory(Protocol):
    def __call__(
        self,
        tool: ExecutorTool | str,
        config: ExecutorConfig | None = None,
        cwd: Path | str | None = None,
    ) -> ExecutorAdapter: ...


def normalize_tool(tool: ExecutorTool | str) -> ExecutorTool:
    """Resolve ``tool`` into an :class:`ExecutorTool` member."""
    if isinstance(tool, ExecutorTool):
        return tool
    try:
        return ExecutorTool(str(tool).strip().lower())
    except ValueError as error:
        valid = ", ".join(item.value for item in ExecutorTool)
        raise ValueError(f"Unknown executor '{tool}'. Expected one of: {valid}") from error


def create_executor(
    tool: ExecutorTool | str,
    config: ExecutorConfig | None = None,
    cwd: Path | str | None = None,
) -> ExecutorAdapter:
    """Instantiate the adapter registered for ``tool``."""
    adapter_cls = _REGISTRY[normalize_tool(tool)]
    return adapter_cls(config, cwd=cwd)


def parse_executor_model(value: str) -> Tuple[Optional[ExecutorTool], str]:
    """Split ``executor:model`` into its parts.

    A prefix that is not a known executor is treated as part of the model
    name, so ``"model:with:colons"`` yields ``(None, "model:with:colons")``.
    """

    text = value.strip()
    prefix, sep, rest = text.partition(":")
    if not sep:
        return None, text
    try:
        return ExecutorTool(prefix.strip().lower()), rest.strip()
    except ValueError:
        return None, text
