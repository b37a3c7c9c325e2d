"""Adapters that hand a prompt to an external coding assistant."""

from .adapters import ClaudeCodeExecutor, CodexExecutor, GeminiExecutor, KiloExecutor, OpencodeExecutor
from .base import ExecutorAdapter, ExecutorConfig, ExecutorError, ExecutorTool
from .factory import ExecutorFactory, create_executor, normalize_tool, parse_executor_model

__all__ = [
    "ClaudeCodeExecutor",
    "CodexExecutor",
    "ExecutorAdapter",
    "ExecutorConfig",
    "ExecutorError",
    "ExecutorFactory",
    "ExecutorTool",
    "GeminiExecutor",
    "KiloExecutor",
    "OpencodeExecutor",
    "create_executor",
    "normalize_tool",
    "parse_executor_model",
]
