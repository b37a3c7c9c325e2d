"""Command-line conventions of each supported coding assistant."""

from __future__ import annotations

from typing import List

from .base import ExecutorAdapter, ExecutorConfig, ExecutorTool


class OpencodeExecutor(ExecutorAdapter):
    tool = ExecutorTool.OPENCODE
    binary = "opencode"
    display_name = "Opencode"

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        args: List[str] = []
        if config.model:
            args.extend(["-m", config.model])
        if config.continue_last_session:
            args.append("-c")
        elif config.session_id:
            args.extend(["-s", config.session_id])
        args.extend(["run", message])
        return args


class ClaudeCodeExecutor(ExecutorAdapter):
    tool = ExecutorTool.CLAUDE
    binary = "claude"
    display_name = "Claude Code"

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        args: List[str] = []
        if config.model:
            args.extend(["--model", config.model])
        if config.continue_last_session:
            args.append("-c")
        elif config.session_id:
            args.extend(["-r", config.session_id])
        args.extend(["--permission-mode", "acceptEdits"])
        args.append(message)
        return args


class GeminiExecutor(ExecutorAdapter):
    tool = ExecutorTool.GEMINI
    binary = "gemini"
    display_name = "Gemini CLI"

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        args: List[str] = []
        if config.model:
            args.extend(["-m", config.model])
        if config.continue_last_session:
            args.extend(["-r", "latest"])
        elif config.session_id:
            args.extend(["-r", config.session_id])
        args.append("--yolo")
        args.append(message)
        return args


class CodexExecutor(ExecutorAdapter):
    tool = ExecutorTool.CODEX
    binary = "codex"
    display_name = "Codex CLI"

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        args: List[str] = []
        # codex takes the model as a config override ahead of the subcommand
        if config.model:
            args.extend(["-c", f'model="{config.model}"'])
        if config.continue_last_session:
            args.extend(["exec", "resume", "--last"])
        elif config.session_id:
            args.extend(["exec", "resume", config.session_id])
        else:
            args.append("exec")
        args.extend(["--sandbox", "workspace-write"])
        args.append(message)
        return args


class KiloExecutor(ExecutorAdapter):
    tool = ExecutorTool.KILO
    binary = "kilocode"
    display_name = "Kilo Code"

    def build_args(self, message: str, config: ExecutorConfig) -> List[str]:
        args: List[str] = []
        if config.model:
            args.extend(["-mo", config.model])
        if config.continue_last_session:
            args.append("-c")
        elif config.session_id:
            args.extend(["-s", config.session_id])
        args.extend(["--auto", "--yolo"])
        args.append(message)
        return args


__all__ = [
    "ClaudeCodeExecutor",
    "CodexExecutor",
    "GeminiExecutor",
    "KiloExecutor",
    "OpencodeExecutor",
]
