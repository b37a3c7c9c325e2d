from __future__ import annotations

import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from taskpilot.executors import ExecutorAdapter, ExecutorConfig, ExecutorTool, normalize_tool  # noqa: E402
from taskpilot.memory.schema import Task  # noqa: E402
from taskpilot.memory.store import TaskStore  # noqa: E402
from taskpilot.models.llm_client import LLMClient  # noqa: E402
from taskpilot.tools.shell import ShellResult  # noqa: E402


# ----------------------------------------------------------------------- shell
class FakeShell:
    """Records commands and replays scripted results.

    ``script`` maps a command string (argv joined by spaces) to either one
    ``(exit_code, stdout, stderr)`` triple or a list consumed in order; the
    last entry of a list repeats. Unscripted commands succeed silently.
    """

    def __init__(self, script: Optional[Dict[str, Any]] = None) -> None:
        self.script: Dict[str, Any] = dict(script or {})
        self.calls: List[str] = []

    def run(self, command: str | Sequence[str], *, cwd: Path | str, check: bool = True) -> ShellResult:
        display = command if isinstance(command, str) else " ".join(command)
        self.calls.append(display)
        entry = self.script.get(display, (0, "", ""))
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        exit_code, stdout, stderr = entry
        return ShellResult(command=display, exit_code=exit_code, stdout=stdout, stderr=stderr)


# ------------------------------------------------------------------- executors
@dataclass
class ExecutorCall:
    tool: ExecutorTool
    message: str
    dry_run: bool
    config: ExecutorConfig
    cwd: Optional[Path]


@dataclass
class ExecutorRecorder:
    """Executor factory stand-in; ``actions`` run per call, in order.

    An action is ``None`` (succeed), an exception instance (raised) or a
    callable receiving the :class:`ExecutorCall`.
    """

    actions: List[Any] = field(default_factory=list)
    calls: List[ExecutorCall] = field(default_factory=list)

    def __call__(self, tool, config=None, cwd=None) -> ExecutorAdapter:
        recorder = self
        resolved = normalize_tool(tool)

        class _Recorded(ExecutorAdapter):
            binary = resolved.value
            display_name = resolved.value

            def execute(self, message: str, dry_run: bool = False, config: ExecutorConfig | None = None) -> None:
                call = ExecutorCall(
                    tool=resolved,
                    message=message,
                    dry_run=dry_run,
                    config=self.resolve_config(config),
                    cwd=self.cwd,
                )
                recorder.calls.append(call)
                action = recorder.actions.pop(0) if recorder.actions else None
                if isinstance(action, BaseException):
                    raise action
                if callable(action):
                    action(call)

        _Recorded.tool = resolved
        return _Recorded(config, cwd=cwd)


# ----------------------------------------------------------------------- agent
class StaticAgent(LLMClient):
    """Completion client that replays canned answers."""

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        super().__init__("static", max_attempts=1, retry_delay=0.0)
        self.responses = list(responses)
        self.payloads: List[Dict[str, Any]] = []
        self.providers: List[Optional[str]] = []

    def _raw_invoke(self, payload: Dict[str, Any], provider: Optional[str] = None) -> str:
        self.payloads.append(payload)
        self.providers.append(provider)
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, BaseException):
            raise response
        return response


# -------------------------------------------------------------------- fixtures
@pytest.fixture()
def store(tmp_path: Path):
    with TaskStore(tmp_path / "data" / "tasks.sqlite") as task_store:
        yield task_store


@pytest.fixture()
def add_task(store: TaskStore) -> Callable[..., Task]:
    def _add(task_id: str, title: str = "", **fields: Any) -> Task:
        parent_id = fields.pop("parent_id", None)
        task = Task(
            id=task_id,
            title=title or f"Task {task_id}",
            parent_id=parent_id,
            position=store.next_position(parent_id),
            **fields,
        )
        store.save_task(task)
        return task

    return _add


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Create a git repository with one committed file."""

    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo_root = tmp_path / "repo"
    repo_root.mkdir()

    def run_git(*cmd: str) -> None:
        subprocess.run(
            ["git", *cmd],
            cwd=repo_root,
            check=True,
            capture_output=True,
            text=True,
        )

    run_git("init")
    run_git("config", "user.email", "pilot@example.com")
    run_git("config", "user.name", "Task Pilot")
    run_git("config", "commit.gpgsign", "false")

    (repo_root / "calc.py").write_text("def add(a, b):\n    return a + b\n", encoding="utf-8")
    run_git("add", ".")
    run_git("commit", "-m", "Initial commit")
    return repo_root
