from __future__ import annotations

import subprocess
from pathlib import Path

from taskpilot.memory.schema import Task
from taskpilot.models.llm_client import LLMTransportError
from taskpilot.tools.git_state import CommitInfo, GitState, GitStateTracker, fallback_commit_message

from conftest import FakeShell, StaticAgent


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True).stdout


def test_fallback_commit_message_truncates() -> None:
    task = Task(id="4.2", title="Add login form\nwith extra detail")
    assert fallback_commit_message(task) == "feat: complete task 4.2 - Add login form"

    long_task = Task(id="7", title="x" * 200)
    assert len(fallback_commit_message(long_task)) == 72


def test_capture_outside_repository_is_unavailable(tmp_path) -> None:
    shell = FakeShell({"git rev-parse HEAD": (128, "", "fatal: not a git repository")})
    tracker = GitStateTracker(tmp_path, shell=shell)

    assert tracker.capture_git_state() == GitState.unavailable()
    assert tracker.has_new_commits_since("abc") is False
    assert tracker.has_new_commits_since("") is False


def test_capture_reports_dirty_tree(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    clean = tracker.capture_git_state()
    assert clean.available and clean.before_head and not clean.has_uncommitted_changes

    (git_repo / "calc.py").write_text("def add(a, b):\n    return b + a\n", encoding="utf-8")
    assert tracker.capture_git_state().has_uncommitted_changes


def test_commit_info_from_agent_commit(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    before = tracker.capture_git_state().before_head

    (git_repo / "calc.py").write_text("def add(a, b):\n    return int(a) + int(b)\n", encoding="utf-8")
    _git(git_repo, "commit", "-am", "fix: coerce operands")
    after = tracker.current_head()

    assert tracker.has_new_commits_since(before)
    info = tracker.extract_commit_info(Task(id="1", title="Calc"), GitState(before_head=before, after_head=after))
    assert info == CommitInfo(message="fix: coerce operands", files=["calc.py"])


def test_commit_info_ignores_pipes_in_commit_body(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    before = tracker.current_head()

    (git_repo / "lib").mkdir()
    (git_repo / "lib" / "ops.py").write_text("def mul(a, b):\n    return a * b\n", encoding="utf-8")
    (git_repo / "calc.py").write_text("def add(a, b):\n    return a + b + 0\n", encoding="utf-8")
    _git(git_repo, "add", ".")
    _git(git_repo, "commit", "-m", "feat: add ops", "-m", "| col | value |\nfoo | bar")

    state = GitState(before_head=before, after_head=tracker.current_head())
    info = tracker.extract_commit_info(Task(id="1", title="Ops"), state)

    assert info == CommitInfo(message="feat: add ops", files=["calc.py", "lib/ops.py"])


def test_uncommitted_changes_get_synthesized_message(git_repo) -> None:
    agent = StaticAgent(['{"message": "refactor: swap operands\\n\\nbody text"}'])
    tracker = GitStateTracker(git_repo, agent=agent)
    head = tracker.current_head()
    (git_repo / "calc.py").write_text("def add(a, b):\n    return b + a\n", encoding="utf-8")

    state = GitState(before_head=head, after_head=head, has_uncommitted_changes=True)
    info = tracker.extract_commit_info(Task(id="2", title="Swap"), state)

    assert info.message == "refactor: swap operands"
    assert info.files == ["calc.py"]
    prompt = agent.payloads[0]["input"][-1]["content"][0]["text"]
    assert "return b + a" in prompt


def test_synthesis_failure_uses_fallback(git_repo) -> None:
    tracker = GitStateTracker(git_repo, agent=StaticAgent([LLMTransportError("down")]))
    task = Task(id="3", title="Broken agent")
    assert tracker.synthesize_commit_message(task, "diff") == "feat: complete task 3 - Broken agent"

    tracker.agent = StaticAgent(["not json at all"])
    assert tracker.synthesize_commit_message(task, "diff") == "feat: complete task 3 - Broken agent"


def test_auto_commit_commits_and_reports_nothing_to_commit(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    (git_repo / "notes.md").write_text("hello\n", encoding="utf-8")

    assert tracker.auto_commit(CommitInfo(message="docs: add notes", files=["notes.md"])) is True
    assert _git(git_repo, "log", "-1", "--format=%s").strip() == "docs: add notes"
    assert tracker.auto_commit(CommitInfo(message="chore: nothing")) is False


def test_auto_commit_swallows_git_errors(tmp_path) -> None:
    shell = FakeShell({"git add .": (128, "", "fatal: not a git repository")})
    tracker = GitStateTracker(tmp_path, shell=shell)
    assert tracker.auto_commit(CommitInfo(message="feat: x")) is False
    assert not any(call.startswith("git commit") for call in shell.calls)


def test_collect_review_diff_has_committed_and_uncommitted_sections(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    before = tracker.current_head()

    (git_repo / "calc.py").write_text("def add(a, b):\n    return a + b + 0\n", encoding="utf-8")
    _git(git_repo, "commit", "-am", "tweak")
    (git_repo / "calc.py").write_text("def add(a, b):\n    return a + b + 1\n", encoding="utf-8")

    diff = tracker.collect_review_diff(before)
    committed, uncommitted = diff.split("\n\n# Uncommitted changes:\n")
    assert committed.startswith("# Committed changes during execution:\n")
    assert "+    return a + b + 0" in committed
    assert "+    return a + b + 1" in uncommitted


def test_collect_review_diff_empty_on_clean_tree(git_repo) -> None:
    tracker = GitStateTracker(git_repo)
    assert tracker.collect_review_diff(tracker.current_head()) == ""
