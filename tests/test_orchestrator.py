from __future__ import annotations

import json

import pytest

from taskpilot.execution import ModelAttemptConfig, TaskExecutionConfig
from taskpilot.executors import ExecutorConfig, ExecutorError, ExecutorTool
from taskpilot.memory.schema import TaskStatus
from taskpilot.memory.store import TaskNotFoundError
from taskpilot.orchestrator import Orchestrator
from taskpilot.phases.plan import plan_file_name

from conftest import ExecutorRecorder, FakeShell, StaticAgent

GIT_WITH_DIFF = {
    "git rev-parse HEAD": (0, "abc123\n", ""),
    "git diff HEAD": (0, "diff --git a/app.py b/app.py\n+print('hi')\n", ""),
}


def _orchestrator(store, tmp_path, *, shell=None, recorder=None, agent=None, **kwargs) -> Orchestrator:
    return Orchestrator(
        repository=store,
        repo_root=tmp_path,
        shell=shell or FakeShell(),
        executor_factory=recorder or ExecutorRecorder(),
        agent=agent,
        **kwargs,
    )


def _verdict(approved: bool, feedback: str) -> str:
    return json.dumps({"approved": approved, "feedback": feedback})


# ------------------------------------------------------------- single attempt
def test_single_attempt_completes_task(tmp_path, store, add_task) -> None:
    add_task("1", "Build widget", description="A widget")
    recorder = ExecutorRecorder()
    shell = FakeShell()
    orchestrator = _orchestrator(store, tmp_path, shell=shell, recorder=recorder)

    result = orchestrator.execute_task("1", TaskExecutionConfig(verification_commands=("make test",)))

    assert result.success
    assert [attempt.attempt_number for attempt in result.attempts] == [1]
    assert result.attempts[0].verification_results[0].command == "make test"
    assert store.require_task("1").status == TaskStatus.COMPLETED
    assert "# Task: Build widget" in recorder.calls[0].message
    assert recorder.calls[0].cwd == tmp_path
    assert shell.calls == ["make test"]


def test_unknown_task_raises(tmp_path, store) -> None:
    with pytest.raises(TaskNotFoundError):
        _orchestrator(store, tmp_path).execute_task("nope", TaskExecutionConfig())


def test_executor_failure_without_retry_is_raised_and_resets_status(tmp_path, store, add_task) -> None:
    add_task("1")
    recorder = ExecutorRecorder(actions=[ExecutorError("exit 2", exit_code=2)])
    with pytest.raises(ExecutorError):
        _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", TaskExecutionConfig())
    assert store.require_task("1").status == TaskStatus.TODO


def test_unexpected_error_never_leaves_task_in_progress(tmp_path, store, add_task) -> None:
    add_task("1")
    recorder = ExecutorRecorder(actions=[RuntimeError("adapter bug")])
    with pytest.raises(RuntimeError):
        _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", TaskExecutionConfig())
    assert store.require_task("1").status == TaskStatus.TODO


def test_custom_message_replaces_prompt(tmp_path, store, add_task) -> None:
    add_task("1")
    add_task("1.1", parent_id="1")
    recorder = ExecutorRecorder()
    _orchestrator(store, tmp_path, recorder=recorder).execute_task(
        "1", TaskExecutionConfig(custom_message="just fix the tests")
    )
    assert [call.message for call in recorder.calls] == ["just fix the tests"]


# ------------------------------------------------------------------- dry run
def test_dry_run_touches_nothing(tmp_path, store, add_task) -> None:
    add_task("1")
    shell = FakeShell()
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(
        verification_commands=("make test",),
        enable_retry=True,
        enable_plan_phase=True,
        enable_review_phase=True,
        auto_commit=True,
        dry_run=True,
    )

    result = _orchestrator(store, tmp_path, shell=shell, recorder=recorder).execute_task("1", config)

    assert result.success
    assert shell.calls == []
    assert all(call.dry_run for call in recorder.calls)
    assert len(recorder.calls) == 2
    assert store.require_task("1").status == TaskStatus.TODO
    assert result.review_feedback == "Dry run - review skipped"


# --------------------------------------------------------------------- retry
def test_retry_escalates_models_and_feeds_back_errors(tmp_path, store, add_task) -> None:
    add_task("1")
    shell = FakeShell({"pytest": [(1, "", "AssertionError: expected 2"), (0, "ok", "")]})
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(
        verification_commands=("pytest",),
        enable_retry=True,
        max_retries=3,
        try_models=(
            ModelAttemptConfig(model="small"),
            ModelAttemptConfig(executor=ExecutorTool.CLAUDE, model="large"),
        ),
    )

    result = _orchestrator(store, tmp_path, shell=shell, recorder=recorder).execute_task("1", config)

    assert result.success
    assert [(a.attempt_number, a.success) for a in result.attempts] == [(1, False), (2, True)]
    assert [(call.tool, call.config.model) for call in recorder.calls] == [
        (ExecutorTool.OPENCODE, "small"),
        (ExecutorTool.CLAUDE, "large"),
    ]
    assert recorder.calls[0].config.continue_last_session is False
    assert recorder.calls[1].config.continue_last_session is True

    retry_message = recorder.calls[1].message
    assert "# RETRY ATTEMPT 2/3" in retry_message
    assert 'Verification command "pytest" failed:\nAssertionError: expected 2' in retry_message
    assert "You are claude using the large model" in retry_message
    assert store.require_task("1").status == TaskStatus.COMPLETED


def test_retry_exhaustion_reports_last_error(tmp_path, store, add_task) -> None:
    add_task("1")
    shell = FakeShell({"pytest": (1, "", "still broken")})
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(verification_commands=("pytest",), enable_retry=True, max_retries=2)

    result = _orchestrator(store, tmp_path, shell=shell, recorder=recorder).execute_task("1", config)

    assert not result.success
    assert len(result.attempts) == 2
    assert result.error == 'Verification command "pytest" failed:\nstill broken'
    assert store.require_task("1").status == TaskStatus.TODO


def test_retry_recovers_from_executor_errors(tmp_path, store, add_task) -> None:
    add_task("1")
    recorder = ExecutorRecorder(actions=[ExecutorError("crashed", exit_code=1), None])
    config = TaskExecutionConfig(enable_retry=True, max_retries=3)

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", config)

    assert result.success
    assert [(a.attempt_number, a.success, a.error) for a in result.attempts] == [
        (1, False, "crashed"),
        (2, True, None),
    ]
    assert "crashed" in recorder.calls[1].message


def test_retry_clamps_max_retries_to_one(tmp_path, store, add_task) -> None:
    add_task("1")
    shell = FakeShell({"pytest": (1, "", "nope")})
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(verification_commands=("pytest",), enable_retry=True, max_retries=0)

    result = _orchestrator(store, tmp_path, shell=shell, recorder=recorder).execute_task("1", config)

    assert not result.success
    assert len(recorder.calls) == 1


# -------------------------------------------------------------------- review
def test_review_rejection_triggers_retry(tmp_path, store, add_task) -> None:
    add_task("1")
    agent = StaticAgent([_verdict(False, "missing tests"), _verdict(True, "looks good")])
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(
        enable_retry=True,
        enable_review_phase=True,
        review_model="claude:sonnet",
    )

    orchestrator = _orchestrator(store, tmp_path, shell=FakeShell(GIT_WITH_DIFF), recorder=recorder, agent=agent)
    result = orchestrator.execute_task("1", config)

    assert result.success
    assert result.review_feedback == "looks good"
    first, second = result.attempts
    assert not first.success
    assert first.error == "AI Review Failed:\nmissing tests"
    assert first.review_feedback == "missing tests"
    assert second.success and second.review_feedback == "looks good"
    assert "missing tests" in recorder.calls[1].message
    assert agent.payloads[0]["model"] == "sonnet"
    assert "+print('hi')" in agent.payloads[0]["input"][-1]["content"][0]["text"]
    assert store.require_task("1").status == TaskStatus.COMPLETED


def test_review_only_gets_a_single_attempt(tmp_path, store, add_task) -> None:
    add_task("1")
    agent = StaticAgent([_verdict(False, "wrong approach")])
    config = TaskExecutionConfig(enable_review_phase=True)

    result = _orchestrator(store, tmp_path, shell=FakeShell(GIT_WITH_DIFF), agent=agent).execute_task("1", config)

    assert not result.success
    assert len(result.attempts) == 1
    assert store.require_task("1").status == TaskStatus.TODO


def test_unparseable_review_counts_as_approval(tmp_path, store, add_task) -> None:
    add_task("1")
    agent = StaticAgent(["I think it is fine"])
    config = TaskExecutionConfig(enable_review_phase=True)

    result = _orchestrator(store, tmp_path, shell=FakeShell(GIT_WITH_DIFF), agent=agent).execute_task("1", config)

    assert result.success
    assert result.review_feedback == "Could not parse review response, assuming approval"


def test_empty_diff_skips_review_model(tmp_path, store, add_task) -> None:
    add_task("1")
    agent = StaticAgent([_verdict(False, "should not be asked")])
    config = TaskExecutionConfig(enable_review_phase=True)

    result = _orchestrator(store, tmp_path, agent=agent).execute_task("1", config)

    assert result.success
    assert result.review_feedback == "No changes to review"
    assert agent.payloads == []


# ------------------------------------------------------------------ planning
def test_plan_is_prepended_to_execution_prompt(tmp_path, store, add_task) -> None:
    add_task("1")

    def write_plan(call) -> None:
        (call.cwd / plan_file_name("1")).write_text("Step A then B", encoding="utf-8")

    recorder = ExecutorRecorder(actions=[write_plan, None])
    config = TaskExecutionConfig(enable_plan_phase=True, plan_tool=ExecutorTool.GEMINI)

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", config)

    assert result.success
    assert [call.tool for call in recorder.calls] == [ExecutorTool.GEMINI, ExecutorTool.OPENCODE]
    assert "# Implementation Plan\nStep A then B\n\nPlease follow this plan" in recorder.calls[1].message


def test_stored_plan_is_used_without_plan_phase(tmp_path, store, add_task) -> None:
    add_task("1")
    store.save_task_plan("1", "Stored steps")
    recorder = ExecutorRecorder()
    _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", TaskExecutionConfig())
    assert "# Implementation Plan\nStored steps" in recorder.calls[0].message


# ------------------------------------------------------------------ subtasks
def test_subtasks_run_in_order_and_complete_parent(tmp_path, store, add_task) -> None:
    add_task("1")
    add_task("1.1", parent_id="1")
    add_task("1.2", parent_id="1")
    add_task("1.3", parent_id="1", status=TaskStatus.COMPLETED)
    recorder = ExecutorRecorder()

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", TaskExecutionConfig())

    assert result.success
    assert result.attempts == []
    assert [child.task_id for child in result.subtask_results] == ["1.1", "1.2"]
    assert len(recorder.calls) == 2
    assert store.require_task("1").status == TaskStatus.COMPLETED


def test_first_subtask_failure_stops_the_rest(tmp_path, store, add_task) -> None:
    add_task("1")
    add_task("1.1", parent_id="1")
    add_task("1.2", parent_id="1")
    add_task("1.3", parent_id="1")
    recorder = ExecutorRecorder(actions=[None, ExecutorError("agent crashed", exit_code=1)])

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", TaskExecutionConfig())

    assert not result.success
    assert [(child.task_id, child.success) for child in result.subtask_results] == [("1.1", True), ("1.2", False)]
    assert result.error == "agent crashed"
    assert len(recorder.calls) == 2
    assert store.require_task("1").status == TaskStatus.TODO
    assert store.require_task("1.2").status == TaskStatus.TODO
    assert store.require_task("1.3").status == TaskStatus.TODO


def test_subtask_depth_is_bounded(tmp_path, store, add_task) -> None:
    add_task("1")
    add_task("1.1", parent_id="1")
    add_task("1.1.1", parent_id="1.1")
    recorder = ExecutorRecorder()

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task(
        "1", TaskExecutionConfig(max_subtask_depth=1)
    )

    assert not result.success
    nested = result.subtask_results[0]
    assert nested.subtask_results[0].error == "Maximum subtask depth 1 exceeded at 1.1.1"
    assert recorder.calls == []


def test_disabled_subtasks_execute_parent_directly(tmp_path, store, add_task) -> None:
    add_task("1", "Parent")
    add_task("1.1", parent_id="1")
    recorder = ExecutorRecorder()

    result = _orchestrator(store, tmp_path, recorder=recorder).execute_task(
        "1", TaskExecutionConfig(execute_subtasks=False)
    )

    assert result.success
    assert len(recorder.calls) == 1
    assert "# Task: Parent" in recorder.calls[0].message


# ----------------------------------------------------------------- auxiliary
class _Recording:
    def __init__(self) -> None:
        self.events = []

    def on_start(self, task_id, tool):
        self.events.append(("start", task_id, tool))

    def on_end(self, task_id, success):
        self.events.append(("end", task_id, success))

    def on_error(self, task_id, error):
        self.events.append(("error", task_id, str(error)))


class _Exploding:
    def on_start(self, task_id, tool):
        raise ValueError("listener bug")

    on_end = on_start
    on_error = on_start


def test_listener_failures_are_isolated(tmp_path, store, add_task) -> None:
    add_task("1")
    recording = _Recording()
    orchestrator = _orchestrator(store, tmp_path, listeners=[_Exploding(), recording])

    result = orchestrator.execute_task("1", TaskExecutionConfig())

    assert result.success
    assert recording.events == [("start", "1", "opencode"), ("end", "1", True)]


def test_result_artifact_is_written(tmp_path, store, add_task) -> None:
    add_task("1")
    artifacts = tmp_path / "logs"
    _orchestrator(store, tmp_path, artifacts_root=artifacts).execute_task("1", TaskExecutionConfig())

    written = list((artifacts / "executions").glob("execution__1__*.json"))
    assert len(written) == 1
    payload = json.loads(written[0].read_text(encoding="utf-8"))
    assert payload["kind"] == "execution"
    assert payload["result"]["success"] is True


def test_executor_config_session_options_reach_adapter(tmp_path, store, add_task) -> None:
    add_task("1")
    recorder = ExecutorRecorder()
    config = TaskExecutionConfig(executor_config=ExecutorConfig(model="m", session_id="sess-9"))
    _orchestrator(store, tmp_path, recorder=recorder).execute_task("1", config)
    assert recorder.calls[0].config == ExecutorConfig(model="m", session_id="sess-9")
