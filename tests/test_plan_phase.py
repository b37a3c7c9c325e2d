from __future__ import annotations

from taskpilot.executors import ExecutorError, ExecutorTool
from taskpilot.memory.schema import Task
from taskpilot.phases.plan import PlanningOptions, PlanningStage, plan_file_name, resolve_plan_executor

from conftest import ExecutorRecorder


def _write_plan(text: str):
    def _action(call) -> None:
        (call.cwd / plan_file_name("5")).write_text(text, encoding="utf-8")

    return _action


def test_resolve_plan_executor() -> None:
    assert resolve_plan_executor(ExecutorTool.OPENCODE, None, None) == (ExecutorTool.OPENCODE, None)
    assert resolve_plan_executor(ExecutorTool.OPENCODE, None, "claude:opus") == (ExecutorTool.CLAUDE, "opus")
    assert resolve_plan_executor(ExecutorTool.OPENCODE, ExecutorTool.GEMINI, "claude:opus") == (
        ExecutorTool.GEMINI,
        "opus",
    )


def test_plan_is_read_and_saved(tmp_path, store, add_task) -> None:
    task = add_task("5", "Plan me")
    recorder = ExecutorRecorder(actions=[_write_plan("1. do the thing")])
    stage = PlanningStage(repo_root=tmp_path, executor_factory=recorder, repository=store)

    result = stage.run(task, ExecutorTool.OPENCODE, PlanningOptions(plan_model="claude:opus"))

    assert result.success
    assert result.plan_content == "1. do the thing"
    assert result.plan_file == "task-5-plan.md"
    assert store.get_task_plan("5").plan == "1. do the thing"

    call = recorder.calls[0]
    assert call.tool is ExecutorTool.CLAUDE
    assert call.config.model == "opus"
    assert call.config.continue_last_session is False
    assert 'Please create the "task-5-plan.md" file now.' in call.message


def test_feedback_loop_refines_until_approved(tmp_path, store, add_task) -> None:
    task = add_task("5")
    recorder = ExecutorRecorder(actions=[_write_plan("draft"), _write_plan("final")])
    answers = ["add a rollback step", None]
    reviewed = []

    def review(plan_file: str):
        with open(plan_file, encoding="utf-8") as handle:
            reviewed.append((plan_file, handle.read()))
        return answers.pop(0)

    stage = PlanningStage(repo_root=tmp_path, executor_factory=recorder, repository=store)
    result = stage.run(task, ExecutorTool.OPENCODE, PlanningOptions(review_plan=True, on_plan_review=review))

    assert result.plan_content == "final"
    plan_path = str(tmp_path / "task-5-plan.md")
    assert reviewed == [(plan_path, "draft"), (plan_path, "final")]
    assert len(recorder.calls) == 2
    assert '"add a rollback step"' in recorder.calls[1].message


def test_review_without_callback_accepts_plan(tmp_path, caplog) -> None:
    recorder = ExecutorRecorder(actions=[_write_plan("only")])
    stage = PlanningStage(repo_root=tmp_path, executor_factory=recorder)
    with caplog.at_level("WARNING"):
        result = stage.run(Task(id="5", title="t"), ExecutorTool.OPENCODE, PlanningOptions(review_plan=True))
    assert result.plan_content == "only"
    assert "no review callback" in caplog.text


def test_missing_plan_file_still_succeeds(tmp_path) -> None:
    stage = PlanningStage(repo_root=tmp_path, executor_factory=ExecutorRecorder())
    result = stage.run(Task(id="5", title="t"), ExecutorTool.OPENCODE, PlanningOptions())
    assert result.success
    assert result.plan_content is None


def test_executor_failure_is_reported(tmp_path) -> None:
    recorder = ExecutorRecorder(actions=[ExecutorError("boom", exit_code=1)])
    stage = PlanningStage(repo_root=tmp_path, executor_factory=recorder)
    result = stage.run(Task(id="5", title="t"), ExecutorTool.OPENCODE, PlanningOptions())
    assert not result.success
    assert result.error == "boom"


def test_dry_run_skips_file_checks(tmp_path) -> None:
    recorder = ExecutorRecorder(actions=[_write_plan("should be ignored")])
    stage = PlanningStage(repo_root=tmp_path, executor_factory=recorder)
    result = stage.run(Task(id="5", title="t"), ExecutorTool.OPENCODE, PlanningOptions(dry_run=True))
    assert result.success
    assert result.plan_content is None
    assert recorder.calls[0].dry_run is True
