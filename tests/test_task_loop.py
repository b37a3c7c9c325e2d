from __future__ import annotations

from taskpilot.execution import TaskExecutionConfig
from taskpilot.memory.schema import TaskStatus
from taskpilot.orchestrator import Orchestrator
from taskpilot.task_loop import LoopFilters, execute_task_loop, select_tasks

from conftest import ExecutorRecorder, FakeShell


def test_select_tasks_skips_children_of_selected_parents(store, add_task) -> None:
    add_task("1")
    add_task("1.1", parent_id="1")
    add_task("2", status=TaskStatus.COMPLETED)
    add_task("3")

    selected = select_tasks(store, LoopFilters(), include_completed=False)
    assert [task.id for task in selected] == ["1", "3"]

    selected = select_tasks(store, LoopFilters(), include_completed=True)
    assert [task.id for task in selected] == ["1", "2", "3"]


def test_select_tasks_by_explicit_ids_skips_missing(store, add_task) -> None:
    add_task("1")
    add_task("2")
    selected = select_tasks(store, LoopFilters(task_ids=["2", "ghost", "1"]), include_completed=False)
    assert [task.id for task in selected] == ["2", "1"]


def test_select_tasks_by_tag(store, add_task) -> None:
    add_task("1", tags=["ui"])
    add_task("2", tags=["api"])
    selected = select_tasks(store, LoopFilters(tag="api"), include_completed=False)
    assert [task.id for task in selected] == ["2"]


def test_loop_stops_at_first_failure(tmp_path, store, add_task) -> None:
    add_task("1", "First")
    add_task("2", "Second")
    add_task("3", "Third")
    shell = FakeShell({"pytest": [(0, "", ""), (1, "", "broken")]})
    recorder = ExecutorRecorder()
    orchestrator = Orchestrator(repository=store, repo_root=tmp_path, shell=shell, executor_factory=recorder)

    result = execute_task_loop(
        orchestrator,
        store,
        LoopFilters(),
        TaskExecutionConfig(verification_commands=("pytest",), max_retries=2),
    )

    assert (result.total_tasks, result.completed_tasks, result.failed_tasks) == (3, 1, 1)
    assert [(entry.task_id, entry.final_status) for entry in result.task_results] == [
        ("1", "completed"),
        ("2", "failed"),
    ]
    assert len(result.task_results[1].attempts) == 2
    assert store.require_task("3").status == TaskStatus.TODO
    assert len(recorder.calls) == 3


def test_loop_with_nothing_to_do(tmp_path, store, add_task) -> None:
    add_task("1", status=TaskStatus.COMPLETED)
    orchestrator = Orchestrator(repository=store, repo_root=tmp_path, shell=FakeShell(), executor_factory=ExecutorRecorder())
    result = execute_task_loop(orchestrator, store, LoopFilters(), TaskExecutionConfig())
    assert result.total_tasks == 0
    assert result.task_results == []
