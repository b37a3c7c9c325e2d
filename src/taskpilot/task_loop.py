"""Run several tasks back to back with retries enabled."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

from .execution import TaskExecutionAttempt, TaskExecutionConfig
from .memory.schema import Task, TaskStatus
from .memory.store import TaskRepository
from .orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LoopFilters:
    """Explicit ids win; otherwise tasks are listed by status and tag."""

    task_ids: Sequence[str] = ()
    status: Optional[TaskStatus] = None
    tag: Optional[str] = None


@dataclass(slots=True)
class LoopTaskResult:
    task_id: str
    task_title: str
    attempts: List[TaskExecutionAttempt] = field(default_factory=list)
    final_status: str = "failed"


@dataclass(slots=True)
class LoopResult:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    task_results: List[LoopTaskResult] = field(default_factory=list)
    duration: float = 0.0


def select_tasks(repository: TaskRepository, filters: LoopFilters, *, include_completed: bool) -> List[Task]:
    """Resolve the tasks a loop run should execute, in order."""
    tasks: List[Task] = []
    if filters.task_ids:
        for task_id in filters.task_ids:
            task = repository.get_task(task_id)
            if task is None:
                LOGGER.warning("Task %s not found, skipping", task_id)
                continue
            tasks.append(task)
    else:
        listed = repository.list_tasks(status=filters.status, tag=filters.tag)
        selected_ids = {task.id for task in listed}
        # children run through their parent's subtask pass
        tasks = [task for task in listed if task.parent_id not in selected_ids]

    if not include_completed:
        before = len(tasks)
        tasks = [task for task in tasks if task.status != TaskStatus.COMPLETED]
        skipped = before - len(tasks)
        if skipped:
            LOGGER.info("Skipped %d already-completed task(s)", skipped)
    return tasks


def execute_task_loop(
    orchestrator: Orchestrator,
    repository: TaskRepository,
    filters: LoopFilters,
    config: TaskExecutionConfig,
) -> LoopResult:
    """Execute selected tasks sequentially, stopping at the first failure."""
    started = time.monotonic()
    config = replace(config, enable_retry=True)

    LOGGER.info("Starting task loop execution")
    LOGGER.info("Executor tool: %s", config.tool.value)
    if config.executor_config.model:
        LOGGER.info("Executor model: %s", config.executor_config.model)
    LOGGER.info("Max retries per task: %d", config.max_retries)
    LOGGER.info(
        "Verification commands: %s",
        ", ".join(config.verification_commands) if config.verification_commands else "None",
    )

    tasks = select_tasks(repository, filters, include_completed=config.include_completed)
    result = LoopResult(total_tasks=len(tasks))
    if not tasks:
        LOGGER.warning("No tasks to execute (all may be completed)")
        result.duration = time.monotonic() - started
        return result

    LOGGER.info("Found %d task(s) to execute", len(tasks))
    for index, task in enumerate(tasks, start=1):
        LOGGER.info("Task %d/%d: %s (%s)", index, len(tasks), task.title, task.id)
        try:
            outcome = orchestrator.execute_task(task.id, config)
        except Exception as error:  # noqa: BLE001 - any raised error ends the loop as a failure
            result.failed_tasks += 1
            LOGGER.error("Task %s failed with error: %s", task.title, error)
            result.task_results.append(LoopTaskResult(task_id=task.id, task_title=task.title))
            break

        if outcome.success:
            result.completed_tasks += 1
            LOGGER.info("Task %s completed after %d attempt(s)", task.title, len(outcome.attempts))
        else:
            result.failed_tasks += 1
            LOGGER.error("Task %s failed after %d attempt(s)", task.title, len(outcome.attempts))

        result.task_results.append(
            LoopTaskResult(
                task_id=task.id,
                task_title=task.title,
                attempts=outcome.attempts,
                final_status="completed" if outcome.success else "failed",
            )
        )
        if not outcome.success:
            break

    result.duration = time.monotonic() - started
    LOGGER.info(
        "Execution summary: total=%d completed=%d failed=%d duration=%.2fs",
        result.total_tasks,
        result.completed_tasks,
        result.failed_tasks,
        result.duration,
    )
    return result


__all__ = ["LoopFilters", "LoopResult", "LoopTaskResult", "execute_task_loop", "select_tasks"]
