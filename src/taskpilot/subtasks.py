"""Sequential execution of a task's subtasks."""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from .execution import TaskExecutionConfig, TaskExecutionResult
from .memory.schema import Task, TaskStatus
from .memory.store import TaskRepository

LOGGER = logging.getLogger(__name__)

ExecuteFn = Callable[[str, TaskExecutionConfig, int], TaskExecutionResult]
"""Recursive entry point: ``(task_id, config, depth) -> result``."""


class SubtaskScheduler:
    """Run children in stored order and stop at the first failure."""

    def __init__(self, *, repository: TaskRepository, execute: ExecuteFn) -> None:
        self.repository = repository
        self._execute = execute

    def run(
        self,
        task: Task,
        subtasks: Sequence[Task],
        config: TaskExecutionConfig,
        depth: int = 0,
    ) -> TaskExecutionResult:
        LOGGER.info("Task %s has %d subtasks, executing recursively", task.id, len(subtasks))
        results: List[TaskExecutionResult] = []
        all_success = True
        child_depth = depth + 1

        for index, subtask in enumerate(subtasks, start=1):
            if subtask.status == TaskStatus.COMPLETED and not config.include_completed:
                LOGGER.info("Skipping completed subtask: %s (%s)", subtask.title, subtask.id)
                continue

            LOGGER.info("[%d/%d] Executing subtask: %s (%s)", index, len(subtasks), subtask.title, subtask.id)

            if child_depth > config.max_subtask_depth:
                message = f"Maximum subtask depth {config.max_subtask_depth} exceeded at {subtask.id}"
                LOGGER.error("%s", message)
                results.append(TaskExecutionResult(task_id=subtask.id, success=False, error=message))
                all_success = False
                break

            try:
                result = self._execute(subtask.id, config, child_depth)
            except Exception as error:  # noqa: BLE001 - a raising subtask counts as a failed one
                LOGGER.error("Failed to execute subtask %s: %s", subtask.id, error)
                results.append(TaskExecutionResult(task_id=subtask.id, success=False, error=str(error)))
                all_success = False
                break

            results.append(result)
            if not result.success:
                LOGGER.error("Failed to execute subtask %s: %s", subtask.id, subtask.title)
                all_success = False
                break

        if not config.dry_run:
            if all_success:
                self.repository.set_task_status(task.id, TaskStatus.COMPLETED)
                LOGGER.info("Main task %s completed after all subtasks", task.title)
            else:
                self.repository.set_task_status(task.id, TaskStatus.TODO)
                LOGGER.error("Main task %s failed due to subtask failure, status reset to todo", task.title)

        return TaskExecutionResult(
            task_id=task.id,
            success=all_success,
            attempts=[],
            subtask_results=results,
            error=None if all_success else results[-1].error if results else None,
        )


__all__ = ["SubtaskScheduler"]
