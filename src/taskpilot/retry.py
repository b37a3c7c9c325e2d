"""Bounded retry loop with model escalation and optional review."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

from . import prompts
from .context_builder import ContextBuilder
from .execution import TaskExecutionAttempt, TaskExecutionConfig, TaskExecutionResult, resolve_attempt_model
from .executors import ExecutorError
from .memory.schema import Task, TaskStatus
from .memory.store import TaskRepository
from .phases.execute import ExecutionStage
from .phases.review import ReviewOptions, ReviewStage
from .tools.git_state import GitStateTracker

LOGGER = logging.getLogger(__name__)


class RetryController:
    """Repeat execution attempts until one passes verification and review.

    Each retry resumes the agent's previous session and prepends the last
    failure to the prompt. Escalation entries from ``try_models`` are applied
    by attempt number; attempts past the end reuse the last entry.
    """

    def __init__(
        self,
        *,
        execution: ExecutionStage,
        repository: TaskRepository,
        git: GitStateTracker,
        review: Optional[ReviewStage] = None,
        context_builder: Optional[ContextBuilder] = None,
    ) -> None:
        self.execution = execution
        self.repository = repository
        self.git = git
        self.review = review
        self.context_builder = context_builder

    def run(
        self,
        task: Task,
        config: TaskExecutionConfig,
        plan_content: Optional[str] = None,
    ) -> TaskExecutionResult:
        max_retries = max(config.max_retries, 1)
        review_enabled = config.enable_review_phase and self.review is not None
        attempts: List[TaskExecutionAttempt] = []
        last_error: Optional[str] = None

        before_head: Optional[str] = None
        if not config.dry_run:
            state = self.git.capture_git_state()
            before_head = state.before_head if state.available else None

        for attempt_number in range(1, max_retries + 1):
            executor = config.tool
            model = config.executor_config.model
            escalation = resolve_attempt_model(config.try_models, attempt_number)
            if escalation is not None:
                executor = escalation.executor or executor
                model = escalation.model or model

            LOGGER.info("Attempt %d/%d for task: %s (%s)", attempt_number, max_retries, task.title, task.id)
            if model:
                LOGGER.info("Using executor: %s with model: %s", executor.value, model)
            else:
                LOGGER.info("Using executor: %s", executor.value)

            retry_context = ""
            if attempt_number > 1 and last_error:
                retry_context = prompts.render_retry_context(
                    attempt_number,
                    max_retries,
                    last_error,
                    executor=executor.value,
                    model=model,
                )

            attempt_config = replace(
                config,
                tool=executor,
                executor_config=replace(
                    config.executor_config,
                    model=model,
                    continue_last_session=attempt_number > 1,
                ),
            )

            try:
                result = self.execution.run(
                    task,
                    attempt_config,
                    attempt_number,
                    attempts,
                    plan_content=plan_content,
                    retry_context=retry_context,
                    finalize=not review_enabled,
                )
            except ExecutorError as error:
                last_error = str(error)
                LOGGER.error("Task execution failed on attempt %d: %s", attempt_number, last_error)
                continue

            if not result.success:
                failed = next(
                    (item for item in attempts[-1].verification_results if not item.success),
                    None,
                )
                if failed is not None:
                    last_error = f'Verification command "{failed.command}" failed:\n{failed.error}'
                else:
                    last_error = attempts[-1].error or "Execution failed"
                continue

            if not review_enabled:
                return result

            review = self.review.run(
                task,
                ReviewOptions(
                    review_model=config.review_model,
                    review_tool=config.review_tool,
                    plan_content=plan_content,
                    prd_content=self._prd_for_review(config),
                    before_head=before_head,
                    dry_run=config.dry_run,
                ),
            )
            if not review.approved:
                last_error = f"AI Review Failed:\n{review.feedback}"
                final_attempt = attempts[-1]
                final_attempt.success = False
                final_attempt.error = last_error
                final_attempt.review_feedback = review.feedback
                if not config.dry_run:
                    self.repository.set_task_status(task.id, TaskStatus.TODO)
                continue

            result.review_feedback = review.feedback
            attempts[-1].review_feedback = review.feedback
            if not config.dry_run:
                self.repository.set_task_status(task.id, TaskStatus.COMPLETED)
                LOGGER.info("Task %s completed after review approval", task.id)
            return result

        if not config.dry_run:
            self.repository.set_task_status(task.id, TaskStatus.TODO)
        LOGGER.error("All retry attempts exhausted, task status reset to todo")
        return TaskExecutionResult(
            task_id=task.id,
            success=False,
            attempts=attempts,
            plan_content=plan_content,
            error=last_error,
        )

    def _prd_for_review(self, config: TaskExecutionConfig) -> Optional[str]:
        if not config.include_prd or self.context_builder is None:
            return None
        return self.context_builder.load_prd()


__all__ = ["RetryController"]
