"""Execution phase: one agent invocation followed by verification and commit."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

from .. import prompts
from ..context_builder import ContextBuilder
from ..execution import TaskExecutionAttempt, TaskExecutionConfig, TaskExecutionResult
from ..executors import ExecutorError, ExecutorFactory, create_executor
from ..hooks import ExecutionHooks
from ..memory.schema import Task, TaskStatus
from ..memory.store import TaskRepository
from ..tools.git_state import CommitInfo, GitState, GitStateTracker
from ..tools.shell import Shell
from ..tools.verification import format_verification_error, run_verifications

LOGGER = logging.getLogger(__name__)


class ExecutionStage:
    """Run a single attempt of a task.

    The attempt is appended to the caller's ``attempts`` list so a retry loop
    accumulates one contiguous log. Verification failures are returned as an
    unsuccessful result; executor failures are recorded and re-raised.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        context_builder: ContextBuilder,
        shell: Shell,
        git: GitStateTracker,
        repo_root: Path | str,
        executor_factory: ExecutorFactory = create_executor,
        hooks: Optional[ExecutionHooks] = None,
    ) -> None:
        self.repository = repository
        self.context_builder = context_builder
        self.shell = shell
        self.git = git
        self.repo_root = Path(repo_root)
        self.executor_factory = executor_factory
        self.hooks = hooks or ExecutionHooks()

    # ----------------------------------------------------------------- prompt
    def build_message(
        self,
        task: Task,
        config: TaskExecutionConfig,
        *,
        plan_content: Optional[str] = None,
        retry_context: str = "",
    ) -> str:
        if config.custom_message:
            LOGGER.info("Using custom execution message")
            return config.custom_message

        plan: Optional[str] = None
        if plan_content:
            plan = f"{plan_content}\n\n{prompts.FOLLOW_PLAN_INSTRUCTION}"
        else:
            stored = self.repository.get_task_plan(task.id)
            if stored is not None and stored.plan.strip():
                plan = stored.plan

        package = self.context_builder.build(
            task,
            plan=plan,
            retry_context=retry_context,
            include_prd=config.include_prd,
        )
        return package.message

    # -------------------------------------------------------------------- run
    def run(
        self,
        task: Task,
        config: TaskExecutionConfig,
        attempt_number: int,
        attempts: List[TaskExecutionAttempt],
        *,
        plan_content: Optional[str] = None,
        retry_context: str = "",
        finalize: bool = True,
    ) -> TaskExecutionResult:
        started = time.monotonic()
        dry_run = config.dry_run
        tool = config.tool.value
        model = config.executor_config.model

        LOGGER.info("%s task: %s (%s)", "DRY RUN" if dry_run else "Executing", task.title, task.id)

        before = GitState.unavailable()
        if config.auto_commit and not dry_run:
            before = self.git.capture_git_state()

        message = self.build_message(task, config, plan_content=plan_content, retry_context=retry_context)

        if not dry_run:
            self.repository.set_task_status(task.id, TaskStatus.IN_PROGRESS)
            LOGGER.info("Task %s status updated to in-progress", task.id)

        self.hooks.emit_start(task.id, tool)

        try:
            executor = self.executor_factory(config.tool, config.executor_config, self.repo_root)
            if config.executor_config.continue_last_session and attempt_number > 1:
                LOGGER.info("Resuming previous session to provide error feedback to the agent")
            executor.execute(message, dry_run, config.executor_config)
        except ExecutorError as error:
            attempts.append(
                TaskExecutionAttempt(
                    attempt_number=attempt_number,
                    success=False,
                    error=str(error),
                    executor=tool,
                    model=model,
                    duration=time.monotonic() - started,
                )
            )
            self.hooks.emit_error(task.id, error)
            if not dry_run:
                self.repository.set_task_status(task.id, TaskStatus.TODO)
                LOGGER.error("Task execution failed, status reset to todo")
            raise

        verification_results = run_verifications(
            config.verification_commands,
            shell=self.shell,
            cwd=self.repo_root,
            dry_run=dry_run,
        )
        failed = next((result for result in verification_results if not result.success), None)
        if failed is not None:
            attempts.append(
                TaskExecutionAttempt(
                    attempt_number=attempt_number,
                    success=False,
                    error=format_verification_error(failed),
                    executor=tool,
                    model=model,
                    verification_results=verification_results,
                    duration=time.monotonic() - started,
                )
            )
            if not dry_run:
                self.repository.set_task_status(task.id, TaskStatus.TODO)
            LOGGER.error("Task execution failed verification on attempt %d", attempt_number)
            self.hooks.emit_end(task.id, False)
            return TaskExecutionResult(
                task_id=task.id,
                success=False,
                attempts=attempts,
                plan_content=plan_content,
                error=failed.error,
            )

        commit_info: Optional[CommitInfo] = None
        if config.auto_commit and not dry_run:
            commit_info = self._commit_changes(task, before)

        if finalize and not dry_run:
            self.repository.set_task_status(task.id, TaskStatus.COMPLETED)
            LOGGER.info("Task execution completed successfully")

        attempts.append(
            TaskExecutionAttempt(
                attempt_number=attempt_number,
                success=True,
                executor=tool,
                model=model,
                verification_results=verification_results,
                commit_info=commit_info,
                duration=time.monotonic() - started,
            )
        )
        self.hooks.emit_end(task.id, True)
        return TaskExecutionResult(
            task_id=task.id,
            success=True,
            attempts=attempts,
            commit_info=commit_info,
            plan_content=plan_content,
        )

    # ---------------------------------------------------------------- commits
    def _commit_changes(self, task: Task, before: GitState) -> Optional[CommitInfo]:
        if not before.available:
            LOGGER.warning("Git unavailable, skipping auto-commit")
            return None

        LOGGER.info("Checking git state for auto-commit")
        if self.git.has_new_commits_since(before.before_head):
            LOGGER.info("Agent already committed changes during execution, skipping auto-commit")
            after_head = self.git.current_head() or before.before_head
            state = GitState(before_head=before.before_head, after_head=after_head)
            return self.git.extract_commit_info(task, state)

        after = self.git.capture_git_state()
        if not after.available or not after.has_uncommitted_changes:
            LOGGER.info("No uncommitted changes to commit")
            return None

        state = GitState(
            before_head=before.before_head,
            after_head=after.after_head,
            has_uncommitted_changes=True,
        )
        info = self.git.extract_commit_info(task, state)
        LOGGER.info("Commit message: %s", info.message)
        if info.files:
            LOGGER.info("Changed files: %s", ", ".join(info.files))
        self.git.auto_commit(info)
        return info


__all__ = ["ExecutionStage"]
