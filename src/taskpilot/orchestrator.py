"""High-level orchestration of a task through plan, execute, verify and review."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .context_builder import ContextBuilder
from .execution import TaskExecutionConfig, TaskExecutionResult
from .executors import ExecutorFactory, create_executor
from .hooks import ExecutionHooks, ExecutionListener
from .memory.schema import Task, TaskStatus
from .memory.store import TaskNotFoundError, TaskRepository
from .models.llm_client import LLMClient, OfflineClient
from .phases.base import write_artifact
from .phases.execute import ExecutionStage
from .phases.plan import PlanningOptions, PlanningStage
from .phases.review import ReviewStage
from .retry import RetryController
from .subtasks import SubtaskScheduler
from .tools.git_state import GitStateTracker
from .tools.shell import Shell

LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Coordinator that executes a task, recursing into its subtasks.

    All collaborators are injected; ``repo_root`` is the working directory for
    the agent process, verification commands and git. Whatever happens, a task
    driven here is never left ``in-progress`` outside dry-run.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        repo_root: Path | str,
        agent: LLMClient | None = None,
        shell: Shell | None = None,
        executor_factory: ExecutorFactory = create_executor,
        context_builder: ContextBuilder | None = None,
        listeners: Iterable[ExecutionListener] = (),
        artifacts_root: Path | str | None = None,
    ) -> None:
        self.repository = repository
        self.repo_root = Path(repo_root)
        self.agent = agent or OfflineClient()
        self.shell = shell or Shell()
        self.context_builder = context_builder or ContextBuilder(self.repo_root)
        self.artifacts_root = Path(artifacts_root) if artifacts_root is not None else None
        self.hooks = ExecutionHooks(listeners)

        self.git = GitStateTracker(self.repo_root, shell=self.shell, agent=self.agent)
        self.planning = PlanningStage(
            repo_root=self.repo_root,
            executor_factory=executor_factory,
            git=self.git,
            repository=self.repository,
        )
        self.execution = ExecutionStage(
            repository=self.repository,
            context_builder=self.context_builder,
            shell=self.shell,
            git=self.git,
            repo_root=self.repo_root,
            executor_factory=executor_factory,
            hooks=self.hooks,
        )
        self.review = ReviewStage(agent=self.agent, git=self.git)
        self.retry = RetryController(
            execution=self.execution,
            repository=self.repository,
            git=self.git,
            review=self.review,
            context_builder=self.context_builder,
        )
        self.subtasks = SubtaskScheduler(repository=self.repository, execute=self._execute)

    # ------------------------------------------------------------ public API
    def execute_task(self, task_id: str, config: TaskExecutionConfig) -> TaskExecutionResult:
        """Execute ``task_id`` (and its subtasks) and return the structured outcome.

        Raises :class:`TaskNotFoundError` for unknown ids. On the single-attempt
        path an executor failure is re-raised after the status is reset.
        """

        result = self._execute(task_id, config, 0)
        if self.artifacts_root is not None:
            write_artifact(self.artifacts_root, "execution", task_id, result)
        return result

    # -------------------------------------------------------------- internals
    def _execute(self, task_id: str, config: TaskExecutionConfig, depth: int) -> TaskExecutionResult:
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if config.execute_subtasks and not config.custom_message:
            children = self.repository.get_subtasks(task_id)
            if children:
                return self.subtasks.run(task, children, config, depth)

        with self._status_guard(task_id, config.dry_run):
            return self._execute_single(task, config)

    def _execute_single(self, task: Task, config: TaskExecutionConfig) -> TaskExecutionResult:
        plan_content: Optional[str] = None
        if config.enable_plan_phase:
            plan_tool = config.plan_tool or config.tool
            planning = self.planning.run(task, plan_tool, PlanningOptions.from_config(config))
            if planning.success and planning.plan_content:
                plan_content = planning.plan_content
            elif not planning.success:
                LOGGER.warning("Continuing without a plan: %s", planning.error)

        if config.enable_retry or config.enable_review_phase:
            effective = config if config.enable_retry else replace(config, max_retries=1)
            return self.retry.run(task, effective, plan_content)

        return self.execution.run(task, config, 1, [], plan_content=plan_content, finalize=True)

    @contextmanager
    def _status_guard(self, task_id: str, dry_run: bool) -> Iterator[None]:
        try:
            yield
        finally:
            if not dry_run:
                current = self.repository.get_task(task_id)
                if current is not None and current.status == TaskStatus.IN_PROGRESS:
                    LOGGER.warning("Task %s was left in-progress, resetting to todo", task_id)
                    self.repository.set_task_status(task_id, TaskStatus.TODO)


__all__ = ["Orchestrator"]
