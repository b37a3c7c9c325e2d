"""Planning phase: have the agent write an implementation plan file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .. import prompts
from ..context_builder import ContextBuilder
from ..executors import ExecutorConfig, ExecutorError, ExecutorFactory, ExecutorTool, create_executor, parse_executor_model
from ..memory.schema import Task
from ..memory.store import TaskRepository
from ..tools.git_state import GitStateTracker

if TYPE_CHECKING:
    from ..execution import PlanReviewCallback, TaskExecutionConfig

LOGGER = logging.getLogger(__name__)


def plan_file_name(task_id: str) -> str:
    return f"task-{task_id}-plan.md"


@dataclass(slots=True)
class PlanningOptions:
    """Planning-related subset of the execution configuration."""

    plan_model: Optional[str] = None
    plan_tool: Optional[ExecutorTool] = None
    review_plan: bool = False
    auto_commit: bool = False
    dry_run: bool = False
    on_plan_review: Optional["PlanReviewCallback"] = None

    @classmethod
    def from_config(cls, config: "TaskExecutionConfig") -> "PlanningOptions":
        return cls(
            plan_model=config.plan_model,
            plan_tool=config.plan_tool,
            review_plan=config.review_plan,
            auto_commit=config.auto_commit,
            dry_run=config.dry_run,
            on_plan_review=config.on_plan_review,
        )


@dataclass(slots=True)
class PlanningResult:
    success: bool
    plan_content: Optional[str] = None
    plan_file: Optional[str] = None
    error: Optional[str] = None


def resolve_plan_executor(
    default_tool: ExecutorTool,
    plan_tool: Optional[ExecutorTool],
    plan_model: Optional[str],
) -> tuple[ExecutorTool, Optional[str]]:
    """Pick the planning executor and model.

    An ``executor:model`` prefix on ``plan_model`` selects the executor only
    when no explicit ``plan_tool`` is set; the prefix is stripped either way.
    """

    executor = plan_tool or default_tool
    if not plan_model:
        return executor, None
    prefix, model = parse_executor_model(plan_model)
    if prefix is not None and plan_tool is None:
        executor = prefix
    return executor, model or None


class PlanningStage:
    """Drive plan generation and the optional human review loop."""

    def __init__(
        self,
        *,
        repo_root: Path | str,
        executor_factory: ExecutorFactory = create_executor,
        git: Optional[GitStateTracker] = None,
        repository: Optional[TaskRepository] = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.executor_factory = executor_factory
        self.git = git
        self.repository = repository

    def run(self, task: Task, default_tool: ExecutorTool, options: PlanningOptions) -> PlanningResult:
        LOGGER.info("Starting planning phase for task: %s", task.title)
        file_name = plan_file_name(task.id)
        plan_path = self.repo_root / file_name

        executor_tool, model = resolve_plan_executor(default_tool, options.plan_tool, options.plan_model)
        LOGGER.info("Using executor for planning: %s%s", executor_tool.value, f" ({model})" if model else "")

        planning_config = ExecutorConfig(model=model, continue_last_session=False)
        executor = self.executor_factory(executor_tool, planning_config, self.repo_root)

        message = prompts.render_planning_prompt(
            title=task.title,
            description=task.description,
            content=task.content,
            plan_file=file_name,
            documentation=ContextBuilder.documentation_section(task),
        )

        plan_content: Optional[str] = None
        try:
            while True:
                executor.execute(message, options.dry_run, planning_config)
                if options.dry_run:
                    break

                if not plan_path.exists():
                    LOGGER.warning("Plan file %s was not created by the executor.", file_name)
                    break

                plan_content = plan_path.read_text(encoding="utf-8")
                LOGGER.info("Plan created successfully: %s", file_name)

                if options.review_plan:
                    if options.on_plan_review is None:
                        LOGGER.warning("Review requested but no review callback provided.")
                    else:
                        LOGGER.info("Pausing for human review of the plan: %s", file_name)
                        feedback = options.on_plan_review(str(plan_path))
                        if feedback and feedback.strip():
                            LOGGER.info("Refining plan based on feedback")
                            message = prompts.render_plan_feedback_prompt(feedback.strip(), file_name)
                            continue

                if options.auto_commit and self.git is not None:
                    self.git.commit_file(file_name, f"docs: create implementation plan for task {task.id}")
                break
        except ExecutorError as error:
            LOGGER.error("Planning phase failed: %s", error)
            return PlanningResult(success=False, error=str(error))

        if plan_content and self.repository is not None:
            self.repository.save_task_plan(task.id, plan_content)

        return PlanningResult(success=True, plan_content=plan_content, plan_file=file_name)


__all__ = [
    "PlanningOptions",
    "PlanningResult",
    "PlanningStage",
    "plan_file_name",
    "resolve_plan_executor",
]
