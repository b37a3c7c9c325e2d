"""Configuration and result records shared by the execution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .executors import ExecutorConfig, ExecutorTool, parse_executor_model
from .tools.git_state import CommitInfo
from .tools.verification import VerificationResult

__all__ = [
    "ModelAttemptConfig",
    "PlanReviewCallback",
    "TaskExecutionAttempt",
    "TaskExecutionConfig",
    "TaskExecutionResult",
    "parse_try_models",
    "resolve_attempt_model",
]

DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_SUBTASK_DEPTH = 16

PlanReviewCallback = Callable[[str], Optional[str]]
"""Receives the plan file path; returns feedback text, or ``None`` to approve."""


@dataclass(frozen=True, slots=True)
class ModelAttemptConfig:
    """Executor and model override for one retry attempt."""

    executor: Optional[ExecutorTool] = None
    model: Optional[str] = None


def resolve_attempt_model(
    try_models: Sequence[ModelAttemptConfig],
    attempt_number: int,
) -> Optional[ModelAttemptConfig]:
    """Return the escalation entry for ``attempt_number`` (1-based).

    Attempts beyond the list keep using its last entry.
    """

    if not try_models:
        return None
    index = min(max(attempt_number - 1, 0), len(try_models) - 1)
    return try_models[index]


def parse_try_models(value: str) -> Tuple[ModelAttemptConfig, ...]:
    """Parse ``"model,executor:model,..."`` into escalation entries."""

    entries: List[ModelAttemptConfig] = []
    for item in value.split(","):
        text = item.strip()
        if not text:
            continue
        executor, model = parse_executor_model(text)
        entries.append(ModelAttemptConfig(executor=executor, model=model or None))
    return tuple(entries)


@dataclass(frozen=True, slots=True)
class TaskExecutionConfig:
    """Immutable options for one ``execute_task`` call and its recursion."""

    tool: ExecutorTool = ExecutorTool.OPENCODE
    executor_config: ExecutorConfig = field(default_factory=ExecutorConfig)
    custom_message: Optional[str] = None
    verification_commands: Tuple[str, ...] = ()
    enable_retry: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES
    try_models: Tuple[ModelAttemptConfig, ...] = ()
    enable_plan_phase: bool = False
    plan_model: Optional[str] = None
    plan_tool: Optional[ExecutorTool] = None
    review_plan: bool = False
    enable_review_phase: bool = False
    review_model: Optional[str] = None
    review_tool: Optional[ExecutorTool] = None
    auto_commit: bool = False
    execute_subtasks: bool = True
    include_completed: bool = False
    include_prd: bool = False
    dry_run: bool = False
    max_subtask_depth: int = DEFAULT_MAX_SUBTASK_DEPTH
    on_plan_review: Optional[PlanReviewCallback] = field(default=None, compare=False)


@dataclass(slots=True)
class TaskExecutionAttempt:
    """Record of a single implementation attempt."""

    attempt_number: int
    success: bool
    error: Optional[str] = None
    executor: Optional[str] = None
    model: Optional[str] = None
    verification_results: List[VerificationResult] = field(default_factory=list)
    commit_info: Optional[CommitInfo] = None
    review_feedback: Optional[str] = None
    duration: float = 0.0


@dataclass(slots=True)
class TaskExecutionResult:
    """Outcome of executing one task, including its subtasks."""

    task_id: str
    success: bool
    attempts: List[TaskExecutionAttempt] = field(default_factory=list)
    commit_info: Optional[CommitInfo] = None
    subtask_results: List["TaskExecutionResult"] = field(default_factory=list)
    plan_content: Optional[str] = None
    review_feedback: Optional[str] = None
    error: Optional[str] = None
