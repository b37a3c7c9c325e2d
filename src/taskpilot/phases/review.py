"""Review phase: ask a model to approve or reject the attempt's changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from pydantic import BaseModel

from .. import prompts
from ..context_builder import ContextBuilder
from ..executors import ExecutorTool, parse_executor_model
from ..memory.schema import Task
from ..models.llm_client import LLMClient, LLMClientError, LLMResponseFormatError, parse_structured
from ..tools.git_state import GitStateTracker

LOGGER = logging.getLogger(__name__)

DIFF_CHAR_LIMIT = 10_000
PRD_CHAR_LIMIT = 5_000

PROVIDER_BY_EXECUTOR: Dict[ExecutorTool, str] = {
    ExecutorTool.CLAUDE: "anthropic",
    ExecutorTool.GEMINI: "gemini",
    ExecutorTool.CODEX: "openai",
}


class ReviewVerdict(BaseModel):
    approved: bool
    feedback: str = ""


@dataclass(slots=True)
class ReviewOptions:
    review_model: Optional[str] = None
    review_tool: Optional[ExecutorTool] = None
    plan_content: Optional[str] = None
    prd_content: Optional[str] = None
    before_head: Optional[str] = None
    dry_run: bool = False


@dataclass(slots=True)
class ReviewResult:
    """Verdict plus whether the review itself ran cleanly."""

    approved: bool
    feedback: str
    success: bool = True
    error: Optional[str] = None


def resolve_review_target(
    review_tool: Optional[ExecutorTool],
    review_model: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    """Return ``(provider, model)`` for the review completion."""
    executor = review_tool
    model = review_model
    if review_model:
        prefix, model = parse_executor_model(review_model)
        if prefix is not None and review_tool is None:
            executor = prefix
    provider = PROVIDER_BY_EXECUTOR.get(executor) if executor is not None else None
    return provider, model or None


class ReviewStage:
    """Diff-based review that degrades to approval whenever it cannot judge."""

    def __init__(self, *, agent: LLMClient, git: Optional[GitStateTracker] = None) -> None:
        self.agent = agent
        self.git = git

    def run(self, task: Task, options: ReviewOptions) -> ReviewResult:
        LOGGER.info("Starting review phase for task %s", task.id)
        if options.dry_run:
            LOGGER.warning("DRY RUN - review phase skipped")
            return ReviewResult(approved=True, feedback="Dry run - review skipped")

        diff = self.git.collect_review_diff(options.before_head) if self.git is not None else ""
        if not diff.strip():
            LOGGER.warning("No changes detected to review.")
            return ReviewResult(approved=True, feedback="No changes to review")

        provider, model = resolve_review_target(options.review_tool, options.review_model)
        if provider or model:
            LOGGER.info("Reviewing with provider=%s model=%s", provider or "default", model or "default")

        prompt = prompts.render_review_prompt(
            title=task.title,
            diff=diff[:DIFF_CHAR_LIMIT],
            description=task.description,
            content=task.content,
            prd=(options.prd_content or "")[:PRD_CHAR_LIMIT],
            documentation=ContextBuilder.documentation_section(task),
            plan=options.plan_content or "",
        )

        try:
            raw = self.agent.complete(
                prompt,
                model=model,
                system_prompt=prompts.REVIEW_SYSTEM_PROMPT,
                provider=provider,
            )
            verdict = parse_structured(raw, ReviewVerdict)
        except LLMResponseFormatError:
            LOGGER.warning("Could not parse review response. Assuming approval.")
            return ReviewResult(approved=True, feedback="Could not parse review response, assuming approval")
        except LLMClientError as error:
            LOGGER.error("Review failed: %s", error)
            return ReviewResult(
                approved=True,
                feedback=f"Review failed: {error}",
                success=False,
                error=str(error),
            )

        if verdict.approved:
            LOGGER.info("Review approved: %s", verdict.feedback)
        else:
            LOGGER.error("Review rejected changes: %s", verdict.feedback)
        return ReviewResult(approved=verdict.approved, feedback=verdict.feedback)


__all__ = [
    "PROVIDER_BY_EXECUTOR",
    "ReviewOptions",
    "ReviewResult",
    "ReviewStage",
    "ReviewVerdict",
    "resolve_review_target",
]
