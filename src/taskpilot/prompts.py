"""Prompt templates handed to the coding agent and the review model."""

from __future__ import annotations

from typing import Optional, Sequence

EXECUTION_SYSTEM_PROMPT = """\
You are an expert software developer. Execute the task according to the implementation plan and project context provided.

## Guidelines:
1. Follow the implementation plan step-by-step
2. Use the technology stack and libraries specified
3. Refer to the documentation context for API usage
4. Write clean, maintainable code that matches the surrounding project
5. Handle errors appropriately
6. Test your changes
7. Before finishing, commit all your changes with a clear, descriptive commit message summarizing what was implemented. Do not hand back control without committing your work.

## On Retries:
If this is a retry attempt, carefully analyze the previous error and fix it before proceeding.
"""

COMMIT_INSTRUCTION = (
    "## **IMPORTANT**: Before finishing, you MUST commit all your changes with a clear, descriptive "
    "commit message summarizing what was implemented. DO NOT hand back control without committing your work!"
)

FOLLOW_PLAN_INSTRUCTION = "Please follow this plan to implement the task."

RETRY_HINTS: tuple[str, ...] = (
    "Syntax errors",
    "Logic errors",
    "Missing dependencies or imports",
    "Incorrect configuration",
    "Build or test failures",
)

REVIEW_SYSTEM_PROMPT = "You are a strict code reviewer. Respond with a single JSON object."


def render_retry_context(
    attempt_number: int,
    max_retries: int,
    last_error: str,
    *,
    executor: Optional[str] = None,
    model: Optional[str] = None,
) -> str:
    """Explain the previous failure to the agent on a retry attempt."""
    parts = [f"# RETRY ATTEMPT {attempt_number}/{max_retries}\n\n"]
    if model:
        parts.append(
            f"**Note**: You are {executor} using the {model} model. "
            "This is a more capable model than the previous attempt.\n\n"
        )
    parts.append(f"## Previous Attempt Failed With Error:\n\n{last_error}\n\n")
    parts.append("Please analyze the error carefully and fix it. The error might be due to:\n")
    parts.extend(f"- {hint}\n" for hint in RETRY_HINTS)
    parts.append("\nPlease fix the error above and complete the task successfully.\n\n")
    return "".join(parts)


def render_documentation(recap: str, files: Sequence[str]) -> str:
    if not recap.strip() and not files:
        return ""
    lines = ["# Documentation Context", recap.strip()]
    if files:
        lines.append("")
        lines.append("Referenced files:")
        lines.extend(f"- {path}" for path in files)
    return "\n".join(lines) + "\n"


def render_planning_prompt(
    *,
    title: str,
    description: str,
    content: str,
    plan_file: str,
    documentation: str = "",
) -> str:
    """Ask the agent to write an implementation plan file without coding."""
    details = content or description or "No description provided."
    return (
        "You are a senior software architect. Analyze the following task and create a detailed implementation plan.\n\n"
        f"Task Title: {title}\n\n"
        f"Task Description/Summary:\n{description or 'No summary provided.'}\n\n"
        f"Detailed Task Requirements:\n{details}\n"
        f"{documentation}\n"
        "Requirements:\n"
        "1. FOCUS SOLELY ON THIS TASK. Do not plan for future tasks or subtasks unless explicitly required.\n"
        "2. Analyze the task requirements and any provided documentation.\n"
        "3. Create a detailed step-by-step implementation plan.\n"
        "4. Identify necessary file changes.\n"
        f'5. Write this plan to a file named "{plan_file}" in the current directory.\n'
        "6. Do NOT implement the code yet, just create the plan file.\n\n"
        f'Please create the "{plan_file}" file now.'
    )


def render_plan_feedback_prompt(feedback: str, plan_file: str) -> str:
    return (
        "The user provided the following feedback on the plan you just created:\n\n"
        f'"{feedback}"\n\n'
        f'Please update the plan file "{plan_file}" to incorporate this feedback.'
    )


def render_review_prompt(
    *,
    title: str,
    diff: str,
    description: str = "",
    content: str = "",
    prd: str = "",
    documentation: str = "",
    plan: str = "",
) -> str:
    """Build the reviewer prompt; callers pass pre-truncated diff and PRD text."""
    sections = []
    if description:
        sections.append(f"\nTask Description:\n{description}\n")
    if content:
        sections.append(f"\nTask Requirements/Content:\n{content}\n")
    if prd:
        sections.append(f"\nProduct Requirements Document (PRD):\n{prd}\n")
    if documentation:
        sections.append(f"\n{documentation}")
    if plan:
        sections.append(f"\nImplementation Plan:\n{plan}\n")
    return (
        "You are a strict code reviewer. Review the following changes against the task requirements.\n\n"
        f"# Task: {title}\n"
        f"{''.join(sections)}\n"
        "# Git Diff (changes to review):\n"
        f"```diff\n{diff}\n```\n\n"
        "Analyze the changes for:\n"
        "1. Correctness - Do the changes solve the task requirements?\n"
        "2. Completeness - Are all requirements addressed?\n"
        "3. Code Quality - Clean code, best practices\n"
        "4. Potential Bugs - Any obvious issues?\n\n"
        "Return a JSON object:\n"
        "{\n"
        '  "approved": boolean,\n'
        '  "feedback": "Detailed feedback explaining why it was rejected or approved, referencing specific requirements"\n'
        "}\n"
    )


__all__ = [
    "COMMIT_INSTRUCTION",
    "EXECUTION_SYSTEM_PROMPT",
    "FOLLOW_PLAN_INSTRUCTION",
    "RETRY_HINTS",
    "REVIEW_SYSTEM_PROMPT",
    "render_documentation",
    "render_plan_feedback_prompt",
    "render_planning_prompt",
    "render_retry_context",
    "render_review_prompt",
]
