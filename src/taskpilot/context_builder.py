"""Assemble the prompt handed to the coding agent for one attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from . import prompts
from .memory.schema import Task

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ContextPackage:
    """Container for the system and user prompts supplied to the agent."""

    system_prompt: str
    user_prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        """Single message for agents that accept one prompt argument."""
        if not self.system_prompt:
            return self.user_prompt
        return f"{self.system_prompt.strip()}\n\n{self.user_prompt}"


class ContextBuilder:
    """Collects project context (stack, documentation, PRD) around a task."""

    def __init__(
        self,
        repo_root: Path | str,
        *,
        stack: str = "",
        prd_path: Path | str | None = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.stack = stack.strip()
        if prd_path is not None:
            prd = Path(prd_path)
            self.prd_path: Optional[Path] = prd if prd.is_absolute() else self.repo_root / prd
        else:
            self.prd_path = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, repo_root: Path | str) -> "ContextBuilder":
        context_section = config.get("context") or {}
        paths_section = config.get("paths") or {}
        stack = context_section.get("stack") if isinstance(context_section, Mapping) else None
        prd = paths_section.get("prd") if isinstance(paths_section, Mapping) else None
        return cls(repo_root, stack=str(stack or ""), prd_path=prd or None)

    def load_prd(self) -> Optional[str]:
        """Return the PRD text, or ``None`` when not configured or unreadable."""
        if self.prd_path is None:
            return None
        try:
            return self.prd_path.read_text(encoding="utf-8")
        except OSError as error:
            LOGGER.warning("Failed to read PRD file %s: %s", self.prd_path, error)
            return None

    @staticmethod
    def documentation_section(task: Task) -> str:
        if task.documentation is None:
            return ""
        return prompts.render_documentation(task.documentation.recap, task.documentation.files)

    def build(
        self,
        task: Task,
        *,
        plan: Optional[str] = None,
        retry_context: str = "",
        include_prd: bool = False,
    ) -> ContextPackage:
        """Compose the execution prompt; ``plan`` is already the final plan text."""
        sections: list[str] = []
        if retry_context:
            sections.append(retry_context.rstrip() + "\n")
        if plan:
            sections.append(f"# Implementation Plan\n{plan.strip()}\n")

        task_lines = [f"# Task: {task.title}"]
        if task.description.strip():
            task_lines.append(task.description.strip())
        if task.content.strip():
            task_lines.append("")
            task_lines.append(task.content.strip())
        sections.append("\n".join(task_lines) + "\n")

        sections.append(f"# Technology Stack\n{self.stack or 'Not specified'}\n")

        documentation = self.documentation_section(task)
        if documentation:
            sections.append(documentation)

        prd_loaded = False
        if include_prd:
            prd = self.load_prd()
            if prd:
                sections.append(f"# Product Requirements Document\n{prd.strip()}\n")
                prd_loaded = True

        sections.append(prompts.COMMIT_INSTRUCTION)
        return ContextPackage(
            system_prompt=prompts.EXECUTION_SYSTEM_PROMPT,
            user_prompt="\n".join(sections),
            metadata={
                "task_id": task.id,
                "has_plan": bool(plan),
                "is_retry": bool(retry_context),
                "prd": prd_loaded,
            },
        )


__all__ = ["ContextBuilder", "ContextPackage"]
