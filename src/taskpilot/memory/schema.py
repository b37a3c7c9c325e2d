"""Typed records tracked by the Taskpilot task store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class TaskStatus(str, Enum):
    """Lifecycle states for a task."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskDocumentation(RecordModel):
    """Documentation recap attached to a task by earlier analysis."""

    recap: str = ""
    files: List[str] = Field(default_factory=list)


class Task(RecordModel):
    """Single unit of work, optionally nested under a parent task."""

    id: str
    title: str
    description: str = ""
    content: str = ""
    status: TaskStatus = TaskStatus.TODO
    parent_id: Optional[str] = None
    documentation: Optional[TaskDocumentation] = None
    tags: List[str] = Field(default_factory=list)
    position: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TaskPlan(RecordModel):
    """Implementation plan stored for a task."""

    task_id: str
    plan: str
    updated_at: datetime = Field(default_factory=utc_now)
