"""Task records and their persistence."""

from .schema import Task, TaskDocumentation, TaskPlan, TaskStatus
from .store import TaskNotFoundError, TaskRepository, TaskStore

__all__ = [
    "Task",
    "TaskDocumentation",
    "TaskNotFoundError",
    "TaskPlan",
    "TaskRepository",
    "TaskStatus",
    "TaskStore",
]
