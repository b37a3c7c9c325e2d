"""Durable storage layer for tasks and their implementation plans."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Protocol

from .schema import Task, TaskDocumentation, TaskPlan, TaskStatus, utc_now

DEFAULT_DB_PATH = Path(".taskpilot/tasks.sqlite")
LOGGER = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    """Raised when a task id does not resolve to a stored task."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class TaskRepository(Protocol):
    """Persistence operations the execution core relies on."""

    def get_task(self, task_id: str) -> Optional[Task]: ...

    def get_subtasks(self, task_id: str) -> List[Task]: ...

    def set_task_status(self, task_id: str, status: TaskStatus) -> None: ...

    def get_task_plan(self, task_id: str) -> Optional[TaskPlan]: ...

    def save_task_plan(self, task_id: str, plan: str) -> None: ...

    def list_tasks(
        self,
        *,
        status: Optional[TaskStatus] = None,
        tag: Optional[str] = None,
    ) -> List[Task]: ...


def _as_iso(timestamp: datetime) -> str:
    """Serialise a timestamp to a timezone-aware ISO 8601 string."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp produced by `_as_iso`."""
    return datetime.fromisoformat(value)


def _load_json(value: Optional[str], *, default: Any) -> Any:
    """Decode JSON columns while falling back to the provided default."""
    if not value:
        return default
    data = json.loads(value)
    if data is None:
        return default
    return data


class TaskStore:
    """SQLite-backed task repository."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = self._open_connection()
        self._bootstrap()

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "TaskStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Task store is closed.")
        return self._conn

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base_dir: Path | None = None) -> "TaskStore":
        paths = config.get("paths") or {}
        db_value = paths.get("db_path")
        if db_value:
            db_path = Path(db_value)
        else:
            db_path = Path(paths.get("data") or ".taskpilot") / "tasks.sqlite"
        if base_dir is not None and not db_path.is_absolute():
            db_path = base_dir / db_path
        return cls(db_path)

    def _bootstrap(self) -> None:
        self.connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                content TEXT NOT NULL,
                status TEXT NOT NULL,
                parent_id TEXT,
                documentation TEXT,
                tags TEXT NOT NULL,
                position INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(parent_id) REFERENCES tasks(id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_tasks_parent_position
                ON tasks(parent_id, position);
            CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status);

            CREATE TABLE IF NOT EXISTS task_plans (
                task_id TEXT PRIMARY KEY,
                plan TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(task_id) REFERENCES tasks(id) ON DELETE CASCADE
            );
            """
        )
        self.connection.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self.connection
            self.connection.commit()
        except Exception:
            self.connection.rollback()
            raise

    # Task operations -----------------------------------------------------------------
    def save_task(self, task: Task) -> None:
        record = task.model_copy(update={"updated_at": utc_now()})
        documentation = record.documentation.model_dump_json() if record.documentation else None
        with self._transaction():
            self.connection.execute(
                """
                INSERT INTO tasks (
                    id, title, description, content, status, parent_id,
                    documentation, tags, position, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    content = excluded.content,
                    status = excluded.status,
                    parent_id = excluded.parent_id,
                    documentation = excluded.documentation,
                    tags = excluded.tags,
                    position = excluded.position,
                    updated_at = excluded.updated_at
                """,
                (
                    record.id,
                    record.title,
                    record.description,
                    record.content,
                    record.status.value,
                    record.parent_id,
                    documentation,
                    json.dumps(record.tags),
                    record.position,
                    _as_iso(record.created_at),
                    _as_iso(record.updated_at),
                ),
            )

    def next_position(self, parent_id: Optional[str]) -> int:
        """Return the position that appends a new task after its siblings."""
        if parent_id is None:
            cursor = self.connection.execute("SELECT MAX(position) FROM tasks WHERE parent_id IS NULL")
        else:
            cursor = self.connection.execute(
                "SELECT MAX(position) FROM tasks WHERE parent_id = ?", (parent_id,)
            )
        value = cursor.fetchone()[0]
        return 0 if value is None else int(value) + 1

    def get_task(self, task_id: str) -> Optional[Task]:
        cursor = self.connection.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_task(row)

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_subtasks(self, task_id: str) -> List[Task]:
        cursor = self.connection.execute(
            "SELECT * FROM tasks WHERE parent_id = ? ORDER BY position ASC, created_at ASC",
            (task_id,),
        )
        return [self._row_to_task(row) for row in cursor.fetchall()]

    def list_tasks(
        self,
        *,
        status: Optional[TaskStatus] = None,
        tag: Optional[str] = None,
    ) -> List[Task]:
        query = "SELECT * FROM tasks"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(TaskStatus(status).value)
        query += " ORDER BY position ASC, created_at ASC"

        cursor = self.connection.execute(query, params)
        tasks = [self._row_to_task(row) for row in cursor.fetchall()]
        if tag:
            tasks = [task for task in tasks if tag in task.tags]
        return tasks

    def set_task_status(self, task_id: str, status: TaskStatus) -> None:
        timestamp = _as_iso(utc_now())
        with self._transaction():
            cursor = self.connection.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
                (TaskStatus(status).value, timestamp, task_id),
            )
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task_id)
        LOGGER.debug("Task %s -> %s", task_id, TaskStatus(status).value)

    # Plan operations -----------------------------------------------------------------
    def get_task_plan(self, task_id: str) -> Optional[TaskPlan]:
        cursor = self.connection.execute("SELECT * FROM task_plans WHERE task_id = ?", (task_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return TaskPlan(
            task_id=row["task_id"],
            plan=row["plan"],
            updated_at=_from_iso(row["updated_at"]),
        )

    def save_task_plan(self, task_id: str, plan: str) -> None:
        with self._transaction():
            self.connection.execute(
                """
                INSERT INTO task_plans (task_id, plan, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(task_id) DO UPDATE SET
                    plan = excluded.plan,
                    updated_at = excluded.updated_at
                """,
                (task_id, plan, _as_iso(utc_now())),
            )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        documentation_raw = _load_json(row["documentation"], default=None)
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            content=row["content"],
            status=row["status"],
            parent_id=row["parent_id"],
            documentation=TaskDocumentation(**documentation_raw) if documentation_raw else None,
            tags=_load_json(row["tags"], default=[]),
            position=row["position"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )


__all__ = ["DEFAULT_DB_PATH", "TaskNotFoundError", "TaskRepository", "TaskStore"]
