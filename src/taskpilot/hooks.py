"""Execution lifecycle listeners."""

from __future__ import annotations

import logging
from typing import Iterable, List, Protocol

LOGGER = logging.getLogger(__name__)


class ExecutionListener(Protocol):
    def on_start(self, task_id: str, tool: str) -> None: ...

    def on_end(self, task_id: str, success: bool) -> None: ...

    def on_error(self, task_id: str, error: BaseException) -> None: ...


class LoggingListener:
    """Writes lifecycle events to the module logger."""

    def on_start(self, task_id: str, tool: str) -> None:
        LOGGER.info("execution:start task=%s tool=%s", task_id, tool)

    def on_end(self, task_id: str, success: bool) -> None:
        LOGGER.info("execution:end task=%s success=%s", task_id, success)

    def on_error(self, task_id: str, error: BaseException) -> None:
        LOGGER.info("execution:error task=%s error=%s", task_id, error)


class ExecutionHooks:
    """Fan events out to listeners; a failing listener never breaks the pipeline."""

    def __init__(self, listeners: Iterable[ExecutionListener] = ()) -> None:
        self._listeners: List[ExecutionListener] = list(listeners)

    def add(self, listener: ExecutionListener) -> None:
        self._listeners.append(listener)

    def emit_start(self, task_id: str, tool: str) -> None:
        for listener in self._listeners:
            try:
                listener.on_start(task_id, tool)
            except Exception:  # noqa: BLE001 - listener failures are isolated
                LOGGER.exception("Listener failed handling execution:start for %s", task_id)

    def emit_end(self, task_id: str, success: bool) -> None:
        for listener in self._listeners:
            try:
                listener.on_end(task_id, success)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener failed handling execution:end for %s", task_id)

    def emit_error(self, task_id: str, error: BaseException) -> None:
        for listener in self._listeners:
            try:
                listener.on_error(task_id, error)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener failed handling execution:error for %s", task_id)


__all__ = ["ExecutionHooks", "ExecutionListener", "LoggingListener"]
