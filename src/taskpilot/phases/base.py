"""Helpers shared by the phase modules for structured artifacts."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..utils.slug import slugify

LOGGER = logging.getLogger(__name__)


def json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return json_safe(value.value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        return json_safe(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def write_artifact(root: Path, kind: str, identifier: str, payload: Any) -> Optional[Path]:
    """Persist ``payload`` as JSON under ``root/<kind>s/``.

    Returns the written path, or ``None`` when the directory is not writable.
    """

    target_dir = root / f"{kind}s"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "kind": kind,
        "id": identifier,
        "result": json_safe(payload),
    }
    file_name = "__".join([kind, slugify(identifier, fallback=kind, max_length=60), timestamp]) + ".json"
    path = target_dir / file_name
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError as error:
        LOGGER.warning("Could not write %s artifact %s: %s", kind, path, error)
        return None
    return path


__all__ = ["json_safe", "write_artifact"]
