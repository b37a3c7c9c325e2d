"""Filesystem-safe, length-limited names for artifacts."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_UNSAFE: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_RUNS: Pattern[str] = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Lowercase ``value`` and replace unsafe runs with single hyphens.

    Slugs longer than ``max_length`` keep a prefix plus a short digest of the
    full slug so distinct ids stay distinct after truncation.
    """

    slug = _clean(value or "") or _clean(fallback) or "item"
    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    keep = max(max_length - len(digest) - 1, 1)
    prefix = slug[:keep].rstrip("-") or slug[:keep]
    return f"{prefix}-{digest}"


def _clean(value: str) -> str:
    slug = _UNSAFE.sub("-", value.strip().lower())
    return _HYPHEN_RUNS.sub("-", slug).strip("-")


__all__ = ["slugify"]
