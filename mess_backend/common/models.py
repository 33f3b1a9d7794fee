"""Column helpers shared by every ORM module."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Python-side default so timestamps are populated on flush without a reload."""
    return datetime.now(timezone.utc)
