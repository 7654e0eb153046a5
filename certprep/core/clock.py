"""Naive-UTC clock shared by services so persisted timestamps compare consistently."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time without tzinfo (the form stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
