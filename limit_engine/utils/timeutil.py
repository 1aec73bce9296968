"""Timestamp helpers.

All persisted timestamps are naive UTC so they compare identically on SQLite
(which drops tzinfo) and PostgreSQL.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_ago(seconds: float, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(seconds=seconds)
