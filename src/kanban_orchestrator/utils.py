"""Timestamp and identifier helpers shared by models and repositories."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def _elapsed_seconds(started: Optional[str], finished: Optional[str] = None) -> Optional[float]:
    """Seconds between two ISO timestamps; `finished` defaults to now.

    Returns None when either timestamp is missing or unparseable.
    """
    if not started:
        return None
    try:
        start = datetime.fromisoformat(started)
        end = datetime.fromisoformat(finished) if finished else datetime.now(timezone.utc)
    except ValueError:
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return round((end - start).total_seconds(), 1)
