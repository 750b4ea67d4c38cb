"""Configure loguru and format compact session summaries for logs."""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger

from .utils import _elapsed_seconds


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> | "
            "{message}"
        ),
    )


def _clip(text: str, limit: int = 240) -> str:
    text = text.strip()
    return (text[:limit] + "…") if len(text) > limit else text


def summarize_session(session: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a finished session.

    Args:
        session: A `SessionRecord` (or anything exposing the same attributes).

    Returns:
        A dictionary suitable for a single log line.
    """
    if session is None:
        return {"session": None}

    d: dict[str, Any] = {
        "session": getattr(session, "id", None),
        "task": getattr(session, "task_id", None),
        "kind": getattr(session, "kind", None),
        "status": getattr(session, "status", None),
        "exit_code": getattr(session, "exit_code", None),
        "thoughts_n": len(getattr(session, "thoughts", []) or []),
        "tokens": getattr(session, "tokens_used", 0),
        "duration_s": _elapsed_seconds(getattr(session, "started_at", None), getattr(session, "finished_at", None)),
    }

    error_type = getattr(session, "error_type", None)
    if error_type:
        d["error_type"] = error_type
        d["error"] = _clip(str(getattr(session, "error", "") or ""))

    result = getattr(session, "result", None)
    if result is not None:
        d["result_status"] = result.status
        d["files_n"] = len(result.files)
        d["urls_n"] = len(result.urls)
    return d

