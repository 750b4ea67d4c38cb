"""Check file claims in agent results against the filesystem."""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from loguru import logger

from ..constants import DISCOVERY_SLACK_SECONDS
from ..domain.models import AgentResult


def expand_home(path: str) -> Path:
    return Path(os.path.expanduser(path.strip()))


def verify_file_claims(result: AgentResult) -> tuple[AgentResult, list[str]]:
    """Drop claimed files that do not exist.

    The result's status is left untouched; file claims never decide success.

    Returns:
        A tuple of ``(verified_result, dropped_paths)``.
    """
    kept: list[str] = []
    dropped: list[str] = []
    for claimed in result.files:
        if expand_home(claimed).exists():
            kept.append(claimed)
        else:
            logger.warning("File claimed but not found: {}", claimed)
            dropped.append(claimed)
    if not dropped:
        return result, []
    return replace(result, files=tuple(kept)), dropped


def discover_output_files(
    folder: Path,
    since: float,
    *,
    exclude: Iterable[str] = (),
) -> list[str]:
    """List visible files in `folder` modified at or after `since`.

    Only reads the folder; files the agent wrote before `since` minus a
    small slack are ignored.
    """
    try:
        entries = sorted(folder.iterdir())
    except OSError:
        return []
    known = {str(expand_home(p).resolve()) for p in exclude}
    found: list[str] = []
    cutoff = since - DISCOVERY_SLACK_SECONDS
    for entry in entries:
        if entry.name.startswith("."):
            continue
        try:
            stat = entry.stat()
        except OSError:
            continue
        if not entry.is_file() or stat.st_mtime < cutoff:
            continue
        resolved = str(entry.resolve())
        if resolved in known:
            continue
        found.append(str(entry))
    return found


def merge_discovered(result: AgentResult, discovered: list[str]) -> AgentResult:
    if not discovered:
        return result
    known = {str(expand_home(p).resolve()) for p in result.files}
    extra = [p for p in discovered if str(Path(p).resolve()) not in known]
    if not extra:
        return result
    for path in extra:
        logger.info("Discovered output file: {}", path)
    return replace(result, files=tuple(result.files) + tuple(extra))
