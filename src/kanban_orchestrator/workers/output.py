"""Parse the structured footer agents print at the end of a run.

Agents are told to finish with either::

    STEP_COMPLETE
    Result: ...
    Files Created: ...
    URLs: ...
    Notes: ...

or the same block headed by ``STEP_ERROR`` with an extra ``Error:`` field.
Every field is optional. Missing markers are not an error here: the
supervisor's decision table decides whether a run succeeded.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from ..constants import MARKER_COMPLETE, MARKER_ERROR
from ..domain.models import AgentResult

_FIELDS = {
    "result": "result",
    "files created": "files",
    "urls": "urls",
    "notes": "notes",
    "error": "error",
}

_HEADER_RE = re.compile(
    r"^\s*\**\s*(result|files created|urls|notes|error)\s*\**\s*:\s*\**\s*(.*)$",
    re.IGNORECASE,
)
_MARKER_RE = re.compile(rf"{MARKER_COMPLETE}|{MARKER_ERROR}")
_TOKENS_RE = re.compile(r"tokens used[\s:]*(\d+)", re.IGNORECASE)
_BULLETS = ("-", "*", "•")


OUTPUT_CONTRACT_FOOTER = f"""

---

**REQUIRED OUTPUT FORMAT:**
You must end your response with exactly this format:

{MARKER_COMPLETE}
Result: [Detailed description of what you accomplished]
Files Created: [List each file with full path, one per line, or "None"]
URLs: [List each URL, one per line, or "None"]
Notes: [Any important details, errors, or context]

OR if you failed:

{MARKER_ERROR}
Result: [What you attempted]
Error: [Specific error message]
Files Created: None
URLs: None
Notes: [What went wrong]
"""


def augment_prompt(prompt: str) -> str:
    """Append the structured-output footer every agent must honour."""
    return prompt.rstrip() + OUTPUT_CONTRACT_FOOTER


def _contract_block(text: str) -> str:
    """Return the text after the last status marker, or all of it."""
    last: Optional[re.Match[str]] = None
    for last in _MARKER_RE.finditer(text):
        pass
    return text[last.end():] if last else text


def _split_fields(block: str) -> dict[str, str]:
    fields: dict[str, list[str]] = {}
    current: Optional[str] = None
    for line in block.splitlines():
        m = _HEADER_RE.match(line)
        if m:
            name = _FIELDS[m.group(1).lower()]
            if name in fields:
                # Only the first occurrence of a header counts.
                current = None
                continue
            current = name
            fields[name] = [m.group(2)]
            continue
        if current is not None:
            fields[current].append(line)
    return {name: "\n".join(lines).strip() for name, lines in fields.items()}


def _is_none(value: str) -> bool:
    return value.strip().lower() == "none"


def _parse_files(value: str) -> list[str]:
    if not value or _is_none(value):
        return []
    out: list[str] = []
    for line in value.splitlines():
        line = line.strip()
        if not line or line.startswith(_BULLETS):
            continue
        out.append(line)
    return out


def _parse_urls(value: str) -> list[str]:
    if not value or _is_none(value):
        return []
    return [line.strip() for line in value.splitlines() if line.strip().startswith("http")]


def extract_tokens(text: str) -> int:
    m = _TOKENS_RE.search(text or "")
    return int(m.group(1)) if m else 0


def parse_agent_output(raw_output: str) -> AgentResult:
    """Turn raw agent text into an `AgentResult`.

    Args:
        raw_output: The agent's final response text.

    Returns:
        The parsed result. Absent markers yield ``status="unknown"`` with
        empty lists.
    """
    text = raw_output or ""
    if MARKER_COMPLETE in text:
        status = "complete"
    elif MARKER_ERROR in text:
        status = "error"
    else:
        status = "unknown"

    fields = _split_fields(_contract_block(text))
    error = fields.get("error") or None
    # Without a marker there is no contract block to trust for artifact claims.
    files = tuple(_parse_files(fields.get("files", ""))) if status != "unknown" else ()
    urls = tuple(_parse_urls(fields.get("urls", ""))) if status != "unknown" else ()

    return AgentResult(
        status=status,
        result=fields.get("result", ""),
        files=files,
        urls=urls,
        notes=fields.get("notes", ""),
        error=error,
        tokens_used=extract_tokens(text),
    )


def unwrap_envelope(obj: Any) -> Optional[str]:
    """Pull response text out of a JSON envelope printed by the agent CLI."""
    if not isinstance(obj, dict):
        return None
    response = obj.get("response")
    if isinstance(response, str) and response:
        return response
    payloads = obj.get("payloads")
    if isinstance(payloads, list):
        parts = []
        for payload in payloads:
            if not isinstance(payload, dict):
                continue
            part = payload.get("content") or payload.get("text") or ""
            if isinstance(part, str) and part:
                parts.append(part)
        if parts:
            return "\n".join(parts)
    for key in ("content", "result"):
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


_META_BLOCK_RE = re.compile(r'"meta"\s*:\s*\{[\s\S]*?\}\s*\}')
_PAYLOADS_RE = re.compile(r'"payloads"\s*:\s*\[[\s\S]*?\]\s*')
_ORPHAN_LINE_RE = re.compile(r"^\s*[\[\]{}],?\s*$", re.MULTILINE)
_EMPTY_OBJ_RE = re.compile(r"\{\s*\}|\[\s*\]")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def strip_json_metadata(text: str) -> str:
    """Remove CLI metadata fragments that leak into plain-text output."""
    if not text:
        return ""
    cleaned = _META_BLOCK_RE.sub("", text)
    cleaned = _PAYLOADS_RE.sub("", cleaned)
    cleaned = _ORPHAN_LINE_RE.sub("", cleaned)
    cleaned = _EMPTY_OBJ_RE.sub("", cleaned)
    cleaned = cleaned.replace("\\n", "\n").replace('\\"', '"')
    cleaned = _BLANK_RUN_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def extract_response_text(raw_stdout: str) -> str:
    """Recover the agent's response from raw stdout.

    A whole-stdout JSON envelope is unwrapped; anything else is treated as
    plain text with stray metadata stripped.
    """
    text = (raw_stdout or "").strip()
    if not text:
        return ""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return strip_json_metadata(text)
    unwrapped = unwrap_envelope(obj)
    if unwrapped is None:
        return text
    return strip_json_metadata(unwrapped)
