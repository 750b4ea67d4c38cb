"""Convert agent stdout lines into Thought drafts."""

from __future__ import annotations

import json
import re
from typing import Any, NamedTuple, Optional

from .output import unwrap_envelope

_STEP_RE = re.compile(r"\bstep\s+(\d+)(?:\s*(?:of|/)\s*(\d+))?", re.IGNORECASE)
_TOOL_INPUT_LIMIT = 2000

_BLOCK_TYPES = {"thinking", "text", "tool_use", "tool_call", "tool", "tool_result", "toolResult"}


class ThoughtDraft(NamedTuple):
    kind: str
    content: str
    tool_name: Optional[str] = None


def detect_step(text: str) -> Optional[tuple[int, Optional[int]]]:
    """Return ``(step, total)`` for the first "Step N [of M]" mention."""
    m = _STEP_RE.search(text or "")
    if not m:
        return None
    total = int(m.group(2)) if m.group(2) else None
    return int(m.group(1)), total


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("content") or ""))
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(p for p in parts if p)
    if content is None:
        return ""
    return json.dumps(content, default=str)


def _usage_total(usage: Any) -> int:
    if not isinstance(usage, dict):
        return 0
    total = 0
    for key in ("input_tokens", "output_tokens"):
        value = usage.get(key)
        if isinstance(value, int):
            total += value
    return total


class ThoughtExtractor:
    """Stateful line parser for one session's stdout.

    Understands stream-json agent output and falls back to treating each
    non-blank line as a text thought.
    """

    def __init__(self) -> None:
        self.saw_structured = False
        self._text_parts: list[str] = []
        self._final_result: Optional[str] = None
        self._stream_usage = 0
        self._final_usage = 0

    @property
    def usage_tokens(self) -> int:
        return self._final_usage or self._stream_usage

    def response_text(self) -> str:
        if self._final_result:
            return self._final_result
        return "\n".join(self._text_parts).strip()

    def feed(self, line: str, stream: str = "stdout") -> list[ThoughtDraft]:
        text = line.rstrip("\r\n")
        if not text.strip():
            return []
        if stream != "stdout":
            return [ThoughtDraft("text", text)]

        stripped = text.strip()
        if stripped.startswith("{"):
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                obj = None
            if isinstance(obj, dict):
                return self._feed_object(obj)

        self._text_parts.append(text)
        return [ThoughtDraft("text", text)]

    def _feed_object(self, obj: dict[str, Any]) -> list[ThoughtDraft]:
        kind = obj.get("type")
        message = obj.get("message") if isinstance(obj.get("message"), dict) else {}

        if kind in {"assistant", "user"}:
            self.saw_structured = True
            self._stream_usage += _usage_total(message.get("usage"))
            content = message.get("content")
            if isinstance(content, str):
                return self._block({"type": "text", "text": content})
            drafts: list[ThoughtDraft] = []
            for block in content if isinstance(content, list) else []:
                if isinstance(block, dict):
                    drafts.extend(self._block(block))
            return drafts

        if kind == "result":
            self.saw_structured = True
            self._final_usage = _usage_total(obj.get("usage")) or self._final_usage
            result = obj.get("result")
            if isinstance(result, str) and result.strip():
                self._final_result = result
            return []

        if kind in _BLOCK_TYPES:
            self.saw_structured = True
            return self._block(obj)

        if kind is None:
            unwrapped = unwrap_envelope(obj)
            if unwrapped:
                self.saw_structured = True
                self._text_parts.append(unwrapped)
                return [ThoughtDraft("text", unwrapped)]

        # system/init and other bookkeeping events carry nothing to show.
        return []

    def _block(self, block: dict[str, Any]) -> list[ThoughtDraft]:
        kind = block.get("type")
        if kind == "thinking":
            content = str(block.get("thinking") or block.get("text") or "")
            return [ThoughtDraft("thinking", content)] if content.strip() else []
        if kind == "text":
            content = str(block.get("text") or "")
            if not content.strip():
                return []
            self._text_parts.append(content)
            return [ThoughtDraft("text", content)]
        if kind in {"tool_use", "tool_call", "tool"}:
            name = block.get("name") or block.get("tool")
            args = block.get("input", block.get("arguments"))
            content = _text_of(args) if args is not None else ""
            return [ThoughtDraft("tool", content[:_TOOL_INPUT_LIMIT], str(name) if name else None)]
        if kind in {"tool_result", "toolResult"}:
            content = _text_of(block.get("content", block.get("output")))
            return [ThoughtDraft("toolResult", content[:_TOOL_INPUT_LIMIT])]
        return []
