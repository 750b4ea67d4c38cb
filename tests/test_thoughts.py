from __future__ import annotations

import json

from kanban_orchestrator.workers.thoughts import ThoughtExtractor, detect_step


def _line(obj: dict) -> str:
    return json.dumps(obj) + "\n"


def test_plain_lines_become_text_thoughts() -> None:
    extractor = ThoughtExtractor()

    drafts = extractor.feed("Working on it\n")

    assert [(d.kind, d.content) for d in drafts] == [("text", "Working on it")]
    assert extractor.feed("   \n") == []
    assert extractor.saw_structured is False
    assert extractor.response_text() == "Working on it"


def test_assistant_blocks_map_to_thought_kinds() -> None:
    extractor = ThoughtExtractor()

    drafts = extractor.feed(
        _line(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "thinking", "thinking": "Consider the layout"},
                        {"type": "text", "text": "Creating the file now"},
                        {"type": "tool_use", "name": "Write", "input": {"path": "/tmp/a.md"}},
                    ],
                    "usage": {"input_tokens": 10, "output_tokens": 5},
                },
            }
        )
    )

    assert [d.kind for d in drafts] == ["thinking", "text", "tool"]
    assert drafts[2].tool_name == "Write"
    assert "/tmp/a.md" in drafts[2].content
    assert extractor.saw_structured is True
    assert extractor.usage_tokens == 15


def test_tool_results_and_final_result() -> None:
    extractor = ThoughtExtractor()
    extractor.feed(_line({"type": "assistant", "message": {"content": [{"type": "text", "text": "partial"}]}}))

    drafts = extractor.feed(
        _line(
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "content": [{"type": "text", "text": "ok"}]}]},
            }
        )
    )
    assert [(d.kind, d.content) for d in drafts] == [("toolResult", "ok")]

    final = extractor.feed(
        _line({"type": "result", "result": "STEP_COMPLETE\nResult: done", "usage": {"input_tokens": 100, "output_tokens": 20}})
    )
    assert final == []
    assert extractor.response_text() == "STEP_COMPLETE\nResult: done"
    assert extractor.usage_tokens == 120


def test_bare_block_objects_and_system_events() -> None:
    extractor = ThoughtExtractor()

    assert [d.kind for d in extractor.feed(_line({"type": "tool_call", "name": "exec", "arguments": "ls"}))] == ["tool"]
    assert extractor.feed(_line({"type": "system", "subtype": "init"})) == []


def test_stderr_lines_do_not_feed_response_text() -> None:
    extractor = ThoughtExtractor()

    drafts = extractor.feed("warning: slow disk\n", "stderr")

    assert drafts[0].kind == "text"
    assert extractor.response_text() == ""


def test_detect_step() -> None:
    assert detect_step("Starting Step 2 of 5: build") == (2, 5)
    assert detect_step("step 3/4") == (3, 4)
    assert detect_step("### Step 1: Research") == (1, None)
    assert detect_step("no progress markers") is None
