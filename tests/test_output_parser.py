from __future__ import annotations

import json

from kanban_orchestrator.workers.output import (
    augment_prompt,
    extract_response_text,
    extract_tokens,
    parse_agent_output,
    strip_json_metadata,
)


def test_parse_complete_block_with_none_lists() -> None:
    result = parse_agent_output("STEP_COMPLETE\nResult: ok\nFiles Created: none\nURLs: none\nNotes: done")

    assert result.status == "complete"
    assert result.result == "ok"
    assert result.files == ()
    assert result.urls == ()
    assert result.notes == "done"
    assert result.error is None


def test_parse_error_block() -> None:
    result = parse_agent_output("STEP_ERROR\nResult: attempted X\nError: disk full")

    assert result.status == "error"
    assert result.error == "disk full"
    assert result.result == "attempted X"


def test_missing_markers_yield_unknown_with_empty_lists() -> None:
    result = parse_agent_output("I did some things but forgot the footer.")

    assert result.status == "unknown"
    assert result.files == ()
    assert result.urls == ()
    assert result.error is None


def test_unmarked_output_ignores_file_and_url_sections() -> None:
    result = parse_agent_output(
        "Result: wrote a report\n"
        "Files created:\n"
        "/tmp/report.md\n"
        "URLs: https://example.com/report\n"
        "Notes: no footer marker"
    )

    assert result.status == "unknown"
    assert result.files == ()
    assert result.urls == ()
    assert result.result == "wrote a report"


def test_empty_input_is_unknown() -> None:
    result = parse_agent_output("")

    assert result.status == "unknown"
    assert result.result == ""
    assert result.tokens_used == 0


def test_files_are_split_per_line_and_bullets_dropped() -> None:
    text = "\n".join(
        [
            "STEP_COMPLETE",
            "Result: wrote two files",
            "Files Created:",
            "  /tmp/out/a.md  ",
            "- a bullet the agent added",
            "",
            "~/out/b.md",
            "URLs: None",
        ]
    )

    result = parse_agent_output(text)

    assert result.files == ("/tmp/out/a.md", "~/out/b.md")
    assert result.urls == ()


def test_urls_keep_only_http_entries() -> None:
    text = "STEP_COMPLETE\nURLs: https://example.com/repo\nsee above\nhttp://localhost:3000\nNotes: n"

    result = parse_agent_output(text)

    assert result.urls == ("https://example.com/repo", "http://localhost:3000")


def test_result_spans_lines_until_next_header() -> None:
    text = "STEP_COMPLETE\nResult: first line\nsecond line\nNotes: short"

    result = parse_agent_output(text)

    assert result.result == "first line\nsecond line"
    assert result.notes == "short"


def test_markdown_bold_headers_are_recognised() -> None:
    text = "STEP_COMPLETE\n**Result:** built the page\n**Files Created:** None\n**Notes**: ok"

    result = parse_agent_output(text)

    assert result.result == "built the page"
    assert result.files == ()
    assert result.notes == "ok"


def test_fields_come_from_block_after_last_marker() -> None:
    text = "Earlier draft.\nResult: stale\nSTEP_COMPLETE\nResult: fresh\nNotes: final"

    result = parse_agent_output(text)

    assert result.result == "fresh"


def test_first_occurrence_of_a_header_wins() -> None:
    result = parse_agent_output("STEP_COMPLETE\nResult: first\nResult: second\nNotes: n")

    assert result.result == "first"


def test_complete_marker_takes_precedence_over_error_marker() -> None:
    result = parse_agent_output("STEP_ERROR\nError: transient\nRetried.\nSTEP_COMPLETE\nResult: done")

    assert result.status == "complete"
    assert result.result == "done"


def test_extract_tokens() -> None:
    assert extract_tokens("Tokens used: 1234") == 1234
    assert extract_tokens("tokens used 77 so far") == 77
    assert extract_tokens("no usage here") == 0
    assert parse_agent_output("STEP_COMPLETE\nResult: ok\nNotes: Tokens used: 42").tokens_used == 42


def test_extract_response_text_unwraps_payload_envelope() -> None:
    raw = json.dumps(
        {
            "payloads": [{"text": "STEP_COMPLETE\nResult: ok"}],
            "meta": {"durationMs": 1200, "agentMeta": {"model": "x"}},
        }
    )

    assert extract_response_text(raw) == "STEP_COMPLETE\nResult: ok"


def test_extract_response_text_prefers_response_key() -> None:
    raw = json.dumps({"response": "hello", "content": "ignored"})

    assert extract_response_text(raw) == "hello"


def test_extract_response_text_keeps_plain_text() -> None:
    assert extract_response_text("  plain output\n") == "plain output"


def test_strip_json_metadata_cleans_leftovers() -> None:
    text = 'Summary line\\nSecond line\n}\n]\n\n\n\nTail'

    assert strip_json_metadata(text) == "Summary line\nSecond line\n\nTail"


def test_augment_prompt_appends_contract_footer() -> None:
    prompt = augment_prompt("Write a poem.\n\n")

    assert prompt.startswith("Write a poem.")
    assert "STEP_COMPLETE" in prompt
    assert "STEP_ERROR" in prompt
    assert "Files Created:" in prompt
