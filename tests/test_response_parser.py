"""Tests for tool call and reasoning extraction from raw model output."""

import json

from app.utils.response_parser import (
    RAW_ARGUMENTS_KEY,
    TOOL_CALLS_MARKER,
    clean_partial,
    decode_arguments,
    format_tool_calls_block,
    parse_response,
)


def sentinel(*calls: dict) -> str:
    return format_tool_calls_block(list(calls))


class TestSentinelBlock:
    """Tests for the trailing sentinel encoding."""

    def test_extracts_calls_and_strips_block(self):
        """Test that a well-formed block yields its calls and leaves no residue."""
        raw = "I'll create the file." + sentinel(
            {"id": "call_1", "name": "write_file", "arguments": json.dumps({"path": "a.txt", "content": "hi"})},
            {"id": "call_2", "name": "run_command", "arguments": json.dumps({"command": "ls"})},
        )

        parsed = parse_response(raw)

        assert parsed.visible_text == "I'll create the file."
        assert TOOL_CALLS_MARKER not in parsed.visible_text
        assert [call.id for call in parsed.tool_calls] == ["call_1", "call_2"]
        assert parsed.tool_calls[0].arguments == {"path": "a.txt", "content": "hi"}
        assert parsed.tool_calls[1].raw_arguments == '{"command": "ls"}'

    def test_block_only_response_has_empty_visible_text(self):
        """Test a response consisting solely of tool calls."""
        parsed = parse_response(sentinel({"id": "c", "name": "read_file", "arguments": '{"path": "x"}'}))
        assert parsed.visible_text == ""
        assert len(parsed.tool_calls) == 1

    def test_malformed_arguments_fall_back_to_raw(self):
        """Test that unparsable arguments are kept under the raw key instead of dropped."""
        parsed = parse_response(sentinel({"id": "c", "name": "write_file", "arguments": '{"path": "a.txt", '}))

        assert len(parsed.tool_calls) == 1
        assert parsed.tool_calls[0].arguments == {RAW_ARGUMENTS_KEY: '{"path": "a.txt", '}

    def test_non_object_arguments_fall_back_to_raw(self):
        """Test that arguments decoding to a non-object are treated as malformed."""
        assert decode_arguments("[1, 2]") == {RAW_ARGUMENTS_KEY: "[1, 2]"}
        assert decode_arguments("") == {}

    def test_object_arguments_are_accepted(self):
        """Test vendor shapes where arguments arrive already decoded."""
        raw = "x" + sentinel({"id": "c", "name": "read_file", "input": {"path": "src/App.tsx"}})
        assert parse_response(raw).tool_calls[0].arguments == {"path": "src/App.tsx"}

    def test_function_shape_is_normalised(self):
        """Test the nested function/arguments shape."""
        raw = sentinel({"id": "c", "function": {"name": "search_files", "arguments": '{"pattern": "app"}'}})
        call = parse_response(raw).tool_calls[0]
        assert call.name == "search_files"
        assert call.arguments == {"pattern": "app"}

    def test_missing_id_is_generated(self):
        """Test that calls without an id still get a unique one."""
        raw = sentinel({"name": "run_preview", "arguments": "{}"}, {"name": "run_preview", "arguments": "{}"})
        first, second = parse_response(raw).tool_calls
        assert first.id.startswith("call_")
        assert first.id != second.id

    def test_sentinel_wins_over_tools_block(self):
        """Test that only one encoding is honoured per response."""
        raw = (
            '<tools>[{"name": "delete_file", "arguments": {"path": "a"}}]</tools>Done.'
            + sentinel({"id": "c", "name": "read_file", "arguments": '{"path": "b"}'})
        )
        parsed = parse_response(raw)
        assert [call.name for call in parsed.tool_calls] == ["read_file"]
        assert parsed.visible_text == "Done."

    def test_malformed_block_yields_no_calls(self):
        """Test that a broken block is hidden and yields no calls."""
        parsed = parse_response("Working on it\n<!--TOOL_CALLS:[{not json}]-->")
        assert parsed.tool_calls == []
        assert parsed.visible_text == "Working on it"


class TestToolsBlock:
    """Tests for the inline <tools> fallback."""

    def test_tools_block_used_when_no_sentinel(self):
        """Test the fallback encoding."""
        raw = 'Let me look.<tools>[{"id": "t1", "name": "list_directory", "arguments": {"path": ""}}]</tools>'
        parsed = parse_response(raw)

        assert parsed.visible_text == "Let me look."
        assert parsed.tool_calls[0].id == "t1"
        assert parsed.tool_calls[0].arguments == {"path": ""}

    def test_no_encoding_means_no_calls(self):
        """Test that plain text has zero tool calls."""
        parsed = parse_response("Just an answer.")
        assert parsed.tool_calls == []
        assert parsed.visible_text == "Just an answer."


class TestReasoning:
    """Tests for reasoning extraction."""

    def test_think_block_is_extracted(self):
        """Test closed reasoning tags."""
        parsed = parse_response("<think>plan the layout</think>Here is the layout.")
        assert parsed.reasoning == "plan the layout"
        assert parsed.visible_text == "Here is the layout."

    def test_thinking_block_is_extracted_after_tool_calls(self):
        """Test that reasoning stripping runs on what the tool pass leaves."""
        raw = "<thinking>need a file</thinking>Creating it." + sentinel(
            {"id": "c", "name": "write_file", "arguments": '{"path": "a", "content": ""}'}
        )
        parsed = parse_response(raw)
        assert parsed.reasoning == "need a file"
        assert parsed.visible_text == "Creating it."
        assert len(parsed.tool_calls) == 1

    def test_unterminated_think_hides_the_rest(self):
        """Test that an unterminated reasoning block never leaks into visible text."""
        parsed = parse_response("Answer first. <think>still thinking about secrets")
        assert parsed.visible_text == "Answer first."
        assert "secrets" not in parsed.visible_text
        assert parsed.reasoning == "still thinking about secrets"

    def test_no_reasoning_is_none(self):
        """Test that reasoning is absent when there are no tags."""
        assert parse_response("Hello").reasoning is None


class TestCleanPartial:
    """Tests for the in-flight display projection."""

    def test_unterminated_think_is_hidden(self):
        """Test the projection excludes everything from an open reasoning tag."""
        assert clean_partial("Visible <think>hidden so far") == "Visible"

    def test_partial_sentinel_is_hidden(self):
        """Test that a sentinel still streaming in is not shown."""
        assert clean_partial('Writing.\n<!--TOOL_CALLS:[{"id": "c", "na') == "Writing."

    def test_trailing_marker_prefix_is_hidden(self):
        """Test that text that may grow into a marker is held back."""
        assert clean_partial("Hello <thi") == "Hello"
        assert clean_partial("Hello <!--TOO") == "Hello"

    def test_completed_blocks_are_removed(self):
        """Test that finished blocks disappear from the projection."""
        raw = "<think>x</think>Done." + sentinel({"id": "c", "name": "run_preview", "arguments": "{}"})
        assert clean_partial(raw) == "Done."

    def test_plain_less_than_is_kept(self):
        """Test that ordinary text with '<' is not swallowed."""
        assert clean_partial("a < b and <div>") == "a < b and <div>"
