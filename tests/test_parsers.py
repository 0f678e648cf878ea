"""Tests for the two record parsers and wire-format selection."""

import json
import logging

import pytest

from chatstream.infra.llm.base import TOKEN, RESET, TOOL_CALL, TOOL_RESULT, ERROR
from chatstream.infra.llm.parsers import (
    DeltaParser,
    PrefixParser,
    SessionState,
    WireFormat,
    make_parser,
)


def _kinds(events):
    return [(e.type, e.text or e.payload or e.error) for e in events]


def _data(obj):
    return "data: " + json.dumps(obj)


# ─── WireFormat ──────────────────────────────────────────────────────────────


class TestWireFormat:
    def test_names_and_aliases(self):
        assert WireFormat.parse("delta") is WireFormat.DELTA
        assert WireFormat.parse(" PREFIX ") is WireFormat.PREFIX
        assert WireFormat.parse("a") is WireFormat.DELTA
        assert WireFormat.parse("b") is WireFormat.PREFIX
        assert WireFormat.parse(WireFormat.PREFIX) is WireFormat.PREFIX

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError, match="Unknown wire format"):
            WireFormat.parse("ndjson")

    def test_make_parser_picks_implementation(self):
        assert isinstance(make_parser("delta"), DeltaParser)
        assert isinstance(make_parser(WireFormat.PREFIX), PrefixParser)


# ─── Format A: data: <json> ──────────────────────────────────────────────────


class TestDeltaParser:
    def setup_method(self):
        self.p = DeltaParser()
        self.state = SessionState()

    def parse(self, line):
        return self.p.parse_line(line, self.state)

    def test_delta_content_becomes_token(self):
        events = self.parse('data: {"choices":[{"delta":{"content":"hi"}}]}')
        assert _kinds(events) == [(TOKEN, "hi")]

    def test_prefix_without_space_and_surrounding_whitespace(self):
        events = self.parse('data:   {"choices":[{"delta":{"content":" x "}}]}   ')
        assert _kinds(events) == [(TOKEN, " x ")]

    def test_done_sentinel_yields_nothing(self):
        assert self.parse("data: [DONE]") == []

    def test_blank_and_non_data_lines_are_ignored(self):
        assert self.parse("") == []
        assert self.parse("   ") == []
        assert self.parse(": keep-alive") == []
        assert self.parse("event: message") == []

    def test_malformed_json_is_logged_and_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stream.parse"):
            assert self.parse("data: {not json") == []
        assert "Bad JSON" in caplog.text

    def test_error_field_string(self):
        events = self.parse(_data({"error": "rate limited"}))
        assert _kinds(events) == [(ERROR, "rate limited")]

    def test_error_field_object_uses_message(self):
        events = self.parse(_data({"error": {"message": "model overloaded", "code": 529}}))
        assert _kinds(events) == [(ERROR, "model overloaded")]

    def test_role_only_delta_yields_nothing(self):
        assert self.parse(_data({"choices": [{"delta": {"role": "assistant"}}]})) == []

    def test_empty_content_yields_nothing(self):
        assert self.parse(_data({"choices": [{"delta": {"content": ""}}]})) == []

    def test_irrelevant_payloads_yield_nothing(self):
        assert self.parse(_data({"choices": []})) == []
        assert self.parse(_data({"id": "chatcmpl-1", "object": "chat.completion.chunk"})) == []
        assert self.parse("data: [1, 2, 3]") == []
        assert self.parse('data: "just a string"') == []

    def test_heartbeat_is_ignored(self):
        assert self.parse(_data({"test": True})) == []

    def test_full_message_replaces_text(self):
        events = self.parse(_data({"choices": [{"message": {"role": "assistant", "content": "All at once"}}]}))
        assert _kinds(events) == [(RESET, None), (TOKEN, "All at once")]

    def test_state_is_untouched(self):
        self.parse(_data({"choices": [{"delta": {"content": "hi"}}]}))
        assert self.state.first_token_pending is False


# ─── Format B: <code>:<payload> ──────────────────────────────────────────────


class TestPrefixParser:
    def setup_method(self):
        self.p = PrefixParser()
        self.state = SessionState()

    def run_lines(self, *lines):
        out = []
        for line in lines:
            out.extend(self.p.parse_line(line, self.state))
        return _kinds(out)

    def test_reset_only_before_first_token_after_start(self):
        assert self.run_lines('f:{"messageId":"m1"}', '0:"hi"', '0:" there"') == [
            (RESET, None),
            (TOKEN, "hi"),
            (TOKEN, " there"),
        ]
        assert self.state.first_token_pending is False

    def test_tokens_without_start_marker_do_not_reset(self):
        assert self.run_lines('0:"a"', '0:"b"') == [(TOKEN, "a"), (TOKEN, "b")]

    def test_each_start_marker_rearms_the_reset(self):
        kinds = self.run_lines("f:1", '0:"a"', "f:2", '0:"b"')
        assert kinds == [(RESET, None), (TOKEN, "a"), (RESET, None), (TOKEN, "b")]

    def test_start_marker_alone_emits_nothing(self):
        assert self.run_lines("f:start") == []
        assert self.state.first_token_pending is True

    def test_token_falls_back_to_raw_text(self):
        assert self.run_lines("0:plain words") == [(TOKEN, "plain words")]

    def test_non_string_json_token_uses_raw_text(self):
        assert self.run_lines("0:42") == [(TOKEN, "42")]

    def test_escaped_token_is_decoded(self):
        assert self.run_lines('0:"line\\nbreak \\u00e9"') == [(TOKEN, "line\nbreak é")]

    def test_payload_may_contain_colons(self):
        assert self.run_lines('0:"a:b:c"') == [(TOKEN, "a:b:c")]

    def test_tool_call_and_result(self):
        call = {"toolCallId": "t1", "toolName": "weather", "args": {"city": "Oslo"}}
        result = {"toolCallId": "t1", "result": {"temp": 3}}
        kinds = self.run_lines("9:" + json.dumps(call), "a:" + json.dumps(result))
        assert kinds == [(TOOL_CALL, call), (TOOL_RESULT, result)]

    def test_tool_result_with_error_also_reports_error(self):
        result = {"toolCallId": "t1", "error": {"message": "tool crashed"}}
        kinds = self.run_lines("a:" + json.dumps(result))
        assert kinds == [(TOOL_RESULT, result), (ERROR, "tool crashed")]

    def test_bad_tool_json_is_skipped(self, caplog):
        with caplog.at_level(logging.ERROR, logger="stream.parse"):
            assert self.run_lines("9:{oops", "a:{oops") == []
        assert "Failed to parse tool call" in caplog.text
        assert "Failed to parse tool result" in caplog.text

    def test_completion_markers_yield_nothing(self):
        assert self.run_lines('e:{"finishReason":"stop"}', 'd:{"finishReason":"stop"}') == []

    def test_unknown_code_is_ignored_and_processing_continues(self):
        assert self.run_lines("z:garbage", '0:"ok"') == [(TOKEN, "ok")]

    def test_malformed_lines_are_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stream.parse"):
            kinds = self.run_lines("no prefix here", "ab:two-char code", ':"no code"', '0:"ok"')
        assert kinds == [(TOKEN, "ok")]
        assert "Unexpected line format" in caplog.text

    def test_blank_lines_are_ignored(self):
        assert self.run_lines("", "   ") == []
