"""Tests for agent/prompts.py — system prompt and per-turn prompt assembly."""

import base64
from unittest.mock import MagicMock

from agent.llm.base import STREAM_CODE_EXECUTION, STREAM_SEARCH
from agent.messages import ToolCallRecord
from agent.prompts import (
    INSTRUCTIONS_PREAMBLE, build_turn_prompt, encode_source, format_card, format_chart,
    format_tool_result, get_system_prompt, record_prefix, stream_capability,
    tabular_prefix, tabular_session_prefix, user_prefix,
)
from agent.routing import RoutingDecision, TurnMode
from data_ops.attachments import AttachmentState, load_attachment
from data_ops.results import ToolResult


CSV_TEXT = "title,views,likes\nFirst post,100,10\nSecond post,200,30\nThird post,300,20\n"
JSON_TEXT = '[{"title": "A", "view_count": 10, "release_date": "2024-01-01"}]'


def csv_state(fresh=True):
    state = AttachmentState()
    state.install(load_attachment("posts.csv", CSV_TEXT))
    if not fresh:
        state.mark_turn_consumed()
    return state


def json_state():
    state = AttachmentState()
    state.install(load_attachment("videos.json", JSON_TEXT))
    return state


class TestSystemPrompt:
    def test_default_includes_date_and_preamble(self):
        prompt = get_system_prompt()
        assert prompt.startswith(INSTRUCTIONS_PREAMBLE)
        assert "Today's date is" in prompt
        assert "{today}" not in prompt

    def test_custom_prompt(self):
        prompt = get_system_prompt("  Answer in French.  ")
        assert prompt == INSTRUCTIONS_PREAMBLE + "Answer in French."


class TestPrefixes:
    def test_user_prefix(self):
        assert user_prefix("Ada") == "[User: Ada]\n\n"
        assert user_prefix("") == ""
        assert user_prefix("   ") == ""

    def test_encode_source(self):
        encoded, truncated = encode_source("a,b\n1,2\n")
        assert base64.b64decode(encoded).decode() == "a,b\n1,2\n"
        assert truncated is False

    def test_encode_source_truncates(self):
        encoded, truncated = encode_source("x" * 20, limit=5)
        assert base64.b64decode(encoded).decode() == "xxxxx"
        assert truncated is True

    def test_tabular_prefix_without_encoding(self):
        ctx = csv_state().tabular
        prefix = tabular_prefix(ctx)
        assert prefix.startswith('[CSV File: "posts.csv" | 3 rows | Columns: ')
        assert "views" in prefix.splitlines()[0]
        assert ctx.summary in prefix
        assert "base64" not in prefix
        assert prefix.endswith("\n\n---\n\n")

    def test_tabular_prefix_with_encoding(self):
        ctx = csv_state().tabular
        prefix = tabular_prefix(ctx, encode=True)
        encoded, _ = encode_source(CSV_TEXT)
        assert f'base64.b64decode("{encoded}")' in prefix
        assert "pd.read_csv(io.BytesIO(" in prefix
        assert "truncated" not in prefix

    def test_tabular_prefix_truncation_note(self):
        ctx = csv_state().tabular
        prefix = tabular_prefix(ctx, encode=True, encoded_limit=10)
        assert "truncated to its first 10 characters" in prefix

    def test_session_prefix(self):
        ctx = csv_state().tabular
        prefix = tabular_session_prefix(ctx)
        assert prefix.startswith("[CSV columns: title, views, likes")
        assert "base64" not in prefix

    def test_record_prefix(self):
        ctx = json_state().records
        assert record_prefix(ctx) == (
            '[JSON: "videos.json" | 1 records | Fields: title, view_count, release_date]\n\n'
        )


class TestBuildTurnPrompt:
    def test_plain_question(self):
        tp = build_turn_prompt("who won?", AttachmentState(), RoutingDecision(TurnMode.SEARCH))
        assert tp.prompt == "who won?"
        assert tp.display == "who won?"

    def test_user_name_prefix(self):
        tp = build_turn_prompt("hi", AttachmentState(), RoutingDecision(TurnMode.SEARCH), user_name="Ada")
        assert tp.prompt == "[User: Ada]\n\nhi"
        assert tp.display == "hi"

    def test_fresh_csv_gets_full_context(self):
        tp = build_turn_prompt("", csv_state(), RoutingDecision(TurnMode.SEARCH), attached_kind="csv")
        assert '[CSV File: "posts.csv"' in tp.prompt
        assert tp.prompt.endswith("Please analyze this CSV data.")
        assert tp.display == "(CSV attached)"

    def test_followup_csv_gets_session_prefix(self):
        tp = build_turn_prompt("average views?", csv_state(fresh=False), RoutingDecision(TurnMode.TABULAR_TOOLS))
        assert tp.prompt.startswith("[CSV columns:")
        assert "[CSV File:" not in tp.prompt
        assert tp.prompt.endswith("average views?")

    def test_python_analysis_embeds_encoded_csv(self):
        decision = RoutingDecision(TurnMode.PYTHON_ANALYSIS, encode_data=True)
        tp = build_turn_prompt("histogram of views", csv_state(fresh=False), decision)
        assert "b64decode" in tp.prompt
        # Display content never carries the encoded payload
        assert tp.display == "histogram of views"

    def test_json_prefix(self):
        tp = build_turn_prompt("", json_state(), RoutingDecision(TurnMode.RECORD_TOOLS), attached_kind="json")
        assert tp.prompt.startswith('[JSON: "videos.json"')
        assert tp.prompt.endswith("Please analyze this JSON data.")
        assert tp.display == "(JSON attached)"

    def test_image_only(self):
        tp = build_turn_prompt("", AttachmentState(), RoutingDecision(TurnMode.SEARCH), has_images=True)
        assert tp.prompt == "What do you see in this image?"
        assert tp.display == "(Image)"


class TestStreamCapability:
    def test_code_modes(self):
        assert stream_capability(TurnMode.PYTHON_ANALYSIS) == STREAM_CODE_EXECUTION
        assert stream_capability(TurnMode.CODE_EXECUTION) == STREAM_CODE_EXECUTION

    def test_search(self):
        assert stream_capability(TurnMode.SEARCH) == STREAM_SEARCH


class TestFormatting:
    def test_format_chart(self):
        result = ToolResult.chart("bar", {
            "metric": "views", "label_column": "title",
            "data": [{"label": f"p{i}", "value": i} for i in range(12)],
        })
        text = format_chart(result)
        assert text.startswith("[Chart: views by title | 12 points]")
        assert "  p0: 0" in text
        assert "... and 2 more" in text

    def test_format_metric_vs_time(self):
        result = ToolResult.chart("metric_vs_time", {
            "metric_field": "view_count", "date_field": "release_date", "data": [],
        })
        assert format_chart(result) == "[Chart: view_count over release_date | 0 points]"

    def test_format_card(self):
        card = ToolResult.card({"title": "B", "url": "https://example.com/b"})
        assert format_card(card) == "[Record: B]\n  https://example.com/b"

    def test_format_tool_result(self):
        ok = ToolCallRecord("compute_stats", {}, ToolResult.plain({"mean": 1}))
        err = ToolCallRecord("compute_stats", {}, ToolResult.failure("bad column"))
        assert format_tool_result(ok) == "compute_stats: ok"
        assert format_tool_result(err) == "Error: bad column"
