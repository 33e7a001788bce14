"""
Tests for the turn routing policy.

Routing is a pure function of the message text and attachment state, so
these tests need no provider and no API key.

Run with: python -m pytest tests/test_routing.py -v
"""

import pytest

from agent.routing import (
    CODE_KEYWORDS, PYTHON_ONLY_KEYWORDS, RoutingInputs, TurnMode, route,
)
from data_ops.attachments import AttachmentState, load_attachment


CSV_TEXT = "title,views,likes\nA,100,10\nB,200,30\n"
JSON_TEXT = '[{"title": "A", "view_count": 10}, {"title": "B", "view_count": 20}]'


def csv_inputs(text, fresh=False, source=True):
    return RoutingInputs(
        text=text, has_tabular=True, fresh_tabular=fresh, has_tabular_source=source,
    )


class TestKeywordPatterns:
    @pytest.mark.parametrize("text", [
        "run a regression of likes on views",
        "show me a Histogram",
        "what's the distribution of views",
        "make a heatmap",
        "a time series of views",
        "draw a box plot",
    ])
    def test_python_only_matches(self, text):
        assert PYTHON_ONLY_KEYWORDS.search(text)

    @pytest.mark.parametrize("text", [
        "what's the average views",
        "who is the president of France",
        "show the top 5 posts",
    ])
    def test_python_only_does_not_match(self, text):
        assert PYTHON_ONLY_KEYWORDS.search(text) is None

    def test_code_keywords_match_stems(self):
        assert CODE_KEYWORDS.search("analyze this")
        assert CODE_KEYWORDS.search("Plotting is fun")
        assert CODE_KEYWORDS.search("calculate 2**10")
        assert CODE_KEYWORDS.search("tell me a joke") is None


class TestRoute:
    def test_python_only_with_csv_encodes(self):
        decision = route(csv_inputs("run a regression of likes on views"))
        assert decision.mode is TurnMode.PYTHON_ANALYSIS
        assert decision.encode_data is True
        assert "regression" in decision.matched

    def test_python_only_without_source_does_not_encode(self):
        decision = route(csv_inputs("histogram of views", source=False))
        assert decision.mode is TurnMode.PYTHON_ANALYSIS
        assert decision.encode_data is False

    def test_python_only_without_data(self):
        decision = route(RoutingInputs(text="plot a histogram of random numbers"))
        assert decision.mode is TurnMode.PYTHON_ANALYSIS
        assert decision.encode_data is False

    def test_python_only_beats_records(self):
        decision = route(RoutingInputs(text="histogram of view counts", has_records=True))
        assert decision.mode is TurnMode.PYTHON_ANALYSIS

    def test_records_route_to_record_tools(self):
        decision = route(RoutingInputs(text="which video has the most views?", has_records=True))
        assert decision.mode is TurnMode.RECORD_TOOLS

    def test_records_with_code_intent_go_to_code_execution(self):
        decision = route(RoutingInputs(text="write code to compute 2+2", has_records=True))
        assert decision.mode is TurnMode.CODE_EXECUTION

    def test_csv_routes_to_tabular_tools(self):
        decision = route(csv_inputs("what's the average views?"))
        assert decision.mode is TurnMode.TABULAR_TOOLS
        assert decision.encode_data is False

    def test_csv_plot_stays_on_tabular_tools(self):
        """Generic plot/chart words don't leave the tabular catalog."""
        decision = route(csv_inputs("plot views for the top posts"))
        assert decision.mode is TurnMode.TABULAR_TOOLS

    def test_fresh_csv_without_keywords_searches(self):
        decision = route(csv_inputs("summarize this", fresh=True))
        assert decision.mode is TurnMode.SEARCH

    def test_fresh_csv_with_code_keyword_still_searches(self):
        """With tabular data loaded, code keywords don't count as code intent."""
        decision = route(csv_inputs("analyze this data", fresh=True))
        assert decision.mode is TurnMode.SEARCH

    def test_code_intent_without_data(self):
        decision = route(RoutingInputs(text="calculate the 20th fibonacci number"))
        assert decision.mode is TurnMode.CODE_EXECUTION
        assert decision.matched

    def test_default_is_search(self):
        decision = route(RoutingInputs(text="who won the 2022 world cup?"))
        assert decision.mode is TurnMode.SEARCH
        assert decision.matched == ()

    def test_empty_text_searches(self):
        assert route(RoutingInputs(text="")).mode is TurnMode.SEARCH

    def test_uses_tools(self):
        assert TurnMode.TABULAR_TOOLS.uses_tools
        assert TurnMode.RECORD_TOOLS.uses_tools
        assert not TurnMode.SEARCH.uses_tools
        assert not TurnMode.PYTHON_ANALYSIS.uses_tools
        assert not TurnMode.CODE_EXECUTION.uses_tools


class TestFromState:
    def test_empty_state(self):
        inputs = RoutingInputs.from_state("hi", AttachmentState())
        assert inputs == RoutingInputs(text="hi")

    def test_fresh_csv_state(self):
        state = AttachmentState()
        state.install(load_attachment("posts.csv", CSV_TEXT))
        inputs = RoutingInputs.from_state("hi", state)
        assert inputs.has_tabular
        assert inputs.fresh_tabular
        assert inputs.has_tabular_source
        assert not inputs.has_records

    def test_csv_after_first_turn(self):
        state = AttachmentState()
        state.install(load_attachment("posts.csv", CSV_TEXT))
        state.mark_turn_consumed()
        inputs = RoutingInputs.from_state("average views", state)
        assert not inputs.fresh_tabular
        assert route(inputs).mode is TurnMode.TABULAR_TOOLS

    def test_records_state(self):
        state = AttachmentState()
        state.install(load_attachment("videos.json", JSON_TEXT))
        inputs = RoutingInputs.from_state("most viewed", state)
        assert inputs.has_records
        assert not inputs.has_tabular
        assert route(inputs).mode is TurnMode.RECORD_TOOLS
