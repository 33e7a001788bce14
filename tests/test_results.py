"""Tests for data_ops/results.py and data_ops/fields.py."""

import math

import numpy as np

from data_ops.fields import find_name, normalize_name, resolve_name
from data_ops.results import ResultKind, ToolResult, sanitize_for_json


class TestToolResult:

    def test_plain_for_model(self):
        body = ToolResult.plain({"mean": 1.5}).for_model()
        assert body == {"status": "success", "mean": 1.5}

    def test_error_for_model(self):
        body = ToolResult.failure("bad column").for_model()
        assert body == {"status": "error", "error": "bad column"}

    def test_chart_and_card_tags(self):
        chart = ToolResult.chart("metric_vs_time", {"data": []})
        assert chart.kind is ResultKind.CHART
        assert chart.for_model()["chart_type"] == "metric_vs_time"
        card = ToolResult.card({"title": "A"})
        assert card.for_model()["display_type"] == "card"

    def test_image_binary_never_sent(self):
        body = ToolResult.image(b"\x89PNG...", "image/png").for_model()
        assert body == {"status": "success", "generated": True, "mime_type": "image/png"}

    def test_nan_sanitized(self):
        body = ToolResult.plain({"r": float("nan"), "xs": [float("inf"), 1]}).for_model()
        assert body["r"] is None
        assert body["xs"] == [None, 1]

    def test_summary(self):
        assert ToolResult.failure("x").summary() == "error: x"
        assert ToolResult.plain({}).summary() == "ok"


class TestSanitize:

    def test_numpy_scalars(self):
        out = sanitize_for_json({"a": np.int64(3), "b": np.float64("nan")})
        assert out == {"a": 3, "b": None}
        assert type(out["a"]) is int

    def test_tuples_become_lists(self):
        assert sanitize_for_json((1, 2)) == [1, 2]

    def test_plain_values_untouched(self):
        assert sanitize_for_json("x") == "x"
        assert not math.isnan(sanitize_for_json(1.0))


class TestFieldNames:

    def test_normalize(self):
        assert normalize_name("View_Count") == "viewcount"
        assert normalize_name("view - count") == "viewcount"

    def test_exact_match_wins(self):
        assert find_name(["viewcount", "view_count"], "view_count") == "view_count"

    def test_normalized_match(self):
        assert find_name(["view_count"], "View Count") == "view_count"

    def test_resolve_passes_through(self):
        assert resolve_name(["a"], "zzz") == "zzz"
        assert find_name(["a"], "zzz") is None
        assert find_name(["a"], None) is None
