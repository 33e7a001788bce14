"""
Tests for data_ops/records.py — duration parsing, field resolution and the
structured-record tools.
"""

import math

import pytest

from data_ops.records import duration_to_seconds, execute_record_tool, resolve_field
from data_ops.results import ResultKind


@pytest.fixture
def videos():
    return [
        {"title": "A", "view_count": 10, "duration": "PT1M", "release_date": "2024-03-01",
         "video_id": "aaa"},
        {"title": "B", "view_count": 30, "duration": "PT2M", "release_date": "2024-01-05",
         "video_url": "https://example.com/b", "thumbnail_url": "https://example.com/b.jpg"},
        {"title": "C", "view_count": 20, "duration": "1:30", "release_date": "not a date"},
    ]


class TestDurationToSeconds:

    @pytest.mark.parametrize("value,expected", [
        ("PT1H2M3S", 3723),
        ("1:02:03", 3723),
        ("2:03", 123),
        ("PT45S", 45),
        ("90", 90),
        (12.5, 12.5),
    ])
    def test_parses(self, value, expected):
        assert duration_to_seconds(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon", "PT"])
    def test_unparseable_is_nan(self, value):
        assert math.isnan(duration_to_seconds(value))


class TestResolveField:

    def test_case_and_separator_insensitive(self):
        rows = [{"view_count": 1}]
        assert resolve_field(rows, "View_Count") == "view_count"
        assert resolve_field(rows, "viewcount") == "view_count"
        assert resolve_field(rows, "view count") == "view_count"

    def test_unresolved_passes_through(self):
        assert resolve_field([{"a": 1}], "zzz") == "zzz"

    def test_no_rows(self):
        assert resolve_field([], "x") == "x"


class TestComputeStatsJson:

    def test_numeric_field(self, videos):
        result = execute_record_tool("compute_stats_json", {"field": "ViewCount"}, videos)
        assert result.payload["field"] == "view_count"
        assert result.payload["mean"] == 20
        assert result.payload["std"] == pytest.approx(8.1650, abs=1e-3)

    def test_duration_fallback(self, videos):
        result = execute_record_tool("compute_stats_json", {"field": "duration"}, videos)
        assert result.payload["count"] == 3
        assert result.payload["min"] == 60
        assert result.payload["max"] == 120

    def test_error_names_fields(self, videos):
        result = execute_record_tool("compute_stats_json", {"field": "title"}, videos)
        assert result.is_error
        assert "view_count" in result.error

    def test_no_records(self):
        assert execute_record_tool("compute_stats_json", {"field": "x"}, []).is_error


class TestPlotMetricVsTime:

    def test_sorted_points_skip_bad_dates(self, videos):
        result = execute_record_tool("plot_metric_vs_time", {"metric_field": "view_count"}, videos)
        assert result.kind is ResultKind.CHART
        assert result.chart_type == "metric_vs_time"
        data = result.payload["data"]
        assert [p["title"] for p in data] == ["B", "A"]
        assert data[0]["label"] == "Jan 5, 24"
        assert data[0]["value"] == 30

    def test_empty_series_is_error(self, videos):
        result = execute_record_tool(
            "plot_metric_vs_time", {"metric_field": "view_count", "date_field": "missing"}, videos
        )
        assert result.is_error


class TestSelectRecord:

    @pytest.fixture
    def abc(self):
        return [
            {"title": "A", "view_count": 10, "video_id": "a"},
            {"title": "B", "view_count": 30, "video_id": "b"},
            {"title": "C", "view_count": 20, "video_id": "c"},
        ]

    @pytest.mark.parametrize("selector,title", [
        ("most viewed", "B"),
        ("least viewed", "A"),
        ("first", "A"),
        ("third", "C"),
        ("2nd", "B"),
        ("3", "C"),
        ("last", "C"),
        ("b", "B"),
    ])
    def test_selectors(self, abc, selector, title):
        result = execute_record_tool("select_record", {"selector": selector}, abc)
        assert result.kind is ResultKind.CARD
        assert result.payload["title"] == title

    def test_no_match_names_selectors(self, abc):
        result = execute_record_tool("select_record", {"selector": "zzz"}, abc)
        assert result.is_error
        assert "zzz" in result.error
        assert "most viewed" in result.error

    def test_out_of_range_ordinal(self, abc):
        assert execute_record_tool("select_record", {"selector": "tenth"}, abc).is_error

    def test_card_fields(self, videos):
        result = execute_record_tool("select_record", {"selector": "B"}, videos)
        assert result.payload == {
            "title": "B",
            "thumbnail": "https://example.com/b.jpg",
            "url": "https://example.com/b",
        }

    def test_url_from_video_id(self, videos):
        result = execute_record_tool("select_record", {"selector": "first"}, videos)
        assert result.payload["url"] == "https://www.youtube.com/watch?v=aaa"
