"""
Tests for data_ops/tabular.py — CSV parsing, engagement enrichment, summary,
slim projection and the tabular tool executors.

No API key, no network — fast and self-contained.
"""

import pytest

from data_ops.results import ResultKind
from data_ops.tabular import (
    ParseError,
    ParsedTable,
    build_slim_csv,
    compute_dataset_summary,
    enrich_with_engagement,
    execute_tabular_tool,
    parse_rows,
)


CSV_TEXT = """id,text,likes,retweets,replies,lang
1,"hello, world",10,2,1,en
2,second post,30,0,4,en
3,third post,20,5,0,fr
"""


@pytest.fixture
def table():
    return parse_rows(CSV_TEXT)


class TestParseRows:

    def test_headers_and_rows(self, table):
        assert table.headers == ["id", "text", "likes", "retweets", "replies", "lang"]
        assert table.row_count == 3
        assert table.rows[0]["text"] == "hello, world"
        assert table.rows[1]["likes"] == "30"

    def test_row_count_is_nonblank_lines_minus_header(self):
        text = "a,b\n1,2\n\n3,4\n   \n5,6\n"
        lines = [l for l in text.splitlines() if l.strip()]
        assert len(parse_rows(text).rows) == len(lines) - 1

    def test_header_trimmed_and_unquoted(self):
        parsed = parse_rows(' "name" , value \nx,1\n')
        assert parsed.headers == ["name", "value"]

    def test_short_rows_yield_none(self):
        parsed = parse_rows("a,b,c\n1\n")
        assert parsed.rows[0] == {"a": "1", "b": None, "c": None}

    def test_long_rows_truncated(self):
        parsed = parse_rows("a,b\n1,2,3\n")
        assert parsed.rows[0] == {"a": "1", "b": "2"}

    def test_empty_values_stay_strings(self):
        parsed = parse_rows("a,b\n,2\n")
        assert parsed.rows[0]["a"] == ""

    @pytest.mark.parametrize("text", ["", "\n\n", "   \n \t\n"])
    def test_empty_text_raises(self, text):
        with pytest.raises(ParseError):
            parse_rows(text)

    def test_header_only(self):
        parsed = parse_rows("a,b\n")
        assert parsed.headers == ["a", "b"]
        assert parsed.rows == []

    def test_unbalanced_quote_keeps_one_row_per_line(self):
        parsed = parse_rows('title,views\n"broken,10\nok,5\n')
        assert parsed.headers == ["title", "views"]
        assert parsed.row_count == 2
        assert parsed.rows[0] == {"title": "broken,10", "views": None}
        assert parsed.rows[1] == {"title": "ok", "views": "5"}

    def test_tab_delimited(self):
        parsed = parse_rows("title\tviews\nfirst, with comma\t12\nsecond\t7\n")
        assert parsed.headers == ["title", "views"]
        assert parsed.rows[0] == {"title": "first, with comma", "views": "12"}

    def test_semicolon_delimited(self):
        parsed = parse_rows("title;views\na;1\n")
        assert parsed.rows == [{"title": "a", "views": "1"}]

    def test_single_column_defaults_to_comma(self):
        parsed = parse_rows("title\nhello\n")
        assert parsed.headers == ["title"]
        assert parsed.rows == [{"title": "hello"}]


class TestEngagement:

    def test_adds_weighted_column(self, table):
        rows, headers = enrich_with_engagement(table.rows, table.headers)
        assert headers[-1] == "engagement"
        # likes*1 + retweets*2 + replies*3
        assert [r["engagement"] for r in rows] == ["17", "42", "30"]

    def test_inputs_not_modified(self, table):
        before = [dict(r) for r in table.rows]
        enrich_with_engagement(table.rows, table.headers)
        assert table.rows == before

    def test_no_signal_columns_returns_originals(self):
        parsed = parse_rows("name,score\na,1\n")
        rows, headers = enrich_with_engagement(parsed.rows, parsed.headers)
        assert headers is parsed.headers
        assert rows is parsed.rows

    def test_existing_engagement_column_kept(self):
        parsed = parse_rows("likes,Engagement\n1,99\n")
        rows, headers = enrich_with_engagement(parsed.rows, parsed.headers)
        assert headers == ["likes", "Engagement"]
        assert rows[0]["Engagement"] == "99"


class TestSummary:

    def test_lists_numeric_columns_only(self, table):
        summary = compute_dataset_summary(table.rows, table.headers)
        assert "likes" in summary
        assert "mean=20" in summary
        assert "- text:" not in summary
        assert "- lang:" not in summary

    def test_deterministic(self, table):
        a = compute_dataset_summary(table.rows, table.headers)
        b = compute_dataset_summary(table.rows, table.headers)
        assert a == b

    def test_no_numeric_columns(self):
        parsed = parse_rows("a\nx\n")
        assert "No numeric columns" in compute_dataset_summary(parsed.rows, parsed.headers)


class TestSlimCsv:

    def test_drops_id_columns(self, table):
        slim = build_slim_csv(table.rows, table.headers)
        header = slim.splitlines()[0]
        assert "id" not in header.split(",")
        assert "text" in header
        assert "likes" in header

    def test_bounded_by_limit_on_line_boundary(self):
        text = "text,likes\n" + "".join(f"post number {i},{i}\n" for i in range(500))
        parsed = parse_rows(text)
        slim = build_slim_csv(parsed.rows, parsed.headers, limit=300)
        assert len(slim) <= 300
        assert slim.splitlines()[-1].startswith("post number")


class TestTabularTools:

    def test_compute_stats(self, table):
        result = execute_tabular_tool("compute_stats", {"column": "Likes"}, table)
        assert result.kind is ResultKind.PLAIN
        assert result.payload["column"] == "likes"
        assert result.payload["mean"] == 20
        assert result.payload["median"] == 20
        assert result.payload["min"] == 10
        assert result.payload["max"] == 30

    def test_unresolvable_column_lists_headers(self, table):
        result = execute_tabular_tool("compute_stats", {"column": "shares"}, table)
        assert result.is_error
        assert "shares" in result.error
        assert "likes" in result.error

    def test_non_numeric_column(self, table):
        result = execute_tabular_tool("compute_stats", {"column": "lang"}, table)
        assert result.is_error
        assert "No numeric values" in result.error

    def test_empty_table(self):
        result = execute_tabular_tool("compute_stats", {"column": "a"}, ParsedTable(headers=["a"]))
        assert result.is_error

    def test_unknown_tool(self, table):
        assert execute_tabular_tool("nope", {}, table).is_error

    def test_filter_numeric(self, table):
        result = execute_tabular_tool(
            "filter_rows", {"column": "likes", "operator": ">", "value": 15}, table
        )
        assert result.payload["match_count"] == 2

    def test_filter_contains(self, table):
        result = execute_tabular_tool(
            "filter_rows", {"column": "text", "operator": "contains", "value": "POST"}, table
        )
        assert result.payload["match_count"] == 2

    def test_filter_bad_operator(self, table):
        result = execute_tabular_tool(
            "filter_rows", {"column": "likes", "operator": "~", "value": 1}, table
        )
        assert result.is_error

    def test_aggregate_total(self, table):
        result = execute_tabular_tool("aggregate", {"column": "likes", "operation": "sum"}, table)
        assert result.payload["value"] == 60

    def test_aggregate_grouped(self, table):
        result = execute_tabular_tool(
            "aggregate", {"column": "likes", "operation": "sum", "group_by": "lang"}, table
        )
        groups = {g["group"]: g["value"] for g in result.payload["groups"]}
        assert groups == {"en": 40, "fr": 20}

    def test_top_n(self, table):
        result = execute_tabular_tool("top_n", {"column": "likes", "n": 2}, table)
        assert [r["likes"] for r in result.payload["rows"]] == ["30", "20"]

    def test_bottom_n_with_columns(self, table):
        result = execute_tabular_tool(
            "top_n", {"column": "likes", "n": 1, "order": "asc", "columns": ["text"]}, table
        )
        assert result.payload["rows"] == [{"text": "hello, world", "likes": "10"}]

    def test_columns_as_single_string(self, table):
        result = execute_tabular_tool(
            "top_n", {"column": "likes", "n": 1, "columns": "text"}, table
        )
        assert result.payload["rows"] == [{"text": "second post", "likes": "30"}]

    def test_numeric_string_counts_accepted(self, table):
        result = execute_tabular_tool("top_n", {"column": "likes", "n": "2"}, table)
        assert len(result.payload["rows"]) == 2

    @pytest.mark.parametrize("tool,args", [
        ("top_n", {"column": "likes", "n": "two"}),
        ("top_n", {"column": "likes", "n": "5.5"}),
        ("filter_rows", {"column": "likes", "operator": ">", "value": 1, "limit": "many"}),
        ("plot_metric", {"metric": "likes", "limit": "ten"}),
    ])
    def test_bad_count_is_error_result(self, table, tool, args):
        result = execute_tabular_tool(tool, args, table)
        assert result.is_error
        key = "n" if "n" in args else "limit"
        assert f"'{key}'" in result.error

    def test_correlate(self):
        parsed = parse_rows("x,y\n1,2\n2,4\n3,6\n")
        result = execute_tabular_tool("correlate", {"column_a": "x", "column_b": "y"}, parsed)
        assert result.payload["pearson_r"] == pytest.approx(1.0)

    def test_correlate_constant_column(self):
        parsed = parse_rows("x,y\n1,2\n1,4\n")
        assert execute_tabular_tool("correlate", {"column_a": "x", "column_b": "y"}, parsed).is_error

    def test_plot_metric_is_chart(self, table):
        result = execute_tabular_tool("plot_metric", {"metric": "likes", "label_column": "text"}, table)
        assert result.kind is ResultKind.CHART
        assert result.chart_type == "metric_bar"
        assert result.payload["data"][0] == {"label": "second post", "value": 30}
