"""Tests for the tool catalog and its category filtering."""

import pytest

from agent.tools import (
    RECORD_CATEGORIES, TABULAR_CATEGORIES, TOOLS,
    get_tool_schemas, tool_category, validate_tool_names,
)


class TestCatalog:
    def test_every_tool_has_required_fields(self):
        for tool in TOOLS:
            assert tool["name"]
            assert tool["description"]
            assert tool["category"] in ("tabular", "records", "image")
            assert tool["parameters"]["type"] == "OBJECT"

    def test_required_params_are_declared(self):
        for tool in TOOLS:
            props = tool["parameters"]["properties"]
            for name in tool["parameters"].get("required", []):
                assert name in props, f"{tool['name']}: {name} not declared"

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate tool name"):
            validate_tool_names([{"name": "a"}, {"name": "a"}])


class TestCategoryFiltering:
    def test_no_filter_returns_all_tools(self):
        assert get_tool_schemas() == TOOLS

    def test_tabular_catalog(self):
        names = {t["name"] for t in get_tool_schemas(TABULAR_CATEGORIES)}
        assert names == {"compute_stats", "filter_rows", "aggregate", "top_n", "correlate", "plot_metric"}

    def test_record_catalog_includes_image_tool(self):
        names = {t["name"] for t in get_tool_schemas(RECORD_CATEGORIES)}
        assert names == {"compute_stats_json", "plot_metric_vs_time", "select_record", "generate_image"}

    def test_extra_names(self):
        names = {t["name"] for t in get_tool_schemas(TABULAR_CATEGORIES, extra_names=["select_record"])}
        assert "select_record" in names
        assert "compute_stats" in names

    def test_extra_names_only(self):
        names = [t["name"] for t in get_tool_schemas(extra_names=["generate_image"])]
        assert names == ["generate_image"]

    def test_unknown_category(self):
        assert get_tool_schemas(["nope"]) == []


class TestToolCategory:
    def test_known(self):
        assert tool_category("top_n") == "tabular"
        assert tool_category("select_record") == "records"
        assert tool_category("generate_image") == "image"

    def test_unknown(self):
        assert tool_category("fetch_data") is None
