"""
Tool declarations for model function calling.

Each declaration defines what the model can call and which parameters it
needs. Tools are executed locally by ``agent.core`` when the model asks for
them; ``agent.tool_schema`` converts the declarations for the provider.

Categories:
- "tabular": analytic tools over the loaded CSV rows
- "records": analytic tools over the loaded JSON records
- "image": generate_image, anchored on the image attached to the message
"""

TOOLS = [
    {
        "category": "tabular",
        "name": "compute_stats",
        "description": """Compute descriptive statistics (count, mean, median, std, min, max) for one numeric CSV column.
Use this for questions like "what's the average views" or "how spread out are the likes".""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "column": {
                    "type": "STRING",
                    "description": "Column name (matched case- and separator-insensitively)"
                }
            },
            "required": ["column"]
        }
    },
    {
        "category": "tabular",
        "name": "filter_rows",
        "description": """Return the CSV rows where a column satisfies a comparison.
Numeric comparison is used when both sides are numbers, text comparison otherwise.
Operators: ==, !=, >, >=, <, <=, contains.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "column": {
                    "type": "STRING",
                    "description": "Column to test"
                },
                "operator": {
                    "type": "STRING",
                    "description": "One of ==, !=, >, >=, <, <=, contains"
                },
                "value": {
                    "type": "STRING",
                    "description": "Value to compare against"
                },
                "limit": {
                    "type": "INTEGER",
                    "description": "Maximum number of rows to return (default 20, max 50)"
                }
            },
            "required": ["column", "operator", "value"]
        }
    },
    {
        "category": "tabular",
        "name": "aggregate",
        "description": """Aggregate a numeric CSV column with sum, mean, count, min or max, optionally grouped by another column.
Grouped results are sorted by value, largest first.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "column": {
                    "type": "STRING",
                    "description": "Numeric column to aggregate"
                },
                "operation": {
                    "type": "STRING",
                    "description": "One of sum, mean, count, min, max"
                },
                "group_by": {
                    "type": "STRING",
                    "description": "Optional column to group by (e.g., 'type', 'author')"
                }
            },
            "required": ["column", "operation"]
        }
    },
    {
        "category": "tabular",
        "name": "top_n",
        "description": """Return the top (or bottom) N CSV rows ranked by a numeric column.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "column": {
                    "type": "STRING",
                    "description": "Numeric column to rank by"
                },
                "n": {
                    "type": "INTEGER",
                    "description": "Number of rows (default 10, max 50)"
                },
                "order": {
                    "type": "STRING",
                    "description": "'desc' for the top rows (default) or 'asc' for the bottom rows"
                },
                "columns": {
                    "type": "ARRAY",
                    "items": {"type": "STRING"},
                    "description": "Optional subset of columns to include in each row"
                }
            },
            "required": ["column"]
        }
    },
    {
        "category": "tabular",
        "name": "correlate",
        "description": """Compute the Pearson correlation coefficient between two numeric CSV columns.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "column_a": {
                    "type": "STRING",
                    "description": "First numeric column"
                },
                "column_b": {
                    "type": "STRING",
                    "description": "Second numeric column"
                }
            },
            "required": ["column_a", "column_b"]
        }
    },
    {
        "category": "tabular",
        "name": "plot_metric",
        "description": """Chart a numeric CSV column for the highest-ranked rows. Use this whenever the user asks to
plot, chart or visualize a metric. The chart is rendered by the client; describe it briefly
in your answer instead of repeating the numbers. Defaults to the derived "engagement" metric.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "metric": {
                    "type": "STRING",
                    "description": "Numeric column to chart (default 'engagement')"
                },
                "label_column": {
                    "type": "STRING",
                    "description": "Column used to label each bar (default: first text-like column)"
                },
                "chart_type": {
                    "type": "STRING",
                    "description": "'bar' (default) or 'line'"
                },
                "limit": {
                    "type": "INTEGER",
                    "description": "Number of rows to chart (default 20, max 50)"
                }
            },
            "required": []
        }
    },
    {
        "category": "records",
        "name": "compute_stats_json",
        "description": """Compute descriptive statistics (count, mean, median, std, min, max) for a numeric field of
the loaded JSON records. Duration fields such as "PT4M13S" or "4:13" are converted to seconds.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "field": {
                    "type": "STRING",
                    "description": "Field name (e.g., 'view_count', 'like_count', 'duration')"
                }
            },
            "required": ["field"]
        }
    },
    {
        "category": "records",
        "name": "plot_metric_vs_time",
        "description": """Chart a numeric field of the JSON records over time, one point per record, sorted by date.
Use this when the user asks how a metric changed over time.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "metric_field": {
                    "type": "STRING",
                    "description": "Numeric field to plot (e.g., 'view_count')"
                },
                "date_field": {
                    "type": "STRING",
                    "description": "Date field (default 'release_date')"
                }
            },
            "required": ["metric_field"]
        }
    },
    {
        "category": "records",
        "name": "select_record",
        "description": """Show a single record (title, thumbnail, link) as a card.
Selectors: "most viewed", "least viewed", "first".."tenth", "3rd", "#4", "last", or a title keyword.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "selector": {
                    "type": "STRING",
                    "description": "Which record to show"
                }
            },
            "required": ["selector"]
        }
    },
    {
        "category": "image",
        "name": "generate_image",
        "description": """Generate a new image from the image the user attached to this message.
Only call this when the user explicitly asks for an image to be created or edited.""",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "prompt": {
                    "type": "STRING",
                    "description": "Description of the image to generate"
                }
            },
            "required": ["prompt"]
        }
    },
]

TABULAR_CATEGORIES = ["tabular"]
RECORD_CATEGORIES = ["records", "image"]


def validate_tool_names(tools: list[dict]) -> None:
    """Raise ValueError if two declarations share a name."""
    seen = set()
    for tool in tools:
        if tool["name"] in seen:
            raise ValueError(f"Duplicate tool name: {tool['name']}")
        seen.add(tool["name"])


validate_tool_names(TOOLS)


def get_tool_schemas(
    categories: list[str] | None = None,
    extra_names: list[str] | None = None,
) -> list[dict]:
    """Return tool declarations for model function calling.

    Args:
        categories: Optional list of categories to filter by.
            If None, returns all tools. Valid categories:
            "tabular", "records", "image".
        extra_names: Optional list of tool names to include regardless of category.

    Returns:
        List of tool declaration dicts.
    """
    if categories is None and extra_names is None:
        return TOOLS
    if categories is None:
        categories = []
    extra = set(extra_names) if extra_names else set()
    return [
        t for t in TOOLS
        if t.get("category") in categories or t.get("name") in extra
    ]


def tool_category(name: str) -> str | None:
    """Category of the tool called ``name`` (None if unknown)."""
    for tool in TOOLS:
        if tool["name"] == name:
            return tool["category"]
    return None
