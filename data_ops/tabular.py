"""
Tabular (CSV) tool engine.

Parses delimited text into rows of raw string values, derives an
engagement column, builds the compact summary and slim projection that
ride along with every prompt, and executes the tabular tool catalog
against the in-memory rows.

Executors never raise for user-input problems; they return an ERROR
:class:`~data_ops.results.ToolResult` that lists what is available.
"""

import csv
import io
import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .fields import find_name, normalize_name
from .results import ToolResult

logger = logging.getLogger("datachat")


class ParseError(ValueError):
    """Raised when an attachment has no usable content."""


@dataclass
class ParsedTable:
    """Header list plus one mapping per data row.

    Values are the raw strings from the file; a row shorter than the header
    maps its missing trailing columns to None.
    """
    headers: list[str]
    rows: list[dict] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def frame(self) -> pd.DataFrame:
        """Rows as an object-dtype DataFrame with the header order preserved."""
        return pd.DataFrame(self.rows, columns=self.headers, dtype=object)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

DELIMITERS = ",\t;|"


def detect_delimiter(header_line: str) -> str:
    """Guess the field delimiter from the header line; comma when unsure."""
    try:
        return csv.Sniffer().sniff(header_line, delimiters=DELIMITERS).delimiter
    except csv.Error:
        return ","


def _parse_line_by_line(lines: list[str], delimiter: str) -> tuple[list[str], list[dict]]:
    """Parse each line on its own, so a stray quote cannot swallow the rest."""
    headers = [h.strip().strip('"') for h in next(csv.reader([lines[0]], delimiter=delimiter))]
    rows = []
    for line in lines[1:]:
        values = next(csv.reader([line], delimiter=delimiter), [])
        rows.append({h: (values[i] if i < len(values) else None) for i, h in enumerate(headers)})
    return headers, rows


def parse_rows(text: str) -> ParsedTable:
    """Parse delimited text into a :class:`ParsedTable`.

    Blank lines are skipped and every other line after the header yields one
    row. The delimiter (comma, tab, semicolon or pipe) is detected from the
    header. Header names are trimmed and unquoted. Rows longer than the
    header are truncated to it; shorter rows yield None for the missing
    fields.

    Raises:
        ParseError: If ``text`` contains no non-blank line, or the text
            cannot be read as delimited rows.
    """
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise ParseError("Attachment is empty: no non-blank lines found.")

    delimiter = detect_delimiter(lines[0])
    try:
        width = len(next(csv.reader([lines[0]], delimiter=delimiter)))

        def _truncate(bad_line: list[str]) -> list[str]:
            return bad_line[:width]

        df = pd.read_csv(
            io.StringIO("\n".join(lines)),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            engine="python",
            on_bad_lines=_truncate,
        )
    except (pd.errors.ParserError, csv.Error) as e:
        logger.debug(f"[Parse] pandas rejected the text, parsing line by line: {e}")
        df = None

    if df is None or len(df) != len(lines) - 1:
        # An unbalanced quote makes pandas merge the following lines into one field
        try:
            headers, rows = _parse_line_by_line(lines, delimiter)
        except csv.Error as e:
            raise ParseError(f"Could not parse delimited text: {e}") from e
        return ParsedTable(headers=headers, rows=rows)

    df.columns = [str(c).strip().strip('"') for c in df.columns]
    df = df.astype(object).where(df.notna(), None)
    return ParsedTable(headers=list(df.columns), rows=df.to_dict("records"))


def _numeric(values) -> pd.Series:
    """Coerce raw values to floats; unparseable entries become NaN."""
    series = pd.Series(list(values), dtype=object)
    cleaned = series.map(lambda v: str(v).replace(",", "").strip() if v is not None else None)
    return pd.to_numeric(cleaned, errors="coerce")


def _column_values(rows: list[dict], column: str) -> pd.Series:
    return _numeric(row.get(column) for row in rows)


def _is_numeric_column(rows: list[dict], column: str) -> bool:
    """A column is numeric when at least half its non-empty values coerce."""
    raw = [row.get(column) for row in rows if row.get(column) not in (None, "")]
    if not raw:
        return False
    return _numeric(raw).notna().sum() * 2 >= len(raw)


def numeric_columns(rows: list[dict], headers: list[str]) -> list[str]:
    return [h for h in headers if _is_numeric_column(rows, h)]


# ---------------------------------------------------------------------------
# Engagement enrichment
# ---------------------------------------------------------------------------

ENGAGEMENT_COLUMN = "engagement"

# normalized column name -> weight
ENGAGEMENT_WEIGHTS = {
    "likes": 1, "likecount": 1, "favorites": 1, "favoritecount": 1, "favourites": 1,
    "shares": 2, "sharecount": 2, "retweets": 2, "retweetcount": 2, "reposts": 2,
    "replies": 3, "replycount": 3, "comments": 3, "commentcount": 3,
    "quotes": 2, "quotecount": 2,
}


def engagement_signals(headers: list[str]) -> dict[str, int]:
    """Map each recognizable count-like header to its engagement weight."""
    return {
        h: ENGAGEMENT_WEIGHTS[normalize_name(h)]
        for h in headers
        if normalize_name(h) in ENGAGEMENT_WEIGHTS
    }


def enrich_with_engagement(rows: list[dict], headers: list[str]) -> tuple[list[dict], list[str]]:
    """Append a weighted ``engagement`` column when signal columns exist.

    Returns new ``(rows, headers)``; the inputs are not modified. When no
    signal column is recognized, or an engagement column already exists,
    the originals are returned unchanged.
    """
    signals = engagement_signals(headers)
    if not signals or find_name(headers, ENGAGEMENT_COLUMN) is not None:
        return rows, headers

    total = pd.Series(0.0, index=range(len(rows)))
    for column, weight in signals.items():
        total = total + _column_values(rows, column).fillna(0).values * weight

    enriched = []
    for row, value in zip(rows, total):
        new_row = dict(row)
        new_row[ENGAGEMENT_COLUMN] = str(int(value)) if float(value).is_integer() else f"{value:.2f}"
        enriched.append(new_row)
    return enriched, headers + [ENGAGEMENT_COLUMN]


# ---------------------------------------------------------------------------
# Summary and slim projection
# ---------------------------------------------------------------------------

MAX_SUMMARY_COLUMNS = 25


def _fmt(value: float):
    value = float(value)
    if value.is_integer():
        return int(value)
    return round(value, 4)


def _describe(values: pd.Series) -> dict:
    """Descriptive statistics with population standard deviation."""
    arr = values.dropna().to_numpy(dtype=float)
    return {
        "count": int(arr.size),
        "mean": _fmt(np.mean(arr)),
        "median": _fmt(np.median(arr)),
        "std": _fmt(np.std(arr)),
        "min": _fmt(np.min(arr)),
        "max": _fmt(np.max(arr)),
    }


def compute_dataset_summary(rows: list[dict], headers: list[str]) -> str:
    """Compact per-numeric-column statistics block for prompt inclusion."""
    lines = [f"Dataset summary ({len(rows)} rows, {len(headers)} columns):"]
    numeric = numeric_columns(rows, headers)
    if not numeric:
        lines.append("No numeric columns detected.")
        return "\n".join(lines)
    for column in numeric[:MAX_SUMMARY_COLUMNS]:
        s = _describe(_column_values(rows, column))
        lines.append(
            f"- {column}: count={s['count']}, mean={s['mean']}, median={s['median']}, "
            f"std={s['std']}, min={s['min']}, max={s['max']}"
        )
    if len(numeric) > MAX_SUMMARY_COLUMNS:
        lines.append(f"... {len(numeric) - MAX_SUMMARY_COLUMNS} more numeric columns omitted")
    return "\n".join(lines)


_NOISE_HINTS = ("id", "url", "link", "href", "hash", "uuid", "guid", "token")
_TEXT_HINTS = ("text", "title", "name", "content", "body", "description", "caption", "message", "type", "category")
MAX_CATEGORY_CARDINALITY = 50


def _is_noise_column(column: str) -> bool:
    norm = normalize_name(column)
    return any(norm == hint or norm.endswith(hint) for hint in _NOISE_HINTS)


def select_slim_columns(rows: list[dict], headers: list[str]) -> list[str]:
    """Pick the textual, categorical and metric columns worth sending inline."""
    keep = []
    for column in headers:
        if _is_noise_column(column):
            continue
        norm = normalize_name(column)
        if _is_numeric_column(rows, column) or any(hint in norm for hint in _TEXT_HINTS):
            keep.append(column)
            continue
        distinct = {row.get(column) for row in rows if row.get(column) not in (None, "")}
        if len(distinct) <= MAX_CATEGORY_CARDINALITY:
            keep.append(column)
    return keep or list(headers)


def build_slim_csv(rows: list[dict], headers: list[str], limit: int = 40_000) -> str:
    """Re-serialize a reduced column subset, cut at ``limit`` on a line boundary."""
    columns = select_slim_columns(rows, headers)
    df = pd.DataFrame(rows, columns=headers, dtype=object)[columns]
    text = df.to_csv(index=False, lineterminator="\n")
    if len(text) <= limit:
        return text.rstrip("\n")
    cut = text.rfind("\n", 0, limit)
    return text[: cut if cut > 0 else limit]


# ---------------------------------------------------------------------------
# Tool executors
# ---------------------------------------------------------------------------

FILTER_OPERATORS = ("==", "!=", ">", ">=", "<", "<=", "contains")
AGGREGATE_OPERATIONS = ("sum", "mean", "count", "min", "max")
MAX_RESULT_ROWS = 50
METRIC_CHART = "metric_bar"


def _available(headers: list[str]) -> str:
    return ", ".join(headers)


def _resolve(table: ParsedTable, column, param: str = "column"):
    """Resolve a column or return an ERROR result listing the headers."""
    if not column:
        return None, ToolResult.failure(
            f"Missing required parameter '{param}'. Available columns: {_available(table.headers)}"
        )
    found = find_name(table.headers, column)
    if found is None:
        return None, ToolResult.failure(
            f'Column "{column}" not found. Available columns: {_available(table.headers)}'
        )
    return found, None


def _numeric_or_error(table: ParsedTable, column: str):
    values = _column_values(table.rows, column)
    if values.notna().sum() == 0:
        return None, ToolResult.failure(
            f'No numeric values in "{column}". Available columns: {_available(table.headers)}'
        )
    return values, None


def _int_arg(args: dict, key: str, default: int):
    """Read a positive row count clamped to MAX_RESULT_ROWS, or an ERROR result."""
    raw = args.get(key)
    if raw is None or raw == "":
        return default, None
    try:
        number = float(str(raw).strip())
    except ValueError:
        number = float("nan")
    if isinstance(raw, bool) or not number.is_integer():
        return None, ToolResult.failure(
            f"Parameter '{key}' must be a whole number, got {raw!r}."
        )
    return max(1, min(int(number), MAX_RESULT_ROWS)), None


def _name_list(value) -> list:
    """Accept a single name or a list of names."""
    if isinstance(value, str):
        return [value]
    return list(value or [])


def _project(row: dict, columns: list[str] | None) -> dict:
    if not columns:
        return dict(row)
    return {c: row.get(c) for c in columns}


def _compute_stats(table: ParsedTable, args: dict) -> ToolResult:
    column, err = _resolve(table, args.get("column"))
    if err:
        return err
    values, err = _numeric_or_error(table, column)
    if err:
        return err
    return ToolResult.plain({"column": column, **_describe(values)})


def _compare(raw, operator: str, target) -> bool:
    if raw is None:
        return False
    if operator == "contains":
        return str(target).lower() in str(raw).lower()
    left = _numeric([raw]).iloc[0]
    right = _numeric([target]).iloc[0]
    if not (pd.isna(left) or pd.isna(right)):
        a, b = float(left), float(right)
    else:
        a, b = str(raw).strip().lower(), str(target).strip().lower()
    if operator == "==":
        return a == b
    if operator == "!=":
        return a != b
    try:
        if operator == ">":
            return a > b
        if operator == ">=":
            return a >= b
        if operator == "<":
            return a < b
        if operator == "<=":
            return a <= b
    except TypeError:
        return False
    return False


def _filter_rows(table: ParsedTable, args: dict) -> ToolResult:
    column, err = _resolve(table, args.get("column"))
    if err:
        return err
    operator = str(args.get("operator", "==")).strip().lower()
    if operator == "=":
        operator = "=="
    if operator not in FILTER_OPERATORS:
        return ToolResult.failure(
            f"Unknown operator '{operator}'. Use one of: {', '.join(FILTER_OPERATORS)}"
        )
    if "value" not in args:
        return ToolResult.failure("Missing required parameter 'value'.")
    value = args["value"]
    limit, err = _int_arg(args, "limit", 20)
    if err:
        return err
    matches = [row for row in table.rows if _compare(row.get(column), operator, value)]
    return ToolResult.plain({
        "column": column,
        "operator": operator,
        "value": value,
        "match_count": len(matches),
        "rows": matches[:limit],
    })


def _reduce(values: pd.Series, operation: str):
    if operation == "count":
        return int(values.notna().sum())
    if operation == "sum":
        return _fmt(values.sum())
    if operation == "mean":
        return _fmt(values.mean())
    if operation == "min":
        return _fmt(values.min())
    return _fmt(values.max())


def _aggregate(table: ParsedTable, args: dict) -> ToolResult:
    column, err = _resolve(table, args.get("column"))
    if err:
        return err
    operation = str(args.get("operation", "sum")).strip().lower()
    if operation == "average":
        operation = "mean"
    if operation not in AGGREGATE_OPERATIONS:
        return ToolResult.failure(
            f"Unknown operation '{operation}'. Use one of: {', '.join(AGGREGATE_OPERATIONS)}"
        )
    values, err = _numeric_or_error(table, column)
    if err:
        return err

    group_by = args.get("group_by")
    if not group_by:
        return ToolResult.plain({"column": column, "operation": operation, "value": _reduce(values, operation)})

    group_col, err = _resolve(table, group_by, "group_by")
    if err:
        return err
    df = pd.DataFrame({
        "group": [row.get(group_col) if row.get(group_col) not in (None, "") else "(blank)" for row in table.rows],
        "value": values.values,
    })
    groups = [
        {"group": key, "value": _reduce(frame["value"], operation)}
        for key, frame in df.groupby("group", sort=False)
        if operation == "count" or frame["value"].notna().any()
    ]
    groups.sort(key=lambda g: g["value"], reverse=True)
    return ToolResult.plain({
        "column": column,
        "operation": operation,
        "group_by": group_col,
        "group_count": len(groups),
        "groups": groups[:MAX_RESULT_ROWS],
    })


def _top_n(table: ParsedTable, args: dict) -> ToolResult:
    column, err = _resolve(table, args.get("column"))
    if err:
        return err
    values, err = _numeric_or_error(table, column)
    if err:
        return err
    n, err = _int_arg(args, "n", 10)
    if err:
        return err
    ascending = str(args.get("order", "desc")).strip().lower() in ("asc", "ascending", "bottom")
    columns = None
    if args.get("columns"):
        columns = [find_name(table.headers, c) for c in _name_list(args["columns"])]
        columns = [c for c in columns if c is not None] or None
        if columns and column not in columns:
            columns.append(column)
    order = values.dropna().sort_values(ascending=ascending, kind="mergesort").index[:n]
    return ToolResult.plain({
        "column": column,
        "order": "asc" if ascending else "desc",
        "rows": [_project(table.rows[i], columns) for i in order],
    })


def _correlate(table: ParsedTable, args: dict) -> ToolResult:
    col_a, err = _resolve(table, args.get("column_a"), "column_a")
    if err:
        return err
    col_b, err = _resolve(table, args.get("column_b"), "column_b")
    if err:
        return err
    a, err = _numeric_or_error(table, col_a)
    if err:
        return err
    b, err = _numeric_or_error(table, col_b)
    if err:
        return err
    mask = a.notna() & b.notna()
    if mask.sum() < 2:
        return ToolResult.failure(f'Need at least two rows with numeric "{col_a}" and "{col_b}".')
    x = a[mask].to_numpy(dtype=float)
    y = b[mask].to_numpy(dtype=float)
    if np.std(x) == 0 or np.std(y) == 0:
        return ToolResult.failure("Correlation is undefined for a constant column.")
    r = float(np.corrcoef(x, y)[0, 1])
    return ToolResult.plain({"column_a": col_a, "column_b": col_b, "n": int(mask.sum()), "pearson_r": round(r, 4)})


def _label_column(table: ParsedTable, requested) -> str | None:
    if requested:
        return find_name(table.headers, requested)
    for column in table.headers:
        if any(hint in normalize_name(column) for hint in _TEXT_HINTS):
            return column
    return None


def _plot_metric(table: ParsedTable, args: dict) -> ToolResult:
    metric, err = _resolve(table, args.get("metric") or ENGAGEMENT_COLUMN, "metric")
    if err:
        return err
    values, err = _numeric_or_error(table, metric)
    if err:
        return err
    label_col = _label_column(table, args.get("label_column"))
    limit, err = _int_arg(args, "limit", 20)
    if err:
        return err
    order = values.dropna().sort_values(ascending=False, kind="mergesort").index[:limit]
    data = []
    for i in order:
        label = table.rows[i].get(label_col) if label_col else None
        label = str(label) if label not in (None, "") else f"Row {i + 1}"
        data.append({"label": label[:80], "value": _fmt(values[i])})
    return ToolResult.chart(METRIC_CHART, {
        "metric": metric,
        "label_column": label_col,
        "chart": str(args.get("chart_type") or "bar"),
        "data": data,
    })


_EXECUTORS = {
    "compute_stats": _compute_stats,
    "filter_rows": _filter_rows,
    "aggregate": _aggregate,
    "top_n": _top_n,
    "correlate": _correlate,
    "plot_metric": _plot_metric,
}


def execute_tabular_tool(name: str, args: dict, table: ParsedTable | None) -> ToolResult:
    """Run one tabular tool against ``table``."""
    if table is None or not table.rows:
        return ToolResult.failure("No CSV data loaded. Please attach a CSV file first.")
    executor = _EXECUTORS.get(name)
    if executor is None:
        return ToolResult.failure(f"Unknown tool: {name}")
    return executor(table, args or {})
