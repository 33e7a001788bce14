"""
Structured-record (JSON) tool engine.

Operates on a list of arbitrary dicts (e.g. a channel's video list). The
field universe is the keys of the first record. Three tools:
``compute_stats_json``, ``plot_metric_vs_time`` and ``select_record``.
"""

import re

import numpy as np
import pandas as pd

from .fields import resolve_name
from .results import ToolResult

_ISO_DURATION = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")
_CLOCK_DURATION = re.compile(r"^(?:(\d+):)?(\d+):(\d+)$")


def duration_to_seconds(value) -> float:
    """Parse a duration into seconds; NaN when it can't be parsed.

    Accepts plain numbers, ISO-8601 ``PT#H#M#S`` and ``H:MM:SS`` / ``MM:SS``.

    >>> duration_to_seconds("PT1H2M3S")
    3723.0
    """
    if value is None or value == "":
        return float("nan")
    try:
        return float(value)
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    match = _ISO_DURATION.search(text)
    if match and any(match.groups()):
        h, m, s = (int(g or 0) for g in match.groups())
        return float(h * 3600 + m * 60 + s)
    match = _CLOCK_DURATION.match(text)
    if match:
        h, m, s = (int(g or 0) for g in match.groups())
        return float(h * 3600 + m * 60 + s)
    return float("nan")


def record_fields(records: list[dict]) -> list[str]:
    return list(records[0].keys()) if records else []


def resolve_field(records: list[dict], name):
    """Resolve ``name`` against the first record's keys (see fields.resolve_name)."""
    if not records or not name:
        return name
    return resolve_name(record_fields(records), name)


def _looks_like_duration(field: str) -> bool:
    return "duration" in field.lower()


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _duration_value(record: dict, field: str):
    for key in (field, "duration", "duration_iso"):
        if record.get(key) not in (None, ""):
            return record.get(key)
    return None


def _metric_values(records: list[dict], field: str) -> np.ndarray:
    """Numeric values of ``field``, falling back to duration parsing.

    The duration fallback only applies when plain coercion yields nothing
    at all and the field name suggests a duration.
    """
    values = np.array([_to_float(r.get(field)) for r in records], dtype=float)
    if np.isnan(values).all() and _looks_like_duration(field):
        values = np.array([duration_to_seconds(_duration_value(r, field)) for r in records], dtype=float)
    return values


def _fmt(value: float):
    value = float(value)
    return int(value) if value.is_integer() else round(value, 4)


def _compute_stats_json(records: list[dict], args: dict) -> ToolResult:
    field = resolve_field(records, args.get("field"))
    if not field:
        return ToolResult.failure(
            f"Missing required parameter 'field'. Available: {', '.join(record_fields(records))}"
        )
    values = _metric_values(records, field)
    values = values[~np.isnan(values)]
    if values.size == 0:
        return ToolResult.failure(
            f'No numeric values in "{field}". Available: {", ".join(record_fields(records))}'
        )
    return ToolResult.plain({
        "field": field,
        "count": int(values.size),
        "mean": _fmt(np.mean(values)),
        "median": _fmt(np.median(values)),
        "std": _fmt(np.std(values)),
        "min": _fmt(np.min(values)),
        "max": _fmt(np.max(values)),
    })


def _date_label(ts: pd.Timestamp) -> str:
    return f"{ts.strftime('%b')} {ts.day}, {ts.strftime('%y')}"


def _plot_metric_vs_time(records: list[dict], args: dict) -> ToolResult:
    metric_field = resolve_field(records, args.get("metric_field"))
    date_field = resolve_field(records, args.get("date_field")) if args.get("date_field") else "release_date"
    available = ", ".join(record_fields(records))
    if not metric_field:
        return ToolResult.failure(f"Missing required parameter 'metric_field'. Available: {available}")

    values = _metric_values(records, metric_field)
    raw_dates = [r.get(date_field) for r in records]
    dates = pd.to_datetime(pd.Series(raw_dates, dtype=object), errors="coerce", utc=True, format="mixed")

    points = []
    for record, raw_date, ts, value in zip(records, raw_dates, dates, values):
        if raw_date in (None, "") or pd.isna(ts) or np.isnan(value):
            continue
        points.append((ts, {
            "date": raw_date,
            "label": _date_label(ts),
            "value": _fmt(value),
            "title": record.get("title") or "",
        }))
    if not points:
        return ToolResult.failure(
            f'Could not plot. Metric: "{metric_field}", date: "{date_field}". Available: {available}'
        )
    points.sort(key=lambda p: p[0])
    return ToolResult.chart("metric_vs_time", {
        "metric_field": metric_field,
        "date_field": date_field,
        "data": [p[1] for p in points],
    })


_ORDINALS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
}
_NUMBERED = re.compile(r"^(?:video\s+|record\s+|#)?(\d+)(?:st|nd|rd|th)?$")
SELECTOR_HELP = '"most viewed", "least viewed", "first".."tenth", "3rd", "last", or a title keyword'


def _view_count(record: dict) -> float:
    for key in ("view_count", "views", "viewCount"):
        value = _to_float(record.get(key))
        if not np.isnan(value):
            return value
    return 0.0


def _pick(records: list[dict], selector: str):
    sel = selector.lower().strip()
    for suffix in (" video", " record", " one"):
        if sel.endswith(suffix):
            sel = sel[: -len(suffix)].strip()
    if sel.startswith("the "):
        sel = sel[4:]

    if sel in ("most viewed", "most popular", "top"):
        return max(records, key=_view_count)
    if sel in ("least viewed", "least popular"):
        return min(records, key=_view_count)
    if sel in _ORDINALS:
        idx = _ORDINALS[sel] - 1
        return records[idx] if idx < len(records) else None
    if sel in ("last", "latest"):
        return records[-1]
    match = _NUMBERED.match(sel)
    if match:
        idx = int(match.group(1)) - 1
        return records[idx] if 0 <= idx < len(records) else None
    if not sel:
        return None
    return next((r for r in records if sel in str(r.get("title") or "").lower()), None)


def _select_record(records: list[dict], args: dict) -> ToolResult:
    selector = str(args.get("selector") or args.get("video_selector") or "")
    record = _pick(records, selector)
    if record is None:
        return ToolResult.failure(f'No record found for "{selector}". Try {SELECTOR_HELP}.')
    url = record.get("video_url") or record.get("url")
    if not url and record.get("video_id"):
        url = f"https://www.youtube.com/watch?v={record['video_id']}"
    return ToolResult.card({
        "title": record.get("title") or "Untitled",
        "thumbnail": record.get("thumbnail_url") or record.get("thumbnail"),
        "url": url,
    })


_EXECUTORS = {
    "compute_stats_json": _compute_stats_json,
    "plot_metric_vs_time": _plot_metric_vs_time,
    "select_record": _select_record,
}


def execute_record_tool(name: str, args: dict, records: list[dict] | None) -> ToolResult:
    """Run one structured-record tool against ``records``."""
    if not records:
        return ToolResult.failure("No JSON data loaded. Please attach a JSON file first.")
    executor = _EXECUTORS.get(name)
    if executor is None:
        return ToolResult.failure(f"Unknown tool: {name}")
    return executor(records, args or {})
