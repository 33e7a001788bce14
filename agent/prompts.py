"""
System prompt and per-turn prompt construction.

The prompt sent to the model carries context the user never typed: the user
name, the CSV summary and slim projection, the JSON record descriptor and,
for Python-analysis turns only, the full CSV as base64 with a decode recipe.
The display content stored with the user message never contains any of it.
"""

import base64
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from data_ops.results import ResultKind

from .routing import RoutingDecision, TurnMode

SYSTEM_PROMPT = """You are a data analysis assistant. Users chat with you about CSV tables and JSON record
collections they attach, and about images.

## Tools

- When CSV data is loaded you can call compute_stats, filter_rows, aggregate, top_n, correlate and
  plot_metric. Prefer them over estimating numbers from the summary.
- When JSON records are loaded you can call compute_stats_json, plot_metric_vs_time and select_record,
  and generate_image when the user attached an image and asks for a new one.
- Charts and record cards are rendered by the client. Describe them briefly instead of repeating
  every value.
- If a tool returns an error, read it: it lists the available columns or selectors. Retry with a
  corrected argument instead of giving up.

## Response Style

- Be concise but informative
- Lead with the answer, then the supporting numbers
- Say so when the data cannot answer the question

Today's date is {today}.
"""

INSTRUCTIONS_PREAMBLE = "Follow these instructions in every response:\n\n"

DEFAULT_IMAGE_PROMPT = "What do you see in this image?"
DEFAULT_JSON_PROMPT = "Please analyze this JSON data."
DEFAULT_CSV_PROMPT = "Please analyze this CSV data."

SECTION_BREAK = "\n\n---\n\n"


def get_system_prompt(custom: str = "") -> str:
    """Return the system instruction for every provider call.

    ``custom`` is the text of the configured prompt file; when empty the
    built-in prompt (with today's date) is used.
    """
    body = custom.strip() if custom else SYSTEM_PROMPT.format(today=datetime.now().strftime("%Y-%m-%d"))
    return INSTRUCTIONS_PREAMBLE + body


# ---------------------------------------------------------------------------
# Context prefixes
# ---------------------------------------------------------------------------

def user_prefix(user_name: str) -> str:
    name = (user_name or "").strip()
    return f"[User: {name}]\n\n" if name else ""


def encode_source(text: str, limit: int = 500_000) -> tuple[str, bool]:
    """Base64-encode up to ``limit`` characters of ``text``.

    Returns:
        (encoded, truncated)
    """
    truncated = len(text) > limit
    source = text[:limit] if truncated else text
    return base64.b64encode(source.encode("utf-8")).decode("ascii"), truncated


def _slim_block(slim_csv: str) -> str:
    if not slim_csv:
        return ""
    return f"\n\nFull dataset (key columns):\n```csv\n{slim_csv}\n```"


def tabular_prefix(ctx, encode: bool = False, encoded_limit: int = 500_000) -> str:
    """Full CSV context: header line, summary, slim projection and, when
    ``encode`` is set, the base64 payload with its pandas decode recipe."""
    header = f'[CSV File: "{ctx.name}" | {ctx.row_count} rows | Columns: {", ".join(ctx.headers)}]'
    body = f"{header}\n\n{ctx.summary}{_slim_block(ctx.slim_csv)}"
    if encode and ctx.source_text:
        encoded, truncated = encode_source(ctx.source_text, encoded_limit)
        body += (
            "\n\nIMPORTANT: to load the full data in Python use this exact pattern:\n"
            "```python\n"
            "import pandas as pd, io, base64\n"
            f'df = pd.read_csv(io.BytesIO(base64.b64decode("{encoded}")))\n'
            "```"
        )
        if truncated:
            body += (
                f"\n\nNote: the file was truncated to its first {encoded_limit} characters "
                "for transport; the last row may be incomplete."
            )
    return body + SECTION_BREAK


def tabular_session_prefix(ctx) -> str:
    """Short CSV context for follow-up turns: column list and summary."""
    prefix = f"[CSV columns: {', '.join(ctx.headers)}]"
    if ctx.summary:
        prefix += f"\n\n{ctx.summary}"
    return prefix + SECTION_BREAK


def record_prefix(ctx) -> str:
    return (
        f'[JSON: "{ctx.name}" | {ctx.record_count} records | '
        f'Fields: {", ".join(ctx.fields)}]\n\n'
    )


# ---------------------------------------------------------------------------
# Turn prompt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TurnPrompt:
    """``prompt`` goes to the model; ``display`` is what the user message stores."""
    prompt: str
    display: str


def display_content(text: str, has_images: bool, attached_kind: Optional[str]) -> str:
    if text:
        return text
    if has_images:
        return "(Image)"
    if attached_kind == "json":
        return "(JSON attached)"
    return "(CSV attached)"


def default_prompt(has_images: bool, attached_kind: Optional[str]) -> str:
    if has_images:
        return DEFAULT_IMAGE_PROMPT
    if attached_kind == "json":
        return DEFAULT_JSON_PROMPT
    return DEFAULT_CSV_PROMPT


def build_turn_prompt(
    text: str,
    attachments,
    decision: RoutingDecision,
    user_name: str = "",
    has_images: bool = False,
    attached_kind: Optional[str] = None,
    encoded_limit: int = 500_000,
) -> TurnPrompt:
    """Assemble the model prompt and the display content for one user message.

    Args:
        text: What the user typed (may be empty when only attaching).
        attachments: The session's ``AttachmentState``.
        decision: The routing decision for this turn.
        user_name: Display name for the ``[User: ...]`` prefix.
        has_images: Images are attached to this message.
        attached_kind: ``"csv"`` / ``"json"`` when a file was attached with
            this very message.
        encoded_limit: Max characters of CSV source embedded as base64.
    """
    text = (text or "").strip()
    parts = [user_prefix(user_name)]

    tabular = attachments.tabular
    if tabular is not None:
        if attachments.fresh_tabular or decision.encode_data:
            parts.append(tabular_prefix(tabular, encode=decision.encode_data, encoded_limit=encoded_limit))
        else:
            parts.append(tabular_session_prefix(tabular))
    if attachments.records is not None:
        parts.append(record_prefix(attachments.records))

    parts.append(text or default_prompt(has_images, attached_kind))
    return TurnPrompt(
        prompt="".join(parts),
        display=display_content(text, has_images, attached_kind),
    )


def stream_capability(mode: TurnMode) -> str:
    """Provider capability a streamed turn should enable."""
    from .llm.base import STREAM_CODE_EXECUTION, STREAM_SEARCH

    if mode in (TurnMode.PYTHON_ANALYSIS, TurnMode.CODE_EXECUTION):
        return STREAM_CODE_EXECUTION
    return STREAM_SEARCH


# ---------------------------------------------------------------------------
# Display formatting (CLI)
# ---------------------------------------------------------------------------

def format_chart(result) -> str:
    """One-paragraph text rendering of a chart result."""
    payload = result.payload
    data = payload.get("data", [])
    if result.chart_type == "metric_vs_time":
        title = f"{payload.get('metric_field')} over {payload.get('date_field')}"
    else:
        title = f"{payload.get('metric')} by {payload.get('label_column') or 'row'}"
    lines = [f"[Chart: {title} | {len(data)} points]"]
    for point in data[:10]:
        lines.append(f"  {point.get('label')}: {point.get('value')}")
    if len(data) > 10:
        lines.append(f"  ... and {len(data) - 10} more")
    return "\n".join(lines)


def format_card(result) -> str:
    payload = result.payload
    lines = [f"[Record: {payload.get('title')}]"]
    if payload.get("url"):
        lines.append(f"  {payload['url']}")
    return "\n".join(lines)


def format_tool_result(record) -> str:
    """Format one executed tool call for display."""
    result = record.result
    if result.kind is ResultKind.ERROR:
        return f"Error: {result.error}"
    if result.kind is ResultKind.CHART:
        return format_chart(result)
    if result.kind is ResultKind.CARD:
        return format_card(result)
    return f"{record.name}: {result.summary()}"
