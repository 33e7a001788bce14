"""Tagged tool results.

Every tool executor returns a :class:`ToolResult`. The ``kind`` discriminant
tells the tool-call loop and the aggregator what to do with it:

- ``PLAIN``: a value or record handed back to the model as-is.
- ``CHART``: a chart payload; also collected into the message's charts.
- ``CARD``: a display card (e.g. a selected record); collected into cards.
- ``IMAGE``: generated image bytes; never sent to the model.
- ``ERROR``: an actionable user-input error, returned to the model so it
  can retry with different arguments.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class ResultKind(str, Enum):
    PLAIN = "plain"
    CHART = "chart"
    CARD = "card"
    IMAGE = "image"
    ERROR = "error"


@dataclass(frozen=True)
class ToolResult:
    """Result of one tool execution.

    Attributes:
        kind: Variant discriminant.
        payload: Structured value (statistics, rows, chart data, card fields).
        chart_type: Chart kind for ``CHART`` results (e.g. ``"metric_vs_time"``).
        error: Message for ``ERROR`` results.
        mime_type: Image MIME type for ``IMAGE`` results.
        data: Image bytes for ``IMAGE`` results.
    """
    kind: ResultKind
    payload: dict = field(default_factory=dict)
    chart_type: str | None = None
    error: str | None = None
    mime_type: str | None = None
    data: bytes | None = None

    # -- Constructors ----------------------------------------------------------

    @classmethod
    def plain(cls, payload: dict) -> "ToolResult":
        return cls(kind=ResultKind.PLAIN, payload=payload)

    @classmethod
    def chart(cls, chart_type: str, payload: dict) -> "ToolResult":
        return cls(kind=ResultKind.CHART, payload=payload, chart_type=chart_type)

    @classmethod
    def card(cls, payload: dict) -> "ToolResult":
        return cls(kind=ResultKind.CARD, payload=payload)

    @classmethod
    def image(cls, data: bytes, mime_type: str) -> "ToolResult":
        return cls(kind=ResultKind.IMAGE, data=data, mime_type=mime_type)

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(kind=ResultKind.ERROR, error=message)

    # -- Views -----------------------------------------------------------------

    @property
    def is_error(self) -> bool:
        return self.kind is ResultKind.ERROR

    def for_model(self) -> dict:
        """Serialize for the model's tool-response turn (JSON-safe)."""
        if self.kind is ResultKind.ERROR:
            return {"status": "error", "error": self.error or "Unknown error"}
        if self.kind is ResultKind.IMAGE:
            return {"status": "success", "generated": True, "mime_type": self.mime_type}
        body: dict[str, Any] = {"status": "success"}
        if self.kind is ResultKind.CHART:
            body["chart_type"] = self.chart_type
        elif self.kind is ResultKind.CARD:
            body["display_type"] = "card"
        body.update(self.payload)
        return sanitize_for_json(body)

    def summary(self) -> str:
        """One-line description used in logs and persisted tool-call records."""
        if self.kind is ResultKind.ERROR:
            return f"error: {self.error}"
        if self.kind is ResultKind.CHART:
            return f"chart: {self.chart_type} ({len(self.payload.get('data', []))} points)"
        if self.kind is ResultKind.CARD:
            return f"card: {self.payload.get('title', '')}"
        if self.kind is ResultKind.IMAGE:
            return f"image: {self.mime_type} ({len(self.data or b'')} bytes)"
        return "ok"


def sanitize_for_json(value: Any) -> Any:
    """Recursively replace NaN/Inf with None and numpy scalars with Python types."""
    if isinstance(value, dict):
        return {str(k): sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_for_json(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value
