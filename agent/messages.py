"""
Chat message model.

``ChatMessage`` is the mutable in-progress message a turn writes into;
``MessageSnapshot`` is the immutable view handed to renderers after every
applied fragment. Binary payloads (images) live on the message but are
never part of its plain-text projection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from data_ops.results import ResultKind, ToolResult

from .llm.base import ResponsePart


class TurnStatus(str, Enum):
    STREAMING = "streaming"
    DONE = "done"
    ROUND_EXHAUSTED = "round_exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TurnStatus.STREAMING


@dataclass(frozen=True)
class ImageAttachment:
    """An image attached to (or generated for) a message."""
    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True)
class ToolCallRecord:
    """One executed tool call: name, arguments and the tagged result."""
    name: str
    args: dict
    result: ToolResult

    def summary(self) -> dict:
        """Persistable form; no binary payloads and no full result bodies."""
        return {
            "name": self.name,
            "args": {k: _short(v) for k, v in self.args.items()},
            "result": self.result.kind.value,
            "summary": self.result.summary(),
        }


def _short(value: Any, limit: int = 200) -> Any:
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "..."
    if isinstance(value, (list, dict)):
        text = repr(value)
        return text if len(text) <= limit else text[:limit] + "..."
    return value


@dataclass(frozen=True)
class Source:
    title: str
    uri: str


@dataclass(frozen=True)
class Grounding:
    """Web-search citations: the queries issued and the sources used."""
    queries: tuple = ()
    sources: tuple = ()

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Grounding"]:
        """Normalize a provider grounding dict, dropping duplicate URIs."""
        if not data:
            return None
        queries = []
        for q in data.get("queries") or []:
            if q and q not in queries:
                queries.append(q)
        sources = []
        seen = set()
        for src in data.get("sources") or []:
            uri = src.get("uri") if isinstance(src, dict) else None
            if not uri or uri in seen:
                continue
            seen.add(uri)
            sources.append(Source(title=src.get("title") or uri, uri=uri))
        if not queries and not sources:
            return None
        return cls(queries=tuple(queries), sources=tuple(sources))

    def merge(self, other: Optional["Grounding"]) -> "Grounding":
        if other is None:
            return self
        return Grounding.from_dict({
            "queries": list(self.queries) + list(other.queries),
            "sources": [{"title": s.title, "uri": s.uri} for s in self.sources + other.sources],
        }) or self

    def to_dict(self) -> dict:
        return {
            "queries": list(self.queries),
            "sources": [{"title": s.title, "uri": s.uri} for s in self.sources],
        }

    def sources_footer(self) -> str:
        """Markdown footer listing the sources, or '' if there are none."""
        if not self.sources:
            return ""
        lines = [f"- [{s.title}]({s.uri})" for s in self.sources]
        return "\n\nSources:\n" + "\n".join(lines)


@dataclass(frozen=True)
class MessageSnapshot:
    """Immutable view of a message at one point of its turn."""
    role: str
    content: str
    status: TurnStatus
    parts: tuple = ()
    charts: tuple = ()
    cards: tuple = ()
    tool_calls: tuple = ()
    generated_images: tuple = ()
    grounding: Optional[Grounding] = None
    mode: Optional[str] = None
    delta: str = ""

    @property
    def is_final(self) -> bool:
        return self.status.is_terminal


@dataclass
class ChatMessage:
    """A user or assistant message.

    Attributes:
        role: ``"user"`` or ``"assistant"``.
        content: Display text; never contains encoded data payloads.
        images: Images the user attached (display only after persistence).
        generated_images: Images produced by the image tool.
        tool_calls: Executed tool calls in arrival order.
        charts: Chart results (``ToolResult`` of kind CHART).
        cards: Display-card results (kind CARD).
        parts: Structured parts from a provider code run; when present they
            supersede ``content`` for rendering.
        grounding: Web-search citations.
        attachment: ``{name, kind, size}`` descriptor of the data attached
            with this message.
        status: Turn status (user messages are always DONE).
        mode: Routing mode that produced an assistant message.
    """
    role: str
    content: str = ""
    images: list[ImageAttachment] = field(default_factory=list)
    generated_images: list[ImageAttachment] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    charts: list[ToolResult] = field(default_factory=list)
    cards: list[ToolResult] = field(default_factory=list)
    parts: list[ResponsePart] = field(default_factory=list)
    grounding: Optional[Grounding] = None
    attachment: Optional[dict] = None
    status: TurnStatus = TurnStatus.DONE
    mode: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def plain_text(self) -> str:
        """Text projection used for history and persistence."""
        if self.parts:
            return "".join(p.text for p in self.parts if p.kind == "text")
        return self.content

    def snapshot(self, delta: str = "") -> MessageSnapshot:
        return MessageSnapshot(
            role=self.role,
            content=self.content,
            status=self.status,
            parts=tuple(self.parts),
            charts=tuple(self.charts),
            cards=tuple(self.cards),
            tool_calls=tuple(self.tool_calls),
            generated_images=tuple(self.generated_images),
            grounding=self.grounding,
            mode=self.mode,
            delta=delta,
        )

    def history_turn(self) -> dict:
        """Plain display turn for provider history (no images, no tool data)."""
        return {"role": self.role, "content": self.plain_text()}


def collect_result(message: ChatMessage, record: ToolCallRecord) -> None:
    """Append a tool call and route its tagged result to the right list."""
    message.tool_calls.append(record)
    result = record.result
    if result.kind is ResultKind.CHART:
        message.charts.append(result)
    elif result.kind is ResultKind.CARD:
        message.cards.append(result)
    elif result.kind is ResultKind.IMAGE and result.data:
        message.generated_images.append(ImageAttachment(result.data, result.mime_type or "image/png"))
