"""
Response aggregator.

Folds everything a turn produces into one assistant ``ChatMessage``:
streamed text deltas, the terminal structured-parts bundle of a provider
code run, grounding citations, and the result of a tool-mode turn. Every
apply step returns a fresh ``MessageSnapshot``; fragment order is kept
exactly as received. Once the message reaches a terminal status it no
longer accepts fragments.
"""

from typing import Optional

from .llm.base import ResponsePart, StreamChunk
from .messages import ChatMessage, Grounding, MessageSnapshot, TurnStatus, collect_result


class MessageClosedError(RuntimeError):
    """A fragment arrived after the message's terminal event."""


class ResponseAggregator:

    def __init__(self, message: Optional[ChatMessage] = None, mode: Optional[str] = None):
        self.message = message or ChatMessage(role="assistant", status=TurnStatus.STREAMING, mode=mode)
        if mode is not None:
            self.message.mode = mode

    def _check_open(self) -> None:
        if self.message.status.is_terminal:
            raise MessageClosedError(f"Message already {self.message.status.value}")

    @property
    def closed(self) -> bool:
        return self.message.status.is_terminal

    # -- Streaming fragments ---------------------------------------------------

    def apply_text(self, delta: str) -> MessageSnapshot:
        self._check_open()
        if delta:
            self.message.content += delta
        return self.message.snapshot(delta=delta)

    def apply_parts(self, parts: list[ResponsePart]) -> MessageSnapshot:
        """Install the structured-parts bundle; it supersedes streamed text."""
        self._check_open()
        if parts:
            self.message.parts = list(parts)
            self.message.content = self.message.plain_text()
        return self.message.snapshot()

    def apply_grounding(self, grounding: Optional[dict]) -> MessageSnapshot:
        self._check_open()
        normalized = Grounding.from_dict(grounding)
        if normalized is not None:
            current = self.message.grounding
            self.message.grounding = current.merge(normalized) if current else normalized
        return self.message.snapshot()

    def apply_chunk(self, chunk: StreamChunk) -> MessageSnapshot:
        """Apply one adapter stream chunk (text, parts and/or grounding)."""
        self._check_open()
        snapshot = None
        if chunk.text:
            snapshot = self.apply_text(chunk.text)
        if chunk.parts:
            snapshot = self.apply_parts(chunk.parts)
        if chunk.grounding:
            snapshot = self.apply_grounding(chunk.grounding)
        return snapshot or self.message.snapshot()

    # -- Tool-mode results -----------------------------------------------------

    def apply_turn_result(self, result) -> MessageSnapshot:
        """Fold a finished tool-loop ``TurnResult`` into the message."""
        self._check_open()
        for record in result.tool_calls:
            collect_result(self.message, record)
        self.message.content = result.text or ""
        return self.message.snapshot()

    # -- Terminal events -------------------------------------------------------

    def finish(self, status: TurnStatus = TurnStatus.DONE) -> MessageSnapshot:
        self._check_open()
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.message.status = status
        return self.message.snapshot()

    def fail(self, error: Exception | str) -> MessageSnapshot:
        """End the turn with a visible error message."""
        self._check_open()
        self.message.content = f"Error: {error}"
        self.message.parts = []
        self.message.status = TurnStatus.FAILED
        return self.message.snapshot()

    def snapshot(self) -> MessageSnapshot:
        return self.message.snapshot()
