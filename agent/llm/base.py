"""Provider-agnostic types and abstract base class for LLM adapters.

All agent code should depend on these types, never on provider-specific SDKs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProviderError(Exception):
    """A model provider call failed (network, auth, malformed response)."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A single function/tool invocation extracted from the LLM response.

    Attributes:
        name: Tool/function name.
        args: Parsed arguments dict.
        id: Provider-assigned call ID (e.g. ``call_xxxxx`` for OpenAI,
            ``toolu_xxxxx`` for Anthropic).  None for Gemini which doesn't
            use explicit tool-call IDs.
    """
    name: str
    args: dict
    id: str | None = None


@dataclass
class UsageMetadata:
    """Normalized token counts."""
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0


@dataclass(frozen=True)
class ResponsePart:
    """One fragment of a provider-executed code run.

    ``kind`` is ``"text"``, ``"code"``, ``"result"`` or ``"image"``.
    """
    kind: str
    text: str = ""
    language: str | None = None
    outcome: str | None = None
    mime_type: str | None = None
    data: bytes | None = None

    @classmethod
    def text_part(cls, text: str) -> "ResponsePart":
        return cls(kind="text", text=text)

    @classmethod
    def code(cls, code: str, language: str = "PYTHON") -> "ResponsePart":
        return cls(kind="code", text=code, language=language)

    @classmethod
    def result(cls, output: str, outcome: str = "OUTCOME_OK") -> "ResponsePart":
        return cls(kind="result", text=output, outcome=outcome)

    @classmethod
    def image(cls, data: bytes, mime_type: str) -> "ResponsePart":
        return cls(kind="image", data=data, mime_type=mime_type)


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call.

    Attributes:
        text: Concatenated text output (excludes thinking text).
        tool_calls: Extracted function/tool calls.
        usage: Token usage for this call.
        thoughts: List of thinking/reasoning text blocks (for verbose logging).
        parts: Structured parts when the provider ran code server-side.
        grounding: ``{"queries": [...], "sources": [{"title", "uri"}]}`` when
            the provider searched the web.
        raw: The original provider-specific response object.
    """
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    thoughts: list[str] = field(default_factory=list)
    parts: list[ResponsePart] = field(default_factory=list)
    grounding: dict | None = None
    raw: Any = None


@dataclass
class StreamChunk:
    """One element of a streamed turn.

    Text deltas arrive first; the terminal chunk may carry the full
    structured-parts bundle, grounding metadata and token usage.
    """
    text: str = ""
    parts: list[ResponsePart] = field(default_factory=list)
    grounding: dict | None = None
    usage: UsageMetadata | None = None


@dataclass
class FunctionSchema:
    """Wraps a tool/function schema dict for type clarity.

    The ``parameters`` dict is lowercase-typed JSON schema; see
    ``agent.tool_schema`` for the conversion from catalog declarations.
    """
    name: str
    description: str
    parameters: dict


# Built-in server-side capabilities a streamed turn may enable
STREAM_SEARCH = "search"
STREAM_CODE_EXECUTION = "code_execution"
STREAM_PLAIN = "plain"


# ---------------------------------------------------------------------------
# ChatSession ABC
# ---------------------------------------------------------------------------

class ChatSession(ABC):
    """Abstract multi-turn chat session."""

    @abstractmethod
    def send(self, message) -> LLMResponse:
        """Send a user message or tool results and return the model response.

        ``message`` can be:
        - A string (user text message)
        - A list of tool-result objects (provider-specific, built via
          ``LLMAdapter.make_tool_result_message()``)
        """

    @abstractmethod
    def get_history(self) -> list[dict]:
        """Return serializable conversation history."""


# ---------------------------------------------------------------------------
# LLMAdapter ABC
# ---------------------------------------------------------------------------

class LLMAdapter(ABC):
    """Abstract interface that every LLM provider adapter must implement.

    ``history`` arguments are always plain display turns,
    ``[{"role": "user" | "assistant", "content": str}]``; each adapter
    converts them to its native shape.
    """

    @abstractmethod
    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> ChatSession:
        """Create a new multi-turn chat session with a function catalog."""

    @abstractmethod
    def stream_turn(
        self,
        model: str,
        system_prompt: str,
        history: list[dict],
        message: str,
        *,
        images: list | None = None,
        capability: str = STREAM_SEARCH,
    ) -> Iterator[StreamChunk]:
        """Stream one turn without a client-side tool catalog.

        Args:
            images: Objects with ``data`` (bytes) and ``mime_type``.
            capability: ``STREAM_SEARCH``, ``STREAM_CODE_EXECUTION`` or
                ``STREAM_PLAIN``. Providers without the capability stream a
                plain answer.
        """

    @abstractmethod
    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        """Build a provider-specific tool result object.

        Returned value is passed into ``ChatSession.send()`` as part of a list
        of tool results.

        Args:
            tool_name: The name of the tool that was called.
            result: The model-facing result dict.
            tool_call_id: Provider-assigned tool-call ID from ``ToolCall.id``.
                Required by OpenAI/Anthropic; ignored by Gemini.
        """

    @abstractmethod
    def is_quota_error(self, exc: Exception) -> bool:
        """Return True if ``exc`` represents a quota/rate-limit error (429)."""

    def generate_image(
        self, model: str, prompt: str, image: bytes, mime_type: str
    ) -> tuple[bytes, str] | None:
        """Generate an image from ``prompt`` anchored on ``image``.

        Returns ``(data, mime_type)``, or None when the model produced no
        image.

        Raises:
            NotImplementedError: If the provider has no image output.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support image generation."
        )
