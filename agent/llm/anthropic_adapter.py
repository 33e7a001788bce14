"""Anthropic adapter: wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Key Anthropic API differences from OpenAI/Gemini:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required: consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
- Web search is a server tool; its queries and result links come back as
  ``server_tool_use`` / ``web_search_tool_result`` content blocks.
"""

from __future__ import annotations

import base64
import json
import uuid
from typing import Any, Iterator

import anthropic

from .base import (
    STREAM_SEARCH,
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    StreamChunk,
    ToolCall,
    UsageMetadata,
)

MAX_TOKENS = 8192
WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format."""
    if not schemas:
        return None
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]


def _history_to_messages(history: list[dict] | None) -> list[dict]:
    return [
        {
            "role": "user" if turn.get("role") == "user" else "assistant",
            "content": turn.get("content") or "",
        }
        for turn in history or []
    ]


def _user_content(message: str, images: list | None):
    if not images:
        return message
    blocks: list[dict] = []
    for img in images:
        blocks.append({
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": img.mime_type or "image/png",
                "data": base64.b64encode(img.data).decode("ascii"),
            },
        })
    blocks.append({"type": "text", "text": message})
    return blocks


def _parse_usage(raw_usage) -> UsageMetadata:
    if not raw_usage:
        return UsageMetadata()
    return UsageMetadata(
        input_tokens=getattr(raw_usage, "input_tokens", 0) or 0,
        output_tokens=getattr(raw_usage, "output_tokens", 0) or 0,
    )


def _parse_grounding(content) -> dict | None:
    """Collect web-search queries and result links from content blocks."""
    queries: list[str] = []
    sources: list[dict] = []
    for block in content or []:
        if block.type == "server_tool_use" and isinstance(getattr(block, "input", None), dict):
            query = block.input.get("query")
            if query:
                queries.append(query)
        elif block.type == "web_search_tool_result":
            results = getattr(block, "content", None)
            if not isinstance(results, list):
                continue  # error payload
            for item in results:
                url = getattr(item, "url", None)
                if url:
                    sources.append({"title": getattr(item, "title", None) or url, "uri": url})
    if not queries and not sources:
        return None
    return {"queries": queries, "sources": sources}


def _parse_response(raw) -> LLMResponse:
    """Parse an Anthropic Messages response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thoughts: list[str] = []

    for block in raw.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(ToolCall(
                name=block.name,
                args=block.input if isinstance(block.input, dict) else {},
                id=block.id,
            ))
        elif block.type == "thinking":
            thinking_text = getattr(block, "thinking", None)
            if thinking_text:
                thoughts.append(thinking_text)

    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=_parse_usage(raw.usage),
        thoughts=thoughts,
        grounding=_parse_grounding(raw.content),
        raw=raw,
    )


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule.

    Anthropic requires strict user/assistant alternation. If two consecutive
    messages have the same role, merge their content.
    """
    if not messages:
        return messages

    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev_content = prev.get("content", "")
            new_content = msg.get("content", "")

            # Normalize to list form for merging
            if isinstance(prev_content, str):
                prev_list = [{"type": "text", "text": prev_content}] if prev_content else []
            else:
                prev_list = list(prev_content)

            if isinstance(new_content, str):
                new_list = [{"type": "text", "text": new_content}] if new_content else []
            else:
                new_list = list(new_content)

            prev["content"] = prev_list + new_list
        else:
            merged.append(dict(msg))

    return merged


def _response_to_messages(raw) -> list[dict]:
    """Convert an Anthropic response into message dicts for the history."""
    result: dict[str, Any] = {"role": "assistant", "content": []}

    for block in raw.content:
        if block.type == "text":
            result["content"].append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result["content"].append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input if isinstance(block.input, dict) else {},
            })

    if not result["content"]:
        result["content"] = [{"type": "text", "text": ""}]

    return [result]


# ---------------------------------------------------------------------------
# AnthropicChatSession
# ---------------------------------------------------------------------------

class AnthropicChatSession(ChatSession):
    """Client-managed chat session for the Anthropic Messages API.

    Maintains a message list and ensures strict user/assistant alternation.
    """

    def __init__(
        self,
        client: anthropic.Anthropic,
        model: str,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict] | None,
    ):
        self._client = client
        self._model = model
        self._system = system_prompt
        self._messages = messages
        self._tools = tools

    def send(self, message) -> LLMResponse:
        """Send a user message (str) or tool results (list of dicts).

        Tool results are wrapped in a single user message holding all
        ``tool_result`` blocks.
        """
        if isinstance(message, (str, list)):
            self._messages.append({"role": "user", "content": message})
        else:
            raise TypeError(f"Unsupported message type: {type(message)}")

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _ensure_alternation(self._messages),
            "max_tokens": MAX_TOKENS,
        }
        if self._system:
            kwargs["system"] = self._system
        if self._tools:
            kwargs["tools"] = self._tools

        raw = self._client.messages.create(**kwargs)
        self._messages.extend(_response_to_messages(raw))
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        """Return the message list."""
        return list(self._messages)


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------

class AnthropicAdapter(LLMAdapter):
    """Adapter that wraps the ``anthropic`` SDK for Claude models.

    Claude has no image output, so ``generate_image`` keeps the base-class
    behaviour and reports the capability as unsupported.
    """

    def __init__(
        self,
        api_key: str,
        *,
        timeout_ms: int = 300_000,
    ):
        self._client = anthropic.Anthropic(
            api_key=api_key,
            timeout=timeout_ms / 1000.0,
        )

    # -- LLMAdapter interface --------------------------------------------------

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> AnthropicChatSession:
        return AnthropicChatSession(
            client=self._client,
            model=model,
            system_prompt=system_prompt,
            messages=_history_to_messages(history),
            tools=_build_tools(tools),
        )

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
        messages = _history_to_messages(history)
        messages.append({"role": "user", "content": _user_content(message, images)})
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": _ensure_alternation(messages),
            "max_tokens": MAX_TOKENS,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if capability == STREAM_SEARCH:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        with self._client.messages.stream(**kwargs) as stream:
            for text in stream.text_stream:
                if text:
                    yield StreamChunk(text=text)
            final = stream.get_final_message()

        yield StreamChunk(grounding=_parse_grounding(final.content), usage=_parse_usage(final.usage))

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> dict:
        """Build an Anthropic tool_result content block.

        Returns a dict that gets collected into a list and wrapped in a
        ``{"role": "user", "content": [...]}`` message by the session.
        """
        return {
            "type": "tool_result",
            "tool_use_id": tool_call_id or f"toolu_{uuid.uuid4().hex[:24]}",
            "content": json.dumps(result, default=str),
        }

    def is_quota_error(self, exc: Exception) -> bool:
        """Check if the exception is an Anthropic rate-limit error."""
        return isinstance(exc, anthropic.RateLimitError)

    # -- Convenience properties ------------------------------------------------

    @property
    def client(self):
        """Escape hatch: the underlying ``anthropic.Anthropic`` client."""
        return self._client
