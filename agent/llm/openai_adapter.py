"""OpenAI adapter: wraps the ``openai`` SDK for OpenAI and compatible APIs.

Covers OpenAI and any provider exposing an OpenAI-compatible
``/chat/completions`` endpoint (set ``llm_base_url``).

This is the **only** module that imports the ``openai`` package.
"""

from __future__ import annotations

import base64
import json
import uuid
from typing import Any, Iterator

import openai

from data_ops.image_tools import to_square_png

from .base import (
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    StreamChunk,
    ToolCall,
    UsageMetadata,
    STREAM_SEARCH,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to OpenAI tool format."""
    if not schemas:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": s.name,
                "description": s.description,
                "parameters": s.parameters,
            },
        }
        for s in schemas
    ]


def _build_messages(system_prompt: str, history: list[dict] | None) -> list[dict]:
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in history or []:
        role = "user" if turn.get("role") == "user" else "assistant"
        messages.append({"role": role, "content": turn.get("content") or ""})
    return messages


def _user_content(message: str, images: list | None):
    """Plain string, or text + data-URI image blocks when images are attached."""
    if not images:
        return message
    content: list[dict] = [{"type": "text", "text": message}]
    for img in images:
        encoded = base64.b64encode(img.data).decode("ascii")
        content.append({
            "type": "image_url",
            "image_url": {"url": f"data:{img.mime_type or 'image/png'};base64,{encoded}"},
        })
    return content


def _parse_tool_calls(raw_tool_calls) -> list[ToolCall]:
    """Parse OpenAI tool calls into our ToolCall dataclass."""
    if not raw_tool_calls:
        return []
    result = []
    for tc in raw_tool_calls:
        try:
            args = json.loads(tc.function.arguments) if tc.function.arguments else {}
        except (json.JSONDecodeError, TypeError):
            args = {}
        result.append(ToolCall(
            name=tc.function.name,
            args=args,
            id=tc.id,
        ))
    return result


def _parse_usage(raw_usage) -> UsageMetadata:
    if not raw_usage:
        return UsageMetadata()
    details = getattr(raw_usage, "completion_tokens_details", None)
    return UsageMetadata(
        input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
        thinking_tokens=(getattr(details, "reasoning_tokens", 0) or 0) if details else 0,
    )


def _parse_response(raw) -> LLMResponse:
    """Parse a raw OpenAI ChatCompletion into a provider-agnostic LLMResponse."""
    if not raw.choices:
        return LLMResponse(raw=raw)

    message = raw.choices[0].message
    thoughts: list[str] = []
    reasoning = getattr(message, "reasoning_content", None)
    if reasoning:
        thoughts.append(reasoning)

    return LLMResponse(
        text=message.content or "",
        tool_calls=_parse_tool_calls(message.tool_calls),
        usage=_parse_usage(raw.usage),
        thoughts=thoughts,
        raw=raw,
    )


# ---------------------------------------------------------------------------
# OpenAIChatSession
# ---------------------------------------------------------------------------

class OpenAIChatSession(ChatSession):
    """Client-managed chat session for OpenAI-compatible APIs.

    Unlike Gemini's SDK-managed sessions, OpenAI requires the client to
    maintain and send the full message list on every request.
    """

    def __init__(
        self,
        client: openai.OpenAI,
        model: str,
        messages: list[dict],
        tools: list[dict] | None,
    ):
        self._client = client
        self._model = model
        self._messages = messages
        self._tools = tools

    def send(self, message) -> LLMResponse:
        """Send a user message (str) or tool results (list of dicts).

        For tool results, ``message`` is a list of dicts, each built by
        :meth:`OpenAIAdapter.make_tool_result_message`.
        """
        if isinstance(message, str):
            self._messages.append({"role": "user", "content": message})
        elif isinstance(message, list):
            # The assistant message carrying the matching tool_calls was
            # appended when the previous response was parsed.
            self._messages.extend(message)
        else:
            raise TypeError(f"Unsupported message type: {type(message)}")

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._messages,
        }
        if self._tools:
            kwargs["tools"] = self._tools
            kwargs["tool_choice"] = "auto"
        raw = self._client.chat.completions.create(**kwargs)

        self._messages.append(self._response_to_message(raw))
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        """Return the message list."""
        return list(self._messages)

    @staticmethod
    def _response_to_message(raw) -> dict:
        """Convert an OpenAI ChatCompletion response to a message dict for history."""
        choice = raw.choices[0] if raw.choices else None
        if not choice:
            return {"role": "assistant", "content": ""}
        msg = choice.message
        result: dict[str, Any] = {"role": "assistant"}
        if msg.content:
            result["content"] = msg.content
        if msg.tool_calls:
            result["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in msg.tool_calls
            ]
        if not msg.content and not msg.tool_calls:
            result["content"] = ""
        return result


# ---------------------------------------------------------------------------
# OpenAIAdapter
# ---------------------------------------------------------------------------

class OpenAIAdapter(LLMAdapter):
    """Adapter that wraps the ``openai`` SDK for OpenAI and compatible APIs.

    Chat completions have no built-in web search or code execution, so every
    streamed capability degrades to a plain streamed answer.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
    ):
        kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        kwargs["timeout"] = timeout_ms / 1000.0  # openai SDK uses seconds
        self._client = openai.OpenAI(**kwargs)

    # -- LLMAdapter interface --------------------------------------------------

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> OpenAIChatSession:
        return OpenAIChatSession(
            client=self._client,
            model=model,
            messages=_build_messages(system_prompt, history),
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
        messages = _build_messages(system_prompt, history)
        messages.append({"role": "user", "content": _user_content(message, images)})
        stream = self._client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            stream_options={"include_usage": True},
        )
        usage = None
        for chunk in stream:
            if getattr(chunk, "usage", None):
                usage = _parse_usage(chunk.usage)
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            text = getattr(delta, "content", None) if delta is not None else None
            if text:
                yield StreamChunk(text=text)
        if usage is not None:
            yield StreamChunk(usage=usage)

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> dict:
        """Build an OpenAI tool-result message dict.

        OpenAI requires ``tool_call_id`` to match the original tool call.
        If not provided, generates a placeholder ID (may cause issues with
        some strict providers).
        """
        return {
            "role": "tool",
            "tool_call_id": tool_call_id or f"call_{uuid.uuid4().hex[:24]}",
            "content": json.dumps(result, default=str),
        }

    def is_quota_error(self, exc: Exception) -> bool:
        """Check if the exception is an OpenAI rate-limit error."""
        return isinstance(exc, openai.RateLimitError)

    def generate_image(
        self, model: str, prompt: str, image: bytes, mime_type: str
    ) -> tuple[bytes, str] | None:
        """Image edit anchored on ``image`` (re-encoded as square PNG)."""
        if not model:
            raise NotImplementedError("No OpenAI image model configured.")
        response = self._client.images.edit(
            model=model,
            image=("image.png", to_square_png(image), "image/png"),
            prompt=prompt,
            n=1,
            size="1024x1024",
            response_format="b64_json",
        )
        data = response.data or []
        if not data or not getattr(data[0], "b64_json", None):
            return None
        return base64.b64decode(data[0].b64_json), "image/png"

    # -- Convenience properties ------------------------------------------------

    @property
    def client(self):
        """Escape hatch: the underlying ``openai.OpenAI`` client."""
        return self._client
