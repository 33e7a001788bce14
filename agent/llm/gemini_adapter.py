"""Gemini adapter: wraps all google-genai SDK calls.

This is the **only** module in the project that imports ``google.genai``.
All other agent code talks to Gemini through the :class:`GeminiAdapter` and
:class:`GeminiChatSession` interfaces defined here.
"""

from __future__ import annotations

from typing import Any, Iterator

from google import genai
from google.genai import errors as genai_errors, types

from .base import (
    STREAM_CODE_EXECUTION,
    STREAM_SEARCH,
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ResponsePart,
    StreamChunk,
    ToolCall,
    UsageMetadata,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_function_declarations(
    tools: list[FunctionSchema] | None,
) -> list[types.FunctionDeclaration] | None:
    """Convert our FunctionSchema list to Gemini FunctionDeclaration list."""
    if not tools:
        return None
    return [
        types.FunctionDeclaration(
            name=t.name,
            description=t.description,
            parameters=t.parameters,
        )
        for t in tools
    ]


def _history_to_contents(history: list[dict] | None) -> list[types.Content]:
    """Plain display turns -> Gemini contents (assistant becomes ``model``)."""
    contents = []
    for turn in history or []:
        role = "user" if turn.get("role") == "user" else "model"
        contents.append(types.Content(
            role=role,
            parts=[types.Part.from_text(text=turn.get("content") or "")],
        ))
    return contents


def _convert_part(part) -> ResponsePart | None:
    """Map one Gemini part to a ResponsePart (None for thoughts/calls)."""
    if getattr(part, "thought", False):
        return None
    code = getattr(part, "executable_code", None)
    if code is not None:
        language = getattr(code, "language", None)
        return ResponsePart.code(code.code or "", str(getattr(language, "value", language) or "PYTHON"))
    result = getattr(part, "code_execution_result", None)
    if result is not None:
        outcome = getattr(result, "outcome", None)
        return ResponsePart.result(result.output or "", str(getattr(outcome, "value", outcome) or "OUTCOME_OK"))
    inline = getattr(part, "inline_data", None)
    if inline is not None and getattr(inline, "data", None):
        return ResponsePart.image(inline.data, inline.mime_type or "image/png")
    if getattr(part, "text", None):
        return ResponsePart.text_part(part.text)
    return None


def _parse_grounding(meta) -> dict | None:
    """Normalize ``grounding_metadata`` to ``{queries, sources}``."""
    if meta is None:
        return None
    queries = list(getattr(meta, "web_search_queries", None) or [])
    sources = []
    for chunk in getattr(meta, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is not None and getattr(web, "uri", None):
            sources.append({"title": getattr(web, "title", None) or web.uri, "uri": web.uri})
    if not queries and not sources:
        return None
    return {"queries": queries, "sources": sources}


def _parse_usage(meta) -> UsageMetadata:
    if not meta:
        return UsageMetadata()
    return UsageMetadata(
        input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
        output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
        thinking_tokens=getattr(meta, "thoughts_token_count", 0) or 0,
    )


def _parse_response(raw) -> LLMResponse:
    """Parse a raw Gemini response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thoughts: list[str] = []
    parts: list[ResponsePart] = []
    grounding = None

    candidates = getattr(raw, "candidates", None) or []
    if candidates:
        grounding = _parse_grounding(getattr(candidates[0], "grounding_metadata", None))
        content = candidates[0].content
        if content and content.parts:
            for part in content.parts:
                if getattr(part, "thought", False) and getattr(part, "text", None):
                    thoughts.append(part.text)
                elif getattr(part, "function_call", None) and part.function_call.name:
                    tool_calls.append(ToolCall(
                        name=part.function_call.name,
                        args=dict(part.function_call.args) if part.function_call.args else {},
                    ))
                else:
                    converted = _convert_part(part)
                    if converted is None:
                        continue
                    parts.append(converted)
                    if converted.kind == "text":
                        text_parts.append(converted.text)

    has_structured = any(p.kind != "text" for p in parts)
    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=_parse_usage(getattr(raw, "usage_metadata", None)),
        thoughts=thoughts,
        parts=parts if has_structured else [],
        grounding=grounding,
        raw=raw,
    )


# ---------------------------------------------------------------------------
# GeminiChatSession
# ---------------------------------------------------------------------------

class GeminiChatSession(ChatSession):
    """Wraps a ``genai`` chat session."""

    def __init__(self, chat):
        self._chat = chat

    def send(self, message) -> LLMResponse:
        """Send a message (text or list of tool-result Parts) and parse the response."""
        raw = self._chat.send_message(message)
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        """Return serializable history dicts."""
        return [
            content.model_dump(exclude_none=True)
            for content in self._chat.get_history()
        ]


# ---------------------------------------------------------------------------
# GeminiAdapter
# ---------------------------------------------------------------------------

class GeminiAdapter(LLMAdapter):
    """Adapter that wraps all ``google-genai`` SDK calls."""

    def __init__(self, api_key: str, timeout_ms: int = 300_000):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )

    # -- LLMAdapter interface --------------------------------------------------

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> GeminiChatSession:
        config_kwargs: dict[str, Any] = {}
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt

        fds = _build_function_declarations(tools)
        if fds:
            config_kwargs["tools"] = [types.Tool(function_declarations=fds)]
            # The agent runs the loop itself
            config_kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )

        create_kwargs: dict[str, Any] = {
            "model": model,
            "config": types.GenerateContentConfig(**config_kwargs),
        }
        if history:
            create_kwargs["history"] = _history_to_contents(history)

        chat = self._client.chats.create(**create_kwargs)
        return GeminiChatSession(chat)

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
        config_kwargs: dict[str, Any] = {}
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt
        if capability == STREAM_CODE_EXECUTION:
            config_kwargs["tools"] = [types.Tool(code_execution=types.ToolCodeExecution())]
        elif capability == STREAM_SEARCH:
            config_kwargs["tools"] = [types.Tool(google_search=types.GoogleSearch())]

        new_parts = [types.Part.from_text(text=message)]
        for img in images or []:
            new_parts.append(self.make_bytes_part(img.data, img.mime_type or "image/png"))
        contents = _history_to_contents(history) + [types.Content(role="user", parts=new_parts)]

        stream = self._client.models.generate_content_stream(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )

        all_parts: list[ResponsePart] = []
        grounding = None
        usage = None
        for raw in stream:
            candidates = getattr(raw, "candidates", None) or []
            if getattr(raw, "usage_metadata", None):
                usage = _parse_usage(raw.usage_metadata)
            if not candidates:
                continue
            grounding = _parse_grounding(getattr(candidates[0], "grounding_metadata", None)) or grounding
            content = candidates[0].content
            for part in (content.parts if content and content.parts else []):
                converted = _convert_part(part)
                if converted is None:
                    continue
                all_parts.append(converted)
                if converted.kind == "text":
                    yield StreamChunk(text=converted.text)

        structured = all_parts if any(p.kind != "text" for p in all_parts) else []
        if structured or grounding or usage:
            yield StreamChunk(parts=structured, grounding=grounding, usage=usage)

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        # Gemini doesn't use tool_call_id; it matches by name.
        return types.Part.from_function_response(
            name=tool_name,
            response={"result": result},
        )

    def is_quota_error(self, exc: Exception) -> bool:
        if isinstance(exc, genai_errors.ClientError):
            return getattr(exc, "code", None) == 429 or "RESOURCE_EXHAUSTED" in str(exc)
        return False

    def generate_image(
        self, model: str, prompt: str, image: bytes, mime_type: str
    ) -> tuple[bytes, str] | None:
        """Image-output generation anchored on a reference image."""
        if not model:
            raise NotImplementedError("No Gemini image model configured.")
        raw = self._client.models.generate_content(
            model=model,
            contents=[
                "Generate a new image based on this reference image and the "
                f"following prompt. Output the generated image:\n\n{prompt}",
                self.make_bytes_part(image, mime_type),
            ],
            config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
        )
        for candidate in getattr(raw, "candidates", None) or []:
            content = candidate.content
            for part in (content.parts if content and content.parts else []):
                inline = getattr(part, "inline_data", None)
                if inline is not None and getattr(inline, "data", None):
                    return inline.data, inline.mime_type or "image/png"
        return None

    # -- Gemini-specific methods (not in ABC) ----------------------------------

    @staticmethod
    def make_bytes_part(data: bytes, mime_type: str) -> Any:
        """Create a Gemini Part from raw bytes (for image input)."""
        return types.Part.from_bytes(data=data, mime_type=mime_type)

    @property
    def client(self):
        """Escape hatch: the underlying ``genai.Client``."""
        return self._client
