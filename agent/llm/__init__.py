"""LLM abstraction layer: provider-agnostic interface for LLM interactions.

Re-exports the public API so consumers can write:
    from agent.llm import LLMAdapter, LLMResponse, create_adapter, ...

``create_adapter`` is the single place where the configured provider is
turned into a concrete adapter; no other call site branches on the provider.
"""

from .base import (
    STREAM_CODE_EXECUTION,
    STREAM_PLAIN,
    STREAM_SEARCH,
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ProviderError,
    ResponsePart,
    StreamChunk,
    ToolCall,
    UsageMetadata,
)

PROVIDERS = ("gemini", "openai", "anthropic")


def create_adapter(settings) -> LLMAdapter:
    """Build the adapter for ``settings.provider``.

    SDK modules are imported lazily so only the selected provider's package
    has to be importable.

    Raises:
        ValueError: If the provider is unknown or no API key is configured.
    """
    provider = (settings.provider or "").lower()
    if provider not in PROVIDERS:
        raise ValueError(
            f"Unknown LLM provider '{settings.provider}'. Choose one of: {', '.join(PROVIDERS)}"
        )
    if not settings.api_key:
        raise ValueError(f"No API key configured for provider '{provider}'.")

    if provider == "openai":
        from .openai_adapter import OpenAIAdapter
        return OpenAIAdapter(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout_ms=settings.timeout_ms,
        )
    if provider == "anthropic":
        from .anthropic_adapter import AnthropicAdapter
        return AnthropicAdapter(api_key=settings.api_key, timeout_ms=settings.timeout_ms)

    from .gemini_adapter import GeminiAdapter
    return GeminiAdapter(api_key=settings.api_key, timeout_ms=settings.timeout_ms)
