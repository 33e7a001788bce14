"""
Automatic model fallback for LLM API calls.

When a call hits a quota or rate limit (429 RESOURCE_EXHAUSTED) and a
fallback model is configured, the agent switches to the fallback for the
remainder of the process and re-issues that one call.
"""

from .logging import get_logger

logger = get_logger()


class ModelFallback:
    """Tracks which model an agent should use.

    Once activated, every subsequent call uses the fallback model.
    """

    def __init__(self, model: str, fallback_model: str = ""):
        self.requested_model = model
        self.fallback_model = fallback_model or ""
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def model(self) -> str:
        """The model to actually use: fallback if active, else requested."""
        if self._active and self.fallback_model:
            return self.fallback_model
        return self.requested_model

    def can_fall_back(self) -> bool:
        return bool(self.fallback_model) and not self._active

    def activate(self) -> None:
        """Activate fallback mode: all future calls use the fallback model."""
        self._active = True
        logger.warning(f"[Fallback] Activated, switching from {self.requested_model} to {self.fallback_model}")


def is_quota_error(exc: Exception, adapter=None) -> bool:
    """Return True if *exc* is a 429 / RESOURCE_EXHAUSTED error.

    Delegates to the adapter if provided, otherwise falls back to checking
    the exception message string (provider-agnostic heuristic).
    """
    if adapter is not None:
        return adapter.is_quota_error(exc)
    msg = str(exc)
    return "429" in msg or "RESOURCE_EXHAUSTED" in msg
