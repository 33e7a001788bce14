"""Tests for agent/model_fallback.py."""

from unittest.mock import MagicMock

from agent.model_fallback import ModelFallback, is_quota_error


class TestModelFallback:
    def test_initial_state(self):
        fb = ModelFallback("gemini-2.5-pro", "gemini-2.5-flash")
        assert fb.model == "gemini-2.5-pro"
        assert not fb.active
        assert fb.can_fall_back()

    def test_activate(self):
        fb = ModelFallback("gemini-2.5-pro", "gemini-2.5-flash")
        fb.activate()
        assert fb.active
        assert fb.model == "gemini-2.5-flash"
        assert not fb.can_fall_back()

    def test_no_fallback_configured(self):
        fb = ModelFallback("gpt-5-nano")
        assert not fb.can_fall_back()
        fb.activate()
        assert fb.model == "gpt-5-nano"


class TestIsQuotaError:
    def test_message_heuristic(self):
        assert is_quota_error(Exception("429 RESOURCE_EXHAUSTED"))
        assert is_quota_error(Exception("status 429"))
        assert not is_quota_error(Exception("500 internal"))

    def test_delegates_to_adapter(self):
        adapter = MagicMock()
        adapter.is_quota_error.return_value = False
        assert is_quota_error(Exception("429"), adapter) is False
        adapter.is_quota_error.assert_called_once()
