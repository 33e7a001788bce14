"""Tests for the OpenAI LLM adapter (agent/llm/openai_adapter.py).

These tests mock the ``openai`` SDK so no API key is needed.
"""

import base64
import json
from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock, patch

from agent.llm.base import FunctionSchema, LLMResponse
from agent.llm.openai_adapter import (
    OpenAIAdapter,
    OpenAIChatSession,
    _build_tools,
    _parse_response,
    _parse_tool_calls,
    _user_content,
)


def _completion(content="Hi", tool_calls=None, prompt_tokens=5, completion_tokens=3):
    """Build a mock ChatCompletion."""
    msg = MagicMock()
    msg.content = content
    msg.tool_calls = tool_calls
    msg.reasoning_content = None

    choice = MagicMock()
    choice.message = msg

    usage = MagicMock()
    usage.prompt_tokens = prompt_tokens
    usage.completion_tokens = completion_tokens
    usage.completion_tokens_details = None

    raw = MagicMock()
    raw.choices = [choice]
    raw.usage = usage
    return raw


def _tool_call(call_id, name, arguments):
    tc = MagicMock()
    tc.id = call_id
    tc.function.name = name
    tc.function.arguments = arguments
    return tc


# ---------------------------------------------------------------------------
# Helper builder tests
# ---------------------------------------------------------------------------


class TestBuildTools:
    def test_none_returns_none(self):
        assert _build_tools(None) is None

    def test_empty_returns_none(self):
        assert _build_tools([]) is None

    def test_converts_schemas(self):
        schemas = [
            FunctionSchema(
                name="compute_stats",
                description="Stats",
                parameters={"type": "object", "properties": {"column": {"type": "string"}}},
            ),
        ]
        result = _build_tools(schemas)
        assert len(result) == 1
        assert result[0]["type"] == "function"
        assert result[0]["function"]["name"] == "compute_stats"
        assert "properties" in result[0]["function"]["parameters"]


class TestUserContent:
    def test_text_only_stays_string(self):
        assert _user_content("hi", None) == "hi"

    def test_images_become_data_uris(self):
        img = SimpleNamespace(data=b"abc", mime_type="image/jpeg")
        content = _user_content("look", [img])
        assert content[0] == {"type": "text", "text": "look"}
        assert content[1]["image_url"]["url"] == "data:image/jpeg;base64," + base64.b64encode(b"abc").decode()


class TestParseToolCalls:
    def test_none_returns_empty(self):
        assert _parse_tool_calls(None) == []

    def test_parses_tool_calls(self):
        result = _parse_tool_calls([_tool_call("call_abc123", "compute_stats", '{"column": "likes"}')])
        assert result[0].name == "compute_stats"
        assert result[0].args == {"column": "likes"}
        assert result[0].id == "call_abc123"

    def test_handles_invalid_json(self):
        result = _parse_tool_calls([_tool_call("call_xyz", "t", "not valid json")])
        assert result[0].args == {}

    def test_handles_empty_arguments(self):
        result = _parse_tool_calls([_tool_call("call_empty", "t", "")])
        assert result[0].args == {}


# ---------------------------------------------------------------------------
# _parse_response tests
# ---------------------------------------------------------------------------


class TestParseResponse:
    def test_text_only(self):
        result = _parse_response(_completion(content="Hello world", prompt_tokens=10, completion_tokens=5))
        assert isinstance(result, LLMResponse)
        assert result.text == "Hello world"
        assert result.tool_calls == []
        assert result.usage.input_tokens == 10
        assert result.usage.output_tokens == 5

    def test_tool_calls(self):
        raw = _completion(content=None, tool_calls=[_tool_call("call_abc", "top_n", '{"column": "x"}')])
        result = _parse_response(raw)
        assert result.text == ""
        assert result.tool_calls[0].id == "call_abc"

    def test_empty_choices(self):
        raw = MagicMock()
        raw.choices = []
        raw.usage = None
        result = _parse_response(raw)
        assert result.text == ""
        assert result.tool_calls == []

    def test_no_usage(self):
        raw = _completion()
        raw.usage = None
        assert _parse_response(raw).usage.input_tokens == 0


# ---------------------------------------------------------------------------
# OpenAIAdapter tests (mocked SDK)
# ---------------------------------------------------------------------------


class TestOpenAIAdapterMocked:
    @pytest.fixture
    def adapter(self):
        with patch("agent.llm.openai_adapter.openai") as mock_openai:
            mock_client = MagicMock()
            mock_openai.OpenAI.return_value = mock_client
            a = OpenAIAdapter(api_key="test-key", base_url="https://api.test.com/v1")
            a._mock_client = mock_client
            return a

    def test_constructor_sets_base_url(self):
        with patch("agent.llm.openai_adapter.openai") as mock_openai:
            mock_openai.OpenAI.return_value = MagicMock()
            OpenAIAdapter(api_key="key", base_url="https://custom.api/v1")
            mock_openai.OpenAI.assert_called_once_with(
                api_key="key",
                base_url="https://custom.api/v1",
                timeout=300.0,
            )

    def test_constructor_no_base_url(self):
        with patch("agent.llm.openai_adapter.openai") as mock_openai:
            mock_openai.OpenAI.return_value = MagicMock()
            OpenAIAdapter(api_key="key", timeout_ms=10_000)
            mock_openai.OpenAI.assert_called_once_with(api_key="key", timeout=10.0)

    def test_create_chat_with_history_and_tools(self, adapter):
        session = adapter.create_chat(
            model="gpt-5-nano",
            system_prompt="System",
            tools=[FunctionSchema(name="test", description="A test tool", parameters={"type": "object"})],
            history=[
                {"role": "user", "content": "Hello"},
                {"role": "assistant", "content": "Hi there!"},
            ],
        )
        assert isinstance(session, OpenAIChatSession)
        assert [m["role"] for m in session._messages] == ["system", "user", "assistant"]
        assert session._tools[0]["function"]["name"] == "test"

    def test_make_tool_result_message(self, adapter):
        result = adapter.make_tool_result_message(
            "compute_stats", {"status": "success", "mean": 1}, tool_call_id="call_abc123",
        )
        assert result["role"] == "tool"
        assert result["tool_call_id"] == "call_abc123"
        assert json.loads(result["content"])["status"] == "success"

    def test_make_tool_result_message_no_id(self, adapter):
        result = adapter.make_tool_result_message("compute_stats", {"status": "success"})
        assert result["tool_call_id"].startswith("call_")

    def test_is_quota_error_true(self, adapter):
        import openai as real_openai
        try:
            exc = real_openai.RateLimitError(
                message="rate limited",
                response=MagicMock(status_code=429, headers={}),
                body=None,
            )
        except TypeError:
            pytest.skip("Cannot construct RateLimitError in this SDK version")
        assert adapter.is_quota_error(exc) is True

    def test_is_quota_error_false(self, adapter):
        assert adapter.is_quota_error(ValueError("something")) is False

    def test_stream_turn_yields_deltas_then_usage(self, adapter):
        def chunk(text):
            return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))], usage=None)

        final = SimpleNamespace(
            choices=[],
            usage=SimpleNamespace(prompt_tokens=4, completion_tokens=2, completion_tokens_details=None),
        )
        adapter._mock_client.chat.completions.create.return_value = iter(
            [chunk("Hel"), chunk(None), chunk("lo"), final]
        )

        out = list(adapter.stream_turn("gpt-5-nano", "Sys", [{"role": "user", "content": "a"}], "b"))

        assert [c.text for c in out if c.text] == ["Hel", "lo"]
        assert out[-1].usage.input_tokens == 4
        kwargs = adapter._mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user", "user"]

    def test_generate_image_decodes_b64(self, adapter):
        adapter._mock_client.images.edit.return_value = SimpleNamespace(
            data=[SimpleNamespace(b64_json=base64.b64encode(b"IMG").decode())]
        )
        with patch("agent.llm.openai_adapter.to_square_png", return_value=b"png") as conv:
            out = adapter.generate_image("dall-e-2", "watercolor", b"raw", "image/jpeg")
        conv.assert_called_once_with(b"raw")
        assert out == (b"IMG", "image/png")
        kwargs = adapter._mock_client.images.edit.call_args.kwargs
        assert kwargs["image"] == ("image.png", b"png", "image/png")
        assert kwargs["prompt"] == "watercolor"

    def test_generate_image_without_model(self, adapter):
        with pytest.raises(NotImplementedError):
            adapter.generate_image("", "p", b"raw", "image/png")

    def test_client_property(self, adapter):
        assert adapter.client is adapter._mock_client


# ---------------------------------------------------------------------------
# OpenAIChatSession tests
# ---------------------------------------------------------------------------


class TestOpenAIChatSession:

    def _session(self, client, tools=None):
        return OpenAIChatSession(
            client=client,
            model="gpt-5-nano",
            messages=[{"role": "system", "content": "You are helpful."}],
            tools=tools,
        )

    def test_send_user_message(self):
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = _completion(content="Hello!")
        session = self._session(mock_client)

        result = session.send("Hi there")
        assert result.text == "Hello!"
        assert len(session._messages) == 3  # system + user + assistant
        assert "tools" not in mock_client.chat.completions.create.call_args.kwargs

    def test_tool_round_trip_keeps_call_ids(self):
        mock_client = MagicMock()
        call = _tool_call("call_1", "compute_stats", '{"column": "likes"}')
        mock_client.chat.completions.create.side_effect = [
            _completion(content=None, tool_calls=[call]),
            _completion(content="Mean is 20"),
        ]
        session = self._session(mock_client, tools=[{"type": "function", "function": {"name": "compute_stats"}}])

        first = session.send("avg likes?")
        assert first.tool_calls[0].id == "call_1"
        assert session._messages[-1]["tool_calls"][0]["id"] == "call_1"

        second = session.send([{"role": "tool", "tool_call_id": "call_1", "content": "{}"}])
        assert second.text == "Mean is 20"
        assert [m["role"] for m in session._messages] == ["system", "user", "assistant", "tool", "assistant"]
        assert mock_client.chat.completions.create.call_args.kwargs["tool_choice"] == "auto"

    def test_unsupported_message_type(self):
        with pytest.raises(TypeError):
            self._session(MagicMock()).send(42)

    def test_get_history_is_copy(self):
        session = self._session(MagicMock())
        history = session.get_history()
        history.append({"role": "user"})
        assert len(session._messages) == 1
