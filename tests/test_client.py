"""Tests for the LiteLLM-backed model client."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from groqcode.client import LiteLLMClient, litellm_model_name
from groqcode.errors import ModelCallError
from groqcode.events import UsageStats


def _response(content="ok", tool_calls=None, reasoning=None, usage=None, finish="stop"):
    message = SimpleNamespace(
        content=content, tool_calls=tool_calls, reasoning_content=reasoning
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish)],
        usage=usage,
    )


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(
        id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


def _complete(client, tools=None, **kwargs):
    return client.complete(
        [{"role": "user", "content": "hi"}],
        model=kwargs.pop("model", "llama-3.3-70b-versatile"),
        temperature=kwargs.pop("temperature", 0.7),
        tools=tools,
    )


class TestModelName:
    def test_prefixes_groq(self):
        assert litellm_model_name("moonshotai/kimi-k2-instruct") == "groq/moonshotai/kimi-k2-instruct"

    def test_keeps_existing_prefix(self):
        assert litellm_model_name("groq/llama-3.1-8b-instant") == "groq/llama-3.1-8b-instant"


class TestRouting:
    def test_request_arguments(self):
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _response()
            _complete(LiteLLMClient("gsk_test"))
            kwargs = mock_comp.call_args[1]
            assert kwargs["model"] == "groq/llama-3.3-70b-versatile"
            assert kwargs["api_key"] == "gsk_test"
            assert kwargs["temperature"] == 0.7
            assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
            assert "tools" not in kwargs
            assert "tool_choice" not in kwargs
            assert "api_base" not in kwargs

    def test_tools_enable_auto_choice(self):
        tools = [{"type": "function", "function": {"name": "read_file"}}]
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _response()
            _complete(LiteLLMClient("k"), tools=tools)
            kwargs = mock_comp.call_args[1]
            assert kwargs["tools"] == tools
            assert kwargs["tool_choice"] == "auto"

    def test_optional_settings(self):
        client = LiteLLMClient("k", base_url="http://localhost:9999", max_output_tokens=256)
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _response()
            _complete(client, temperature=None)
            kwargs = mock_comp.call_args[1]
            assert kwargs["api_base"] == "http://localhost:9999"
            assert kwargs["max_tokens"] == 256
            assert "temperature" not in kwargs

    def test_api_key_can_be_swapped(self):
        client = LiteLLMClient("old")
        client.api_key = "new"
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _response()
            _complete(client)
            assert mock_comp.call_args[1]["api_key"] == "new"

    def test_proxy_installs_http_client(self, monkeypatch):
        import httpx
        import litellm

        monkeypatch.setattr(litellm, "client_session", None, raising=False)
        client = LiteLLMClient("k", proxy="http://proxy.local:8080")
        assert isinstance(client._http_client, httpx.Client)
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _response()
            _complete(client)
        assert litellm.client_session is client._http_client


class TestReplyParsing:
    def test_plain_content(self):
        usage = SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15)
        with patch("litellm.completion", return_value=_response("hello", usage=usage)):
            reply = _complete(LiteLLMClient("k"))
        assert reply.content == "hello"
        assert reply.tool_calls == ()
        assert reply.finish_reason == "stop"
        assert reply.usage == UsageStats(12, 3, 15)

    def test_reasoning_content(self):
        with patch(
            "litellm.completion",
            return_value=_response("42", reasoning="let me think"),
        ):
            reply = _complete(LiteLLMClient("k"))
        assert reply.reasoning == "let me think"

    def test_tool_calls(self):
        calls = [
            _tool_call("c1", "read_file", '{"file_path": "a"}'),
            _tool_call("c2", "list_files", None),
        ]
        with patch(
            "litellm.completion",
            return_value=_response(None, tool_calls=calls, finish="tool_calls"),
        ):
            reply = _complete(LiteLLMClient("k"))
        assert reply.content is None
        assert [(tc.id, tc.name, tc.arguments) for tc in reply.tool_calls] == [
            ("c1", "read_file", '{"file_path": "a"}'),
            ("c2", "list_files", ""),
        ]

    def test_missing_usage(self):
        with patch("litellm.completion", return_value=_response()):
            reply = _complete(LiteLLMClient("k"))
        assert reply.usage == UsageStats()

    def test_empty_content_is_none(self):
        with patch("litellm.completion", return_value=_response("")):
            reply = _complete(LiteLLMClient("k"))
        assert reply.content is None


class TestErrors:
    def test_provider_failure_wrapped(self):
        with patch("litellm.completion", side_effect=RuntimeError("503 upstream")):
            with pytest.raises(ModelCallError, match="503 upstream"):
                _complete(LiteLLMClient("k"))

    def test_no_choices(self):
        with patch("litellm.completion", return_value=SimpleNamespace(choices=[], usage=None)):
            with pytest.raises(ModelCallError, match="no choices"):
                _complete(LiteLLMClient("k"))


class TestClose:
    def test_close_releases_proxy_session(self, monkeypatch):
        import litellm

        monkeypatch.setattr(litellm, "client_session", None, raising=False)
        client = LiteLLMClient("k", proxy="http://proxy.local:8080")
        http_client = client._http_client
        with patch("litellm.completion", return_value=_response()):
            _complete(client)
        client.close()
        assert http_client.is_closed
        assert litellm.client_session is None
        assert client._http_client is None

    def test_close_leaves_foreign_session(self, monkeypatch):
        import litellm

        first = LiteLLMClient("k", proxy="http://one.local:8080")
        second = LiteLLMClient("k", proxy="http://two.local:8080")
        monkeypatch.setattr(litellm, "client_session", second._http_client, raising=False)
        first.close()
        assert litellm.client_session is second._http_client
        second.close()

    def test_close_without_proxy_is_noop(self):
        LiteLLMClient("k").close()

    def test_call_without_proxy_drops_previous_proxy(self, monkeypatch):
        import litellm

        monkeypatch.setattr(litellm, "client_session", None, raising=False)
        proxied = LiteLLMClient("k", proxy="http://proxy.local:8080")
        direct = LiteLLMClient("k")
        with patch("litellm.completion", return_value=_response()):
            _complete(proxied)
            _complete(direct)
        assert litellm.client_session is None
        proxied.close()
