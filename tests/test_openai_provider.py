from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from frontdesk.services.errors import LLMProviderError
from frontdesk.services.llm import OpenAIProvider


def _client(mock_client_class):
    client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = client
    return client


def _response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


@patch("frontdesk.services.llm.openai_provider.httpx.Client")
class TestOpenAIProvider:
    def test_text_reply(self, mock_client_class):
        client = _client(mock_client_class)
        client.post.return_value = _response(
            payload={
                "model": "openai/gpt-4o-mini",
                "choices": [{"message": {"role": "assistant", "content": "Hello!"}}],
                "usage": {"total_tokens": 12},
            }
        )
        provider = OpenAIProvider(api_key="sk-test", base_url="https://llm.example.com/v1/")

        response = provider.generate([{"role": "user", "content": "hi"}], max_tokens=150, temperature=0.5)

        assert response.content == "Hello!"
        assert response.total_tokens == 12
        assert response.tool_calls == []
        url = client.post.call_args.args[0]
        kwargs = client.post.call_args.kwargs
        assert url == "https://llm.example.com/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["max_tokens"] == 150
        assert "tools" not in kwargs["json"]

    def test_tool_calls_are_parsed(self, mock_client_class):
        client = _client(mock_client_class)
        client.post.return_value = _response(
            payload={
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_abc",
                                    "type": "function",
                                    "function": {"name": "check_availability", "arguments": '{"date": "2030-01-07"}'},
                                }
                            ],
                        }
                    }
                ]
            }
        )
        tools = [{"type": "function", "function": {"name": "check_availability"}}]

        response = OpenAIProvider(api_key="k").generate([], tools=tools)

        assert response.content == ""
        assert response.tool_calls[0].id == "call_abc"
        assert response.tool_calls[0].arguments == '{"date": "2030-01-07"}'
        assert client.post.call_args.kwargs["json"]["tool_choice"] == "auto"

    def test_timeout(self, mock_client_class):
        _client(mock_client_class).post.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(LLMProviderError, match="timed out"):
            OpenAIProvider(api_key="k").generate([], timeout_seconds=2)

    def test_error_status(self, mock_client_class):
        _client(mock_client_class).post.return_value = _response(429, None, "rate limited")

        with pytest.raises(LLMProviderError) as exc:
            OpenAIProvider(api_key="k").generate([])

        assert exc.value.status_code == 429

    def test_non_json_body(self, mock_client_class):
        response = _response()
        response.json.side_effect = ValueError("no json")
        _client(mock_client_class).post.return_value = response

        with pytest.raises(LLMProviderError):
            OpenAIProvider(api_key="k").generate([])

    def test_error_body(self, mock_client_class):
        _client(mock_client_class).post.return_value = _response(payload={"error": {"message": "bad model"}})

        with pytest.raises(LLMProviderError):
            OpenAIProvider(api_key="k").generate([])
