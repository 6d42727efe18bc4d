"""Tests for codemapper.clients.llm_client: response parsing and provider dispatch (mocked HTTP / SDK)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from codemapper.clients.llm_client import LLMClientError, _parse_chat_response_content, generate
from codemapper.config import ProviderConfig

OPENAI = ProviderConfig(provider="openai", model_name="llama3", base_url="http://localhost:11434/v1/")
GOOGLE = ProviderConfig(provider="google", model_name="gemini-2.5-flash", api_key="fake-key")


def _mock_async_client(mock_client: MagicMock, response: httpx.Response) -> MagicMock:
    mock_instance = MagicMock()
    mock_instance.post = AsyncMock(return_value=response)
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    mock_client.return_value = mock_instance
    return mock_instance


# --- Parsing: chat completion body ---


def test_parse_chat_response_returns_message_content() -> None:
    resp = httpx.Response(200, json={"choices": [{"message": {"content": "=== OVERVIEW DIAGRAM ===\nC4Context"}}]})
    assert _parse_chat_response_content(resp) == "=== OVERVIEW DIAGRAM ===\nC4Context"


def test_parse_chat_response_null_content_is_empty() -> None:
    resp = httpx.Response(200, json={"choices": [{"message": {"content": None}}]})
    assert _parse_chat_response_content(resp) == ""


@pytest.mark.parametrize(
    "status,transient,fragment",
    [
        (401, False, "authentication"),
        (403, False, "authentication"),
        (400, False, "OpenAI/Local API Error (400)"),
        (404, False, "OpenAI/Local API Error (404)"),
        (429, True, "429"),
        (500, True, "500"),
        (503, True, "503"),
    ],
)
def test_parse_chat_response_status_classification(status: int, transient: bool, fragment: str) -> None:
    with pytest.raises(LLMClientError) as exc_info:
        _parse_chat_response_content(httpx.Response(status, text="nope"))
    assert exc_info.value.is_transient is transient
    assert fragment in exc_info.value.message


@pytest.mark.parametrize(
    "body",
    [{"choices": []}, {"nothing": True}, {"choices": [{"text": "legacy"}]}],
)
def test_parse_chat_response_bad_shape_raises(body: dict) -> None:
    with pytest.raises(LLMClientError) as exc_info:
        _parse_chat_response_content(httpx.Response(200, json=body))
    assert not exc_info.value.is_transient


def test_parse_chat_response_not_json_raises() -> None:
    with pytest.raises(LLMClientError) as exc_info:
        _parse_chat_response_content(httpx.Response(200, text="<html>proxy error</html>"))
    assert "not JSON" in exc_info.value.message


# --- OpenAI-compatible provider ---


def test_openai_generate_posts_chat_completion_without_bearer_when_no_key() -> None:
    """Local endpoints: no Authorization header, temperature 0.2, system + user messages."""
    async def _run() -> None:
        with patch("codemapper.clients.llm_client.httpx.AsyncClient") as mock_client:
            resp = httpx.Response(200, json={"choices": [{"message": {"content": "diagram text"}}]})
            mock_instance = _mock_async_client(mock_client, resp)
            out = await generate("SYSTEM", "USER", OPENAI)
            assert out == "diagram text"
            args, kwargs = mock_instance.post.call_args
            assert args[0] == "http://localhost:11434/v1/chat/completions"
            assert "Authorization" not in kwargs["headers"]
            payload = kwargs["json"]
            assert payload["model"] == "llama3"
            assert payload["temperature"] == 0.2
            assert payload["messages"] == [
                {"role": "system", "content": "SYSTEM"},
                {"role": "user", "content": "USER"},
            ]
    asyncio.run(_run())


def test_openai_generate_sends_bearer_when_key_set() -> None:
    cfg = ProviderConfig(provider="openai", model_name="gpt-4o-mini", api_key="sk-test")

    async def _run() -> None:
        with patch("codemapper.clients.llm_client.httpx.AsyncClient") as mock_client:
            resp = httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})
            mock_instance = _mock_async_client(mock_client, resp)
            await generate("S", "U", cfg)
            _, kwargs = mock_instance.post.call_args
            assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    asyncio.run(_run())


def test_openai_generate_401_raises_without_retry() -> None:
    """401 is permanent: one POST, LLMClientError with auth message."""
    async def _run() -> None:
        with patch("codemapper.clients.llm_client.httpx.AsyncClient") as mock_client:
            mock_instance = _mock_async_client(mock_client, httpx.Response(401, text="Unauthorized"))
            with pytest.raises(LLMClientError) as exc_info:
                await generate("S", "U", OPENAI)
            assert "401" in exc_info.value.message
            assert mock_instance.post.await_count == 1
    asyncio.run(_run())


# --- Google provider ---


def test_google_generate_requires_api_key() -> None:
    cfg = ProviderConfig(provider="google", model_name="gemini-2.5-flash", api_key="  ")

    async def _run() -> None:
        with pytest.raises(LLMClientError) as exc_info:
            await generate("S", "U", cfg)
        assert "API_KEY" in exc_info.value.message
    asyncio.run(_run())


def test_generate_requires_model_name() -> None:
    cfg = ProviderConfig(provider="openai", model_name="")

    async def _run() -> None:
        with pytest.raises(LLMClientError) as exc_info:
            await generate("S", "U", cfg)
        assert "MODEL_NAME" in exc_info.value.message
    asyncio.run(_run())


def test_google_generate_uses_sdk_with_system_instruction() -> None:
    async def _run() -> None:
        with patch("codemapper.clients.llm_client.genai.Client") as mock_client_cls:
            client = MagicMock()
            client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text="gemini text"))
            mock_client_cls.return_value = client
            out = await generate("SYSTEM", "USER", GOOGLE)
            assert out == "gemini text"
            mock_client_cls.assert_called_once_with(api_key="fake-key")
            kwargs = client.aio.models.generate_content.call_args.kwargs
            assert kwargs["model"] == "gemini-2.5-flash"
            assert kwargs["contents"] == "USER"
            assert kwargs["config"].system_instruction == "SYSTEM"
            assert kwargs["config"].temperature == 0.2
    asyncio.run(_run())
