"""LLM client: one text generation call per batch (Gemini SDK or OpenAI-compatible HTTP; retry, circuit breaker)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from circuitbreaker import circuit
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from codemapper.config import GOOGLE_PROVIDER, ProviderConfig

logger = logging.getLogger(__name__)

# Operational constants (not API keys, model names, or paths).
RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT = 1
RETRY_MAX_WAIT = 60


class LLMClientError(Exception):
    """Raised when the generation call fails.

    The run loop marks the whole batch Failed with .message.
    is_transient: True for errors that may succeed on retry (429, timeout, 5xx, network).
    """

    def __init__(self, message: str, is_transient: bool = False) -> None:
        self.message = message
        self.is_transient = is_transient
        super().__init__(message)


def _is_llm_transient(exc: BaseException) -> bool:
    """Return True if the exception is a transient LLM error (retryable)."""
    return isinstance(exc, LLMClientError) and getattr(exc, "is_transient", False)


def _parse_chat_response_content(response: httpx.Response) -> str:
    """Extract content string from a chat completion response; raise LLMClientError on bad status or body."""
    if response.status_code in (401, 403):
        raise LLMClientError(
            f"LLM API authentication failed ({response.status_code}): invalid or missing API key.",
            is_transient=False,
        )
    if response.status_code == 429:
        raise LLMClientError(
            "LLM API rate limit exceeded (429). Try again later.", is_transient=True
        )
    if response.status_code >= 500:
        raise LLMClientError(
            f"LLM API server error ({response.status_code}): {response.text[:500]}",
            is_transient=True,
        )
    if response.status_code >= 400:
        raise LLMClientError(
            f"OpenAI/Local API Error ({response.status_code}): {response.text[:500]}",
            is_transient=False,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise LLMClientError(
            f"Invalid LLM API response (not JSON): {e}", is_transient=False
        ) from e
    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices or not isinstance(choices, list):
        raise LLMClientError(
            "Invalid LLM API response: missing or empty choices.", is_transient=False
        )
    first = choices[0] if isinstance(choices[0], dict) else {}
    if first.get("finish_reason") == "length":
        logger.warning("LLM response was truncated (finish_reason=length); diagram may be incomplete.")
    message = first.get("message")
    if not isinstance(message, dict):
        raise LLMClientError(
            "Invalid LLM API response: missing message in choices.", is_transient=False
        )
    content = message.get("content")
    if content is None:
        return ""
    return content if isinstance(content, str) else str(content)


@circuit(failure_threshold=5, recovery_timeout=60, expected_exception=LLMClientError)
@retry(
    retry=retry_if_exception(_is_llm_transient),
    stop=stop_after_attempt(RETRY_ATTEMPTS),
    wait=wait_random_exponential(multiplier=1, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
    reraise=True,
)
async def _generate_openai_compatible(
    system_prompt: str,
    user_prompt: str,
    config: ProviderConfig,
) -> str:
    """POST {base_url}/chat/completions; bearer credential only when a key is set (local servers need none)."""
    url = config.base_url.rstrip("/") + "/chat/completions"
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"
    payload: dict[str, Any] = {
        "model": config.model_name,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": config.temperature,
        "stream": False,
    }
    try:
        async with httpx.AsyncClient(timeout=config.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise LLMClientError(f"LLM API request timed out: {e}", is_transient=True) from e
    except httpx.NetworkError as e:
        raise LLMClientError(f"LLM API network error: {e}", is_transient=True) from e
    return _parse_chat_response_content(response)


@circuit(failure_threshold=5, recovery_timeout=60, expected_exception=LLMClientError)
@retry(
    retry=retry_if_exception(_is_llm_transient),
    stop=stop_after_attempt(RETRY_ATTEMPTS),
    wait=wait_random_exponential(multiplier=1, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
    reraise=True,
)
async def _generate_google(
    system_prompt: str,
    user_prompt: str,
    config: ProviderConfig,
) -> str:
    """Call Gemini generate_content with the system prompt as system instruction."""
    client = genai.Client(api_key=config.api_key)
    try:
        response = await client.aio.models.generate_content(
            model=config.model_name,
            contents=user_prompt,
            config=genai_types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=config.temperature,
            ),
        )
    except genai_errors.APIError as e:
        code = getattr(e, "code", None) or 0
        transient = code == 429 or code >= 500
        raise LLMClientError(f"Gemini API error ({code}): {e}", is_transient=transient) from e
    except httpx.TimeoutException as e:
        raise LLMClientError(f"Gemini API request timed out: {e}", is_transient=True) from e
    except httpx.NetworkError as e:
        raise LLMClientError(f"Gemini API network error: {e}", is_transient=True) from e
    return response.text or ""


async def generate(system_prompt: str, user_prompt: str, config: ProviderConfig) -> str:
    """Run one generation call and return the raw response text.

    Transient errors (429, 5xx, timeout, network) are retried with exponential backoff
    and jitter; the circuit breaker opens after 5 failures for 60s.

    Args:
        system_prompt: Instructions (output format, markers).
        user_prompt: Batch context: tree, current diagrams, file contents.
        config: Provider selection from Settings.provider_config().

    Returns:
        Raw model text (fences and markers are handled by the generation adapter).

    Raises:
        LLMClientError: Missing credential/model, non-2xx, malformed body, or transport failure.
    """
    if not (config.model_name or "").strip():
        raise LLMClientError("LLM model is not configured. Set MODEL_NAME in the environment.")
    logger.info(
        "LLM request provider=%s model=%s prompt_chars=%d",
        config.provider,
        config.model_name,
        len(system_prompt) + len(user_prompt),
    )
    if config.provider == GOOGLE_PROVIDER:
        if not (config.api_key or "").strip():
            raise LLMClientError(
                "Gemini API key is not set. Set API_KEY in the environment.", is_transient=False
            )
        return await _generate_google(system_prompt, user_prompt, config)
    return await _generate_openai_compatible(system_prompt, user_prompt, config)
