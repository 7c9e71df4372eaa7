"""OpenRouter chat-completion client used by the data-collection assistant.

Calls are synchronous, bounded by a fixed timeout, and every failure mode
(missing key, transport error, HTTP error, malformed payload) surfaces as
`OpenRouterClientError` so callers can recover without partial state.
"""

from __future__ import annotations

import os
from typing import Any, Literal, TypedDict

import requests

OPENROUTER_CHAT_COMPLETIONS_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_OPENROUTER_MODEL = "google/gemini-2.5-flash"
REQUEST_TIMEOUT_SECONDS = 30


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class OpenRouterClientError(RuntimeError):
    """Raised when OpenRouter request execution or parsing fails."""


def _get_openrouter_api_key() -> str:
    """Load OpenRouter API key from environment.

    Raises:
        OpenRouterClientError: If `OPENROUTER_API_KEY` is missing or empty.
    """
    api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
    if not api_key:
        raise OpenRouterClientError(
            "OPENROUTER_API_KEY is not set. Please export a valid API key in environment variables."
        )
    return api_key


def _get_openrouter_model() -> str:
    return os.getenv("OPENROUTER_MODEL", "").strip() or DEFAULT_OPENROUTER_MODEL


def _extract_assistant_content(response_json: dict[str, Any]) -> str:
    """Extract assistant message content from OpenRouter response payload.

    Raises:
        OpenRouterClientError: If the expected payload structure is missing.
    """
    try:
        choices = response_json["choices"]
        if not choices:
            raise KeyError("choices is empty")
        content = choices[0]["message"]["content"]
    except (KeyError, TypeError, IndexError) as exc:
        raise OpenRouterClientError(
            "OpenRouter response format was unexpected; could not extract assistant message content."
        ) from exc

    if not isinstance(content, str) or not content.strip():
        raise OpenRouterClientError("OpenRouter returned an empty assistant message content.")

    return content


def generate_chat_completion(
    system_prompt: str,
    messages: list[ChatMessage],
    temperature: float = 0.7,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> str:
    """Generate the next assistant turn for a multi-turn conversation.

    Args:
        system_prompt: System instruction prompt, sent ahead of the history.
        messages: Prior user/assistant turns, oldest first.
        temperature: Sampling temperature for generation.
        timeout: Seconds before the HTTP request is abandoned.

    Returns:
        Assistant message content string.

    Raises:
        OpenRouterClientError: For missing API key, transport/API failures,
            timeouts, or malformed responses.
    """
    api_key = _get_openrouter_api_key()

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    payload = {
        "model": _get_openrouter_model(),
        "temperature": temperature,
        "messages": [{"role": "system", "content": system_prompt}, *messages],
    }

    try:
        response = requests.post(
            OPENROUTER_CHAT_COMPLETIONS_URL,
            headers=headers,
            json=payload,
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise OpenRouterClientError(f"Failed to reach OpenRouter API: {exc}") from exc

    if response.status_code >= 400:
        body_preview = response.text[:500]
        raise OpenRouterClientError(f"OpenRouter API returned HTTP {response.status_code}: {body_preview}")

    try:
        response_json = response.json()
    except ValueError as exc:
        raise OpenRouterClientError("OpenRouter API returned a non-JSON response.") from exc

    return _extract_assistant_content(response_json)
