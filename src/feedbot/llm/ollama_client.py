# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""LLM client Ollama implementation."""

import logging
from typing import Any

import ollama

from feedbot.llm_client import ChatMessage, ProviderError, ProviderResult, UsageMetadata

logger = logging.getLogger(__name__)

_RATE_LIMIT_STATUS: int = 429


class OllamaClient:
    """Send chat requests to an Ollama provider endpoint."""

    def __init__(self, provider_url: str, client: Any | None = None) -> None:
        """Initialize client configuration.

        Args:
            provider_url: Ollama endpoint base URL.
            client: Pre-built ``ollama.Client``, mainly for tests.
        """
        self._provider_url = provider_url
        self._client = client if client is not None else ollama.Client(host=provider_url)

    def process(
        self,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResult:
        """Send chat messages with the Ollama chat API.

        Args:
            model: Model identifier passed to Ollama.
            messages: Ordered chat messages.
            temperature: Optional sampling temperature.
            max_tokens: Optional cap mapped to ``num_predict``.

        Returns:
            Response content and token usage.

        Raises:
            ProviderError: If the request fails.
        """
        options: dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        try:
            response = self._client.chat(
                model=model,
                messages=[message.as_dict() for message in messages],
                options=options or None,
                stream=False,
            )
        except ollama.ResponseError as exc:
            kind = "rate_limit" if exc.status_code == _RATE_LIMIT_STATUS else "terminal"
            logger.warning(
                f"Ollama request failed (provider_url={self._provider_url} "
                f"model={model} status={exc.status_code} error={exc})"
            )
            raise ProviderError(str(exc), kind=kind) from exc
        except (ollama.RequestError, OSError, ValueError) as exc:
            logger.warning(
                f"Ollama request failed (provider_url={self._provider_url} "
                f"model={model} error={exc})"
            )
            raise ProviderError(str(exc)) from exc

        return ProviderResult(
            content=_extract_response_content(response),
            usage=_extract_usage(response),
        )


def _extract_response_content(response: object) -> str:
    """Extract message content from an Ollama chat response.

    Args:
        response: Ollama response object, typically mapping-like.

    Returns:
        Message content, or empty string if unavailable.
    """
    if isinstance(response, dict):
        message = response.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""
    message = getattr(response, "message", None)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


def _extract_usage(response: object) -> UsageMetadata | None:
    if isinstance(response, dict):
        prompt_tokens = response.get("prompt_eval_count")
        completion_tokens = response.get("eval_count")
    else:
        prompt_tokens = getattr(response, "prompt_eval_count", None)
        completion_tokens = getattr(response, "eval_count", None)
    if not isinstance(prompt_tokens, int) and not isinstance(completion_tokens, int):
        return None
    prompt = prompt_tokens if isinstance(prompt_tokens, int) else 0
    completion = completion_tokens if isinstance(completion_tokens, int) else 0
    return UsageMetadata(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        cost_usd=0.0,
    )
