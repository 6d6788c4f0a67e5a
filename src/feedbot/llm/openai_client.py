# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""LLM client OpenAI implementation for OpenAI, Azure OpenAI and OpenRouter."""

import logging
from typing import Any, Literal

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AuthenticationError,
    AzureOpenAI,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from feedbot.llm_client import ChatMessage, ProviderError, ProviderResult, UsageMetadata

logger = logging.getLogger(__name__)

OpenAIProvider = Literal["openai", "azure", "openrouter"]

OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
AZURE_DEFAULT_API_VERSION: str = "2025-03-01-preview"
_NO_TEMPERATURE_PREFIXES: tuple[str, ...] = ("gpt-5", "o1")


class OpenAIClient:
    """Send chat completions through the OpenAI SDK."""

    def __init__(
        self,
        provider: OpenAIProvider = "openai",
        api_key: str | None = None,
        endpoint: str | None = None,
        api_version: str = AZURE_DEFAULT_API_VERSION,
        include_cost: bool = False,
        client: OpenAI | None = None,
    ) -> None:
        """Initialize client configuration.

        Args:
            provider: Backend flavor served by the SDK.
            api_key: API key; the SDK falls back to its environment variables.
            endpoint: Base URL, or the Azure resource endpoint.
            api_version: Azure API version.
            include_cost: Ask OpenRouter to report request cost in usage.
            client: Pre-built SDK client, mainly for tests.
        """
        self._provider = provider
        self._api_key = api_key
        self._endpoint = endpoint
        self._api_version = api_version
        self._include_cost = include_cost
        self._client = client

    def process(
        self,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResult:
        """Send chat messages with the Chat Completions API.

        Args:
            model: Model or Azure deployment name.
            messages: Ordered chat messages.
            temperature: Sampling temperature; dropped for models that reject it.
            max_tokens: Optional completion token cap.

        Returns:
            Response content and usage metadata when reported.

        Raises:
            ProviderError: If the request fails. Rate limits carry
                ``kind="rate_limit"``.
        """
        client = self._get_client()
        params: dict[str, Any] = {
            "model": model,
            "messages": [message.as_dict() for message in messages],
        }
        accepts_sampling = supports_temperature(model)
        if temperature is not None and accepts_sampling:
            params["temperature"] = temperature
        if max_tokens is not None:
            params["max_tokens" if accepts_sampling else "max_completion_tokens"] = max_tokens
        if self._provider == "openrouter" and self._include_cost:
            params["extra_body"] = {"usage": {"include": True}}

        try:
            response = client.chat.completions.create(**params)
        except RateLimitError as exc:
            logger.warning(
                f"OpenAI request rate limited (provider={self._provider} model={model} "
                f"error={exc})"
            )
            raise ProviderError(str(exc), kind="rate_limit") from exc
        except (
            APIConnectionError,
            APIError,
            APITimeoutError,
            AuthenticationError,
            BadRequestError,
            InternalServerError,
            NotFoundError,
            PermissionDeniedError,
            AttributeError,
            OSError,
            ValueError,
        ) as exc:
            logger.warning(
                f"OpenAI request failed (provider={self._provider} model={model} "
                f"error={exc})"
            )
            raise ProviderError(str(exc)) from exc

        return ProviderResult(
            content=_extract_response_content(response),
            usage=_extract_usage(response),
        )

    def _get_client(self) -> OpenAI:
        """Get or initialize the OpenAI SDK client.

        Raises:
            ProviderError: If client initialization fails.
        """
        if self._client is not None:
            return self._client
        try:
            if self._provider == "azure":
                self._client = AzureOpenAI(
                    api_key=self._api_key,
                    azure_endpoint=self._endpoint or "",
                    api_version=self._api_version,
                )
            elif self._provider == "openrouter":
                self._client = OpenAI(
                    api_key=self._api_key, base_url=self._endpoint or OPENROUTER_BASE_URL
                )
            else:
                self._client = OpenAI(api_key=self._api_key, base_url=self._endpoint)
        except (OpenAIError, OSError, ValueError) as exc:
            logger.warning(
                f"OpenAI client initialization failed (provider={self._provider} "
                f"endpoint={self._endpoint} error={exc})"
            )
            raise ProviderError(str(exc)) from exc
        return self._client


def supports_temperature(model: str) -> bool:
    """Return whether a model accepts sampling parameters."""
    name = model.rsplit("/", 1)[-1]
    return not name.startswith(_NO_TEMPERATURE_PREFIXES)


def _extract_response_content(response: object) -> str:
    """Extract message text from a chat completion.

    Args:
        response: Chat completion object.

    Returns:
        Content of the first choice, or empty string if unavailable.
    """
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list) and content:
        text = getattr(content[0], "text", None)
        if text is None and isinstance(content[0], dict):
            text = content[0].get("text")
        return text if isinstance(text, str) else ""
    return ""


def _extract_usage(response: object) -> UsageMetadata | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    cost = getattr(usage, "cost", None)
    response_id = getattr(response, "id", None)
    return UsageMetadata(
        prompt_tokens=getattr(usage, "prompt_tokens", None),
        completion_tokens=getattr(usage, "completion_tokens", None),
        total_tokens=getattr(usage, "total_tokens", None),
        cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
        response_id=response_id if isinstance(response_id, str) else None,
    )
