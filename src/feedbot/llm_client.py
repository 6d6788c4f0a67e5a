# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""LLM provider client abstractions."""

import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol, TypeVar

logger = logging.getLogger(__name__)

ChatRole = Literal["system", "user", "assistant"]
ProviderErrorKind = Literal["rate_limit", "terminal"]
_Number = TypeVar("_Number", int, float)


@dataclass(frozen=True)
class ChatMessage:
    """Represent one chat message sent to a provider."""

    role: ChatRole
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UsageMetadata:
    """Represent token and cost accounting for one provider call.

    Attributes:
        prompt_tokens: Prompt token count.
        completion_tokens: Completion token count.
        total_tokens: Total token count.
        cost_usd: Cost in US dollars, when the provider reports it.
        response_id: Provider-assigned response identifier.
    """

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost_usd: float | None = None
    response_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize populated fields using the persisted camelCase names."""
        payload: dict[str, Any] = {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "costUSD": self.cost_usd,
            "responseId": self.response_id,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, payload: object) -> "UsageMetadata | None":
        """Parse a persisted usage mapping; return ``None`` when unusable."""
        if not isinstance(payload, dict):
            return None
        return cls(
            prompt_tokens=_optional_int(payload.get("promptTokens")),
            completion_tokens=_optional_int(payload.get("completionTokens")),
            total_tokens=_optional_int(payload.get("totalTokens")),
            cost_usd=_optional_float(payload.get("costUSD")),
            response_id=_optional_str(payload.get("responseId")),
        )


@dataclass(frozen=True)
class ProviderResult:
    """Represent a provider response."""

    content: str
    usage: UsageMetadata | None = None


class ProviderError(RuntimeError):
    """Represent a provider call failure.

    Attributes:
        kind: ``rate_limit`` for transient throttling that may be retried,
            ``terminal`` for everything else.
    """

    def __init__(self, message: str, kind: ProviderErrorKind = "terminal") -> None:
        super().__init__(message)
        self.kind: ProviderErrorKind = kind

    @property
    def is_rate_limit(self) -> bool:
        return self.kind == "rate_limit"


class LLMClient(Protocol):
    """Define chat completion behavior for a provider client."""

    def process(
        self,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResult:
        """Send chat messages to a model.

        Args:
            model: Provider model identifier.
            messages: Ordered chat messages.
            temperature: Optional sampling temperature.
            max_tokens: Optional completion token cap.

        Returns:
            Response content and optional usage metadata.

        Raises:
            ProviderError: If the request fails; ``kind`` tells rate limits apart.
        """


def merge_usage(
    first: UsageMetadata | None, second: UsageMetadata | None
) -> UsageMetadata | None:
    """Sum token counts and cost of two calls billed as one result.

    Counts missing on both sides stay ``None``. The first response id wins.
    """
    if first is None:
        return second
    if second is None:
        return first
    return UsageMetadata(
        prompt_tokens=_sum_optional(first.prompt_tokens, second.prompt_tokens),
        completion_tokens=_sum_optional(first.completion_tokens, second.completion_tokens),
        total_tokens=_sum_optional(first.total_tokens, second.total_tokens),
        cost_usd=_sum_optional(first.cost_usd, second.cost_usd),
        response_id=first.response_id or second.response_id,
    )


def _sum_optional(left: _Number | None, right: _Number | None) -> _Number | None:
    if left is None:
        return right
    if right is None:
        return left
    return left + right


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def _optional_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
