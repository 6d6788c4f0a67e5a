# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Structured (JSON object) response handling for provider output.

Parsing is a tagged result: callers receive either a validated
:class:`StructuredSuccess` or a :class:`StructuredFailure` explaining why, never
an exception for malformed model text.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

from feedbot.llm_client import (
    ChatMessage,
    LLMClient,
    ProviderError,
    ProviderResult,
    UsageMetadata,
    merge_usage,
)

logger = logging.getLogger(__name__)

COULD_NOT_COMPLY: str = "COULD_NOT_COMPLY"

ParseSource = Literal["direct", "extracted", "repaired"]

_CODE_FENCE = re.compile(r"```(?:json)?", re.I)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_REPAIR_INSTRUCTIONS: str = (
    "Reformat the following text as a single JSON object. "
    "Respond with JSON only, no commentary. Required keys: {fields}.\n\n{text}"
)


@dataclass(frozen=True)
class StructuredSuccess:
    """Represent a parsed JSON object that has every required field."""

    value: dict[str, Any]
    source: ParseSource = "direct"


@dataclass(frozen=True)
class StructuredFailure:
    """Represent a response that could not be turned into a valid object."""

    reason: str
    missing_fields: tuple[str, ...] = field(default=())


StructuredParse = StructuredSuccess | StructuredFailure


def parse_structured(text: str, required_fields: Sequence[str] = ()) -> StructuredParse:
    """Parse model text into a JSON object.

    A direct parse is attempted first, then the first balanced ``{...}``
    substring.

    Args:
        text: Raw model output.
        required_fields: Keys that must be present in the object.

    Returns:
        Success with the validated object, or a failure with the reason.
    """
    cleaned = _CODE_FENCE.sub("", text).strip()
    direct = _load_object(cleaned)
    if direct is not None:
        return _validate(direct, required_fields, "direct")

    candidate = extract_first_json_object(cleaned)
    if candidate is None:
        return StructuredFailure(reason="no JSON object found")
    extracted = _load_object(candidate)
    if extracted is None:
        extracted = _load_object(_TRAILING_COMMA.sub(r"\1", candidate))
    if extracted is None:
        return StructuredFailure(reason="JSON object is malformed")
    return _validate(extracted, required_fields, "extracted")


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring.

    Braces inside JSON string literals are ignored.

    Args:
        text: Text that may embed a JSON object.

    Returns:
        The object substring, or ``None`` when no balanced object exists.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


class StructuredResponder:
    """Wrap a provider client so responses come back as JSON objects."""

    def __init__(
        self,
        client: LLMClient,
        required_fields: Sequence[str] = (),
        repair_model: str | None = None,
    ) -> None:
        """Initialize the responder.

        Args:
            client: Provider client used for the request and the repair call.
            required_fields: Keys the object must contain.
            repair_model: Model used for the repair call; defaults to the
                requesting model.
        """
        self._client = client
        self._required_fields = tuple(required_fields)
        self._repair_model = repair_model

    def process(
        self,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResult:
        """Request a structured response.

        Args:
            model: Provider model identifier.
            messages: Ordered chat messages.
            temperature: Optional sampling temperature.
            max_tokens: Optional completion token cap.

        Returns:
            Result whose content is the normalized JSON object text, or
            :data:`COULD_NOT_COMPLY` when parsing and repair both fail.

        Raises:
            ProviderError: If the initial request fails.
        """
        result = self._client.process(
            model, messages, temperature=temperature, max_tokens=max_tokens
        )
        parsed = parse_structured(result.content, self._required_fields)
        usage = result.usage
        if isinstance(parsed, StructuredFailure):
            parsed, repair_usage = self._repair(model, result.content, parsed)
            usage = merge_usage(usage, repair_usage)
        if isinstance(parsed, StructuredFailure):
            logger.warning(
                f"Structured response unusable (model={model} reason={parsed.reason} "
                f"missing_fields={list(parsed.missing_fields)})"
            )
            return ProviderResult(content=COULD_NOT_COMPLY, usage=usage)
        return ProviderResult(
            content=json.dumps(parsed.value, sort_keys=True), usage=usage
        )

    def _repair(
        self, model: str, text: str, failure: StructuredFailure
    ) -> tuple[StructuredParse, UsageMetadata | None]:
        """Ask a model once to reformat ``text`` as JSON.

        Returns:
            The parse of the repaired text and the usage of the repair call.
        """
        logger.info(f"Attempting JSON repair (model={model} reason={failure.reason})")
        prompt = _REPAIR_INSTRUCTIONS.format(
            fields=", ".join(self._required_fields) or "any", text=text
        )
        try:
            repaired = self._client.process(
                self._repair_model or model,
                [ChatMessage(role="user", content=prompt)],
                temperature=0.0,
            )
        except ProviderError as exc:
            return StructuredFailure(reason=f"repair call failed: {exc}"), None
        parsed = parse_structured(repaired.content, self._required_fields)
        if isinstance(parsed, StructuredSuccess):
            return StructuredSuccess(value=parsed.value, source="repaired"), repaired.usage
        return parsed, repaired.usage


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _validate(
    value: dict[str, Any], required_fields: Sequence[str], source: ParseSource
) -> StructuredParse:
    missing = tuple(name for name in required_fields if name not in value)
    if missing:
        return StructuredFailure(reason="missing required fields", missing_fields=missing)
    return StructuredSuccess(value=value, source=source)
