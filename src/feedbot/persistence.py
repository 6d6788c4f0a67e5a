# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Processing state contracts."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from feedbot.llm_client import UsageMetadata

logger = logging.getLogger(__name__)

STATE_FILE_PREFIX: str = "feedbot_progress_m-"
STATE_FILE_STRATEGY_MARKER: str = "_p-"
STATE_FILE_SUFFIX: str = ".json"


class PersistenceError(RuntimeError):
    """Represent a fatal state storage failure."""


@dataclass(frozen=True)
class Combination:
    """Identify one (model, prompt strategy) pair."""

    model: str
    strategy: str

    @property
    def label(self) -> str:
        return f"{self.model} + {self.strategy}"


@dataclass(frozen=True)
class ProcessingStateEntry:
    """Represent one persisted hint.

    Attributes:
        hint: Model output for the group.
        timestamp: ISO-8601 UTC time the hint was produced.
        usage: Token and cost accounting, when the provider reported it.
    """

    hint: str
    timestamp: str
    usage: UsageMetadata | None = None

    @classmethod
    def now(cls, hint: str, usage: UsageMetadata | None = None) -> "ProcessingStateEntry":
        return cls(hint=hint, timestamp=utc_timestamp(), usage=usage)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"hint": self.hint, "timestamp": self.timestamp}
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: object) -> "ProcessingStateEntry | None":
        """Parse a persisted entry; return ``None`` for malformed payloads."""
        if not isinstance(payload, dict):
            return None
        hint = payload.get("hint")
        timestamp = payload.get("timestamp")
        if not isinstance(hint, str):
            return None
        return cls(
            hint=hint,
            timestamp=timestamp if isinstance(timestamp, str) else "",
            usage=UsageMetadata.from_dict(payload.get("usage")),
        )


class StateStore(Protocol):
    """Define durable per-combination processing state."""

    def load(self, combination: Combination) -> dict[str, ProcessingStateEntry]:
        """Return every persisted entry keyed by fingerprint.

        Missing or unreadable state loads as empty.
        """

    def record(
        self, combination: Combination, fingerprint: str, entry: ProcessingStateEntry
    ) -> bool:
        """Persist one entry.

        Returns:
            ``False`` when an entry already exists for the fingerprint; the
            existing entry is kept.

        Raises:
            PersistenceError: If the write fails.
        """


def utc_timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


def state_file_name(combination: Combination) -> str:
    """Build the state document name for a combination.

    Model and strategy are percent-encoded so names like ``openai/gpt-4o-mini``
    stay a single path component. Underscores are encoded too, so the
    strategy marker never appears inside an encoded part.
    """
    return (
        f"{STATE_FILE_PREFIX}{_encode_name_part(combination.model)}"
        f"{STATE_FILE_STRATEGY_MARKER}{_encode_name_part(combination.strategy)}"
        f"{STATE_FILE_SUFFIX}"
    )


def parse_state_file_name(name: str) -> Combination | None:
    """Decode a state document name back into its combination.

    Returns:
        The combination, or ``None`` when ``name`` is not a state document.
    """
    if not name.startswith(STATE_FILE_PREFIX) or not name.endswith(STATE_FILE_SUFFIX):
        return None
    body = name[len(STATE_FILE_PREFIX) : -len(STATE_FILE_SUFFIX)]
    model, marker, strategy = body.rpartition(STATE_FILE_STRATEGY_MARKER)
    if not marker or not model or not strategy:
        return None
    return Combination(model=unquote(model), strategy=unquote(strategy))


def _encode_name_part(value: str) -> str:
    return quote(value, safe="").replace("_", "%5F")


def write_json_atomic(path: Path, document: Any) -> None:
    """Write ``document`` as JSON, replacing ``path`` atomically.

    Raises:
        OSError: If the temporary file cannot be written or moved into place.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    descriptor, temp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
