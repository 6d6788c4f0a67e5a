# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Persistent per-request cost accounting."""

import csv
import io
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from feedbot.llm_client import UsageMetadata
from feedbot.persistence import PersistenceError, utc_timestamp, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILENAME: str = "openrouter_cost_ledger.json"
LEDGER_CSV_HEADERS: tuple[str, ...] = (
    "Timestamp",
    "Model",
    "Prompt Tokens",
    "Completion Tokens",
    "Total Tokens",
    "Cost USD",
)


@dataclass(frozen=True)
class LedgerEntry:
    """Represent one billed provider request."""

    timestamp: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_usd: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "costUSD": self.cost_usd,
        }

    @classmethod
    def from_dict(cls, payload: object) -> "LedgerEntry | None":
        if not isinstance(payload, dict) or not isinstance(payload.get("model"), str):
            return None
        try:
            return cls(
                timestamp=str(payload.get("timestamp") or ""),
                model=payload["model"],
                prompt_tokens=int(payload.get("promptTokens") or 0),
                completion_tokens=int(payload.get("completionTokens") or 0),
                total_tokens=int(payload.get("totalTokens") or 0),
                cost_usd=float(payload.get("costUSD") or 0.0),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class ModelCostSummary:
    """Aggregate ledger entries for one model."""

    model: str
    request_count: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0

    def add(self, entry: LedgerEntry) -> None:
        self.request_count += 1
        self.total_prompt_tokens += entry.prompt_tokens
        self.total_completion_tokens += entry.completion_tokens
        self.total_tokens += entry.total_tokens
        self.total_cost_usd += entry.cost_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "requestCount": self.request_count,
            "totalPromptTokens": self.total_prompt_tokens,
            "totalCompletionTokens": self.total_completion_tokens,
            "totalTokens": self.total_tokens,
            "totalCostUSD": self.total_cost_usd,
        }


@dataclass
class LedgerDocument:
    """Represent the whole ledger file."""

    created_at: str
    last_updated_at: str
    entries: list[LedgerEntry] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "LedgerDocument":
        now = utc_timestamp()
        return cls(created_at=now, last_updated_at=now)

    @property
    def total_cost(self) -> float:
        return sum(entry.cost_usd for entry in self.entries)

    def summary(self) -> dict[str, ModelCostSummary]:
        """Rebuild per-model totals from the entries."""
        summary: dict[str, ModelCostSummary] = {}
        for entry in self.entries:
            summary.setdefault(entry.model, ModelCostSummary(model=entry.model)).add(entry)
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "lastUpdatedAt": self.last_updated_at,
            "entries": [entry.to_dict() for entry in self.entries],
            "summary": {model: item.to_dict() for model, item in self.summary().items()},
        }


class CostLedger:
    """Append provider costs to a JSON ledger.

    Every read-modify-write cycle runs under one lock, so concurrent workers
    never lose entries.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the ledger.

        Args:
            path: Ledger JSON file path.
        """
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def log_request(self, model: str, usage: UsageMetadata) -> LedgerEntry:
        """Append one request to the ledger.

        Args:
            model: Model that served the request.
            usage: Usage reported by the provider; missing counts become zero.

        Returns:
            The appended entry.

        Raises:
            PersistenceError: If the ledger cannot be written.
        """
        return self.log_requests([(model, usage, utc_timestamp())])[0]

    def log_requests(
        self, requests: Iterable[tuple[str, UsageMetadata, str]]
    ) -> list[LedgerEntry]:
        """Append several requests in one write.

        Args:
            requests: ``(model, usage, timestamp)`` triples; timestamps are
                stored as given.

        Returns:
            The appended entries, in input order.

        Raises:
            PersistenceError: If the ledger cannot be written.
        """
        entries = [
            LedgerEntry(
                timestamp=timestamp,
                model=model,
                prompt_tokens=usage.prompt_tokens or 0,
                completion_tokens=usage.completion_tokens or 0,
                total_tokens=usage.total_tokens or 0,
                cost_usd=usage.cost_usd or 0.0,
            )
            for model, usage, timestamp in requests
        ]
        if not entries:
            return entries
        with self._lock:
            document = self._read()
            document.entries.extend(entries)
            document.last_updated_at = utc_timestamp()
            self._write(document)
        return entries

    def load(self) -> LedgerDocument:
        with self._lock:
            return self._read()

    def summary(self) -> dict[str, ModelCostSummary]:
        return self.load().summary()

    def total_cost(self) -> float:
        return self.load().total_cost

    def to_csv(self) -> str:
        """Render ledger entries as CSV text."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(LEDGER_CSV_HEADERS)
        for entry in self.load().entries:
            writer.writerow(
                [
                    entry.timestamp,
                    entry.model,
                    entry.prompt_tokens,
                    entry.completion_tokens,
                    entry.total_tokens,
                    f"{entry.cost_usd:.6f}",
                ]
            )
        return buffer.getvalue()

    def reset(self) -> None:
        """Replace the ledger with an empty document."""
        with self._lock:
            self._write(LedgerDocument.empty())
        logger.info(f"Cost ledger reset (path={self._path})")

    def _read(self) -> LedgerDocument:
        if not self._path.exists():
            return LedgerDocument.empty()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Cost ledger unreadable; starting fresh (path={self._path} error={exc})")
            return LedgerDocument.empty()
        if not isinstance(payload, dict):
            logger.warning(f"Cost ledger malformed; starting fresh (path={self._path})")
            return LedgerDocument.empty()
        fresh = LedgerDocument.empty()
        raw_entries = payload.get("entries")
        entries = [
            entry
            for entry in (
                LedgerEntry.from_dict(item)
                for item in (raw_entries if isinstance(raw_entries, list) else [])
            )
            if entry is not None
        ]
        return LedgerDocument(
            created_at=str(payload.get("createdAt") or fresh.created_at),
            last_updated_at=str(payload.get("lastUpdatedAt") or fresh.last_updated_at),
            entries=entries,
        )

    def _write(self, document: LedgerDocument) -> None:
        try:
            write_json_atomic(self._path, document.to_dict())
        except OSError as exc:
            logger.warning(f"Cost ledger write failed (path={self._path} error={exc})")
            raise PersistenceError(str(exc)) from exc
