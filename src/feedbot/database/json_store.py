# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Processing state stored as one JSON document per combination."""

import json
import logging
import threading
from pathlib import Path
from typing import Any

from feedbot.persistence import (
    Combination,
    PersistenceError,
    ProcessingStateEntry,
    state_file_name,
    write_json_atomic,
)

logger = logging.getLogger(__name__)


class JsonStateStore:
    """Persist processing state to ``{"processed": {...}}`` JSON documents."""

    def __init__(self, output_dir: Path) -> None:
        """Initialize the store.

        Args:
            output_dir: Directory holding one state document per combination.
        """
        self._output_dir = output_dir
        self._locks: dict[Combination, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def path_for(self, combination: Combination) -> Path:
        return self._output_dir / state_file_name(combination)

    def load(self, combination: Combination) -> dict[str, ProcessingStateEntry]:
        """Load persisted entries for a combination.

        Args:
            combination: Model and strategy pair.

        Returns:
            Entries keyed by fingerprint; empty when the document is missing or
            unreadable.
        """
        with self._lock_for(combination):
            document = self._read_document(self.path_for(combination))
        entries: dict[str, ProcessingStateEntry] = {}
        for fingerprint, payload in document["processed"].items():
            entry = ProcessingStateEntry.from_dict(payload)
            if entry is None:
                logger.warning(
                    f"Ignoring malformed state entry (model={combination.model} "
                    f"strategy={combination.strategy} fingerprint={fingerprint})"
                )
                continue
            entries[fingerprint] = entry
        return entries

    def record(
        self, combination: Combination, fingerprint: str, entry: ProcessingStateEntry
    ) -> bool:
        """Persist one entry unless the fingerprint is already present.

        The whole document is re-read, updated and atomically replaced while
        the combination lock is held.

        Args:
            combination: Model and strategy pair.
            fingerprint: Group fingerprint.
            entry: Entry to persist.

        Returns:
            ``True`` when written, ``False`` when an entry already existed.

        Raises:
            PersistenceError: If the document cannot be written.
        """
        path = self.path_for(combination)
        with self._lock_for(combination):
            document = self._read_document(path)
            if fingerprint in document["processed"]:
                return False
            document["processed"][fingerprint] = entry.to_dict()
            self._write_document(path, document)
        return True

    def _lock_for(self, combination: Combination) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(combination)
            if lock is None:
                lock = threading.Lock()
                self._locks[combination] = lock
            return lock

    def _read_document(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {"processed": {}}
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"State document unreadable; starting empty (path={path} error={exc})")
            return {"processed": {}}
        processed = document.get("processed") if isinstance(document, dict) else None
        if not isinstance(processed, dict):
            logger.warning(f"State document has no processed map; starting empty (path={path})")
            return {"processed": {}}
        return {"processed": processed}

    def _write_document(self, path: Path, document: dict[str, Any]) -> None:
        try:
            write_json_atomic(path, document)
        except OSError as exc:
            logger.warning(f"State document write failed (path={path} error={exc})")
            raise PersistenceError(str(exc)) from exc
