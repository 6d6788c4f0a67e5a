# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Raw grading record model and CSV loading."""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

OUTPUT_TEXT_FIELDS: tuple[str, ...] = (
    "output",
    "test_output",
    "mutation_output",
    "build_output",
    "stdout",
    "stderr",
)
SUBMISSION_ID_FIELDS: tuple[str, ...] = ("grader_result_id", "submission_id")


@dataclass(frozen=True)
class RawRecord:
    """Represent one raw grader output row.

    Attributes:
        fields: Original column values keyed by header name.
    """

    fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def output_text(self) -> str:
        """Return the first populated output-text column, or an empty string."""
        for name in OUTPUT_TEXT_FIELDS:
            value = self.fields.get(name)
            if isinstance(value, str) and value:
                return value
        return ""

    @property
    def test_name(self) -> str:
        return (self.fields.get("name") or "").strip()

    @property
    def context(self) -> str:
        return (self.fields.get("part") or "").strip()

    @property
    def submission_id(self) -> str:
        for name in SUBMISSION_ID_FIELDS:
            value = (self.fields.get(name) or "").strip()
            if value:
                return value
        return ""


def load_raw_records(csv_path: Path) -> list[RawRecord]:
    """Load raw records from a CSV file with a header row.

    Args:
        csv_path: Source CSV path.

    Returns:
        Records in file order. Fully blank rows are dropped.

    Raises:
        OSError: If the file cannot be read.
    """
    records: list[RawRecord] = []
    with csv_path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        for row in reader:
            values = {key: value or "" for key, value in row.items() if key}
            if not any(value.strip() for value in values.values()):
                continue
            records.append(RawRecord(fields=values))
    logger.info(f"Loaded raw records (path={csv_path} records={len(records)})")
    return records
