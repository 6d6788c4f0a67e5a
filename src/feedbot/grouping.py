# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Fingerprint-based grouping of raw grader records."""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Literal

from feedbot.categories import (
    ASSERTION_CATEGORY_IDS,
    ASSIGNMENT_CATEGORIES,
    BUILD_CATEGORIES,
    INSTRUCTOR_TEST_FAILURE,
    JAVA_VERSION_MISMATCH,
    JAVA_VERSION_RAW_SIGNALS,
    STUDENT_TEST_FAILURE,
    UNKNOWN_CATEGORY,
    Categorizer,
    Category,
)
from feedbot.extract import extract_build_core, extract_core
from feedbot.fingerprint import build_canonical_key, fingerprint
from feedbot.normalizer import (
    INSTRUCTOR_BANNER,
    choose_prompt_text,
    normalize,
    normalize_assertion,
    normalize_build,
)
from feedbot.records import RawRecord

logger = logging.getLogger(__name__)

GroupingProfile = Literal["assignment", "build"]

UNKNOWN_TEST_NAME: str = "Unknown Test"
GROUPED_CSV_HEADERS: tuple[str, ...] = (
    "category",
    "test_name",
    "error_type",
    "count",
    "fingerprint",
    "canonical_key",
    "clean_error_text",
    "assignment_context",
    "unique_submissions",
)


@dataclass
class ErrorGroup:
    """Aggregate every record sharing one fingerprint.

    Attributes:
        fingerprint: Hash of ``canonical_key``.
        canonical_key: Pre-hash grouping key.
        category_id: Category identifier.
        category_name: Category display name.
        normalized_text: Normalized core of the first record.
        occurrences: Number of records mapped to this group.
        submission_ids: Distinct submission identifiers seen.
        examples: Retained example cores, first seen wins.
        original_examples: Raw output text for each retained example.
        test_name_counts: Mode map of test names, in insertion order.
        context_counts: Mode map of assignment parts, in insertion order.
    """

    fingerprint: str
    canonical_key: str
    category_id: str
    category_name: str
    normalized_text: str
    occurrences: int = 0
    submission_ids: set[str] = field(default_factory=set)
    examples: list[str] = field(default_factory=list)
    original_examples: list[str] = field(default_factory=list)
    test_name_counts: dict[str, int] = field(default_factory=dict)
    context_counts: dict[str, int] = field(default_factory=dict)

    @property
    def representative_test_name(self) -> str:
        return mode_value(self.test_name_counts)

    @property
    def representative_context(self) -> str:
        return mode_value(self.context_counts)

    def to_grouped(self) -> "GroupedError":
        """Flatten the group into the row consumed by the job processor."""
        test_name = self.representative_test_name
        processed = self.examples[0] if self.examples else self.normalized_text
        original = self.original_examples[0] if self.original_examples else processed
        return GroupedError(
            category=(
                f"{test_name} - {self.category_name}" if test_name else self.category_name
            ),
            test_name=test_name,
            error_type=self.category_id.replace("-", "_").upper(),
            count=self.occurrences,
            fingerprint=self.fingerprint,
            canonical_key=self.canonical_key,
            clean_error_text=choose_prompt_text(original, processed, self.category_id),
            assignment_context=self.representative_context,
            unique_submissions=len(self.submission_ids),
        )


@dataclass(frozen=True)
class GroupedError:
    """Represent one grouped error row.

    Attributes:
        category: Display label, ``"<test> - <category>"`` when a test is known.
        test_name: Representative test name.
        error_type: Upper-cased category identifier.
        count: Occurrence count.
        fingerprint: Group fingerprint.
        canonical_key: Pre-hash grouping key.
        clean_error_text: Plain error text sent to the model.
        assignment_context: Representative assignment part.
        unique_submissions: Number of distinct submissions in the group.
    """

    category: str
    test_name: str
    error_type: str
    count: int
    fingerprint: str
    canonical_key: str
    clean_error_text: str
    assignment_context: str = ""
    unique_submissions: int = 0


@dataclass(frozen=True)
class GroupingStats:
    """Summarize one grouping pass."""

    total_records: int
    grouped_records: int
    skipped_records: int
    unique_patterns: int
    totals_by_error_type: dict[str, tuple[int, int]]

    @property
    def reduction_percent(self) -> float:
        if self.grouped_records == 0:
            return 0.0
        return (1 - self.unique_patterns / self.grouped_records) * 100.0

    @classmethod
    def from_groups(cls, groups: list[ErrorGroup], total_records: int) -> "GroupingStats":
        """Build statistics for groups produced from ``total_records`` inputs.

        Args:
            groups: Groups returned by :meth:`ErrorGrouper.group`.
            total_records: Number of records offered to the grouper.

        Returns:
            Statistics with per-error-type ``(records, patterns)`` totals.
        """
        grouped_records = sum(group.occurrences for group in groups)
        by_type: dict[str, tuple[int, int]] = {}
        for group in groups:
            error_type = group.category_id.upper()
            records, patterns = by_type.get(error_type, (0, 0))
            by_type[error_type] = (records + group.occurrences, patterns + 1)
        return cls(
            total_records=total_records,
            grouped_records=grouped_records,
            skipped_records=total_records - grouped_records,
            unique_patterns=len(groups),
            totals_by_error_type=dict(
                sorted(by_type.items(), key=lambda item: item[1][0], reverse=True)
            ),
        )


def mode_value(counts: dict[str, int]) -> str:
    """Return the most frequent key.

    Ties resolve to the key inserted first; an empty map yields ``""``.
    """
    best = ""
    best_count = 0
    for key, count in counts.items():
        if count > best_count:
            best = key
            best_count = count
    return best


class ErrorGrouper:
    """Group raw records by canonical error fingerprint."""

    def __init__(self, profile: GroupingProfile = "assignment") -> None:
        """Initialize the grouper.

        Args:
            profile: ``assignment`` for unit-test grader output, ``build`` for
                Gradle build output.

        Raises:
            ValueError: If the profile is unknown.
        """
        if profile not in ("assignment", "build"):
            raise ValueError(f"Unsupported grouping profile: {profile}")
        self._profile = profile
        self._extract: Callable[[str], str]
        self._normalize: Callable[[str], str]
        if profile == "assignment":
            self._extract = extract_core
            self._normalize = normalize
            self._categorizer = Categorizer(ASSIGNMENT_CATEGORIES)
            self._example_limit = 1
        else:
            self._extract = extract_build_core
            self._normalize = normalize_build
            self._categorizer = Categorizer(BUILD_CATEGORIES)
            self._example_limit = 2

    def group(self, records: Iterable[RawRecord]) -> list[ErrorGroup]:
        """Group records by fingerprint.

        Records without output text are skipped and do not count anywhere.

        Args:
            records: Raw records to group.

        Returns:
            Groups sorted by descending occurrence count; ties keep first-seen
            order.
        """
        groups: dict[str, ErrorGroup] = {}
        skipped = 0
        for record in records:
            raw = record.output_text
            if not raw:
                skipped += 1
                continue
            self._upsert(groups, record, raw)

        ordered = sorted(groups.values(), key=lambda group: group.occurrences, reverse=True)
        logger.info(
            f"Grouping completed (profile={self._profile} groups={len(ordered)} "
            f"skipped_records={skipped})"
        )
        return ordered

    def _upsert(self, groups: dict[str, ErrorGroup], record: RawRecord, raw: str) -> None:
        core = self._extract(raw)
        normalized = self._normalize(core)
        category = self._categorize(raw, core, normalized)

        test_name = record.test_name
        if self._profile == "assignment":
            test_name = test_name or UNKNOWN_TEST_NAME
            if category.id in ASSERTION_CATEGORY_IDS:
                canonical_key = build_canonical_key(
                    category.id, normalize_assertion(core), ""
                )
            else:
                canonical_key = build_canonical_key(category.id, test_name, normalized)
        else:
            canonical_key = build_canonical_key(category.id, "", normalized)

        key_hash = fingerprint(canonical_key)
        group = groups.get(key_hash)
        if group is None:
            group = ErrorGroup(
                fingerprint=key_hash,
                canonical_key=canonical_key,
                category_id=category.id,
                category_name=category.name,
                normalized_text=normalized,
            )
            groups[key_hash] = group

        group.occurrences += 1
        if record.submission_id:
            group.submission_ids.add(record.submission_id)
        if len(group.examples) < self._example_limit:
            group.examples.append(core)
            group.original_examples.append(raw)
        if test_name:
            group.test_name_counts[test_name] = group.test_name_counts.get(test_name, 0) + 1
        if record.context:
            group.context_counts[record.context] = (
                group.context_counts.get(record.context, 0) + 1
            )

    def _categorize(self, raw: str, core: str, normalized: str) -> Category:
        category = self._categorizer.categorize(core)
        if category is None and self._profile == "build":
            if any(pattern.search(raw) for pattern in JAVA_VERSION_RAW_SIGNALS):
                category = JAVA_VERSION_MISMATCH
        if category is None:
            category = self._categorizer.categorize(normalized)
        if category is None:
            return UNKNOWN_CATEGORY
        if self._profile == "assignment" and category.id == "test_failure":
            return STUDENT_TEST_FAILURE if INSTRUCTOR_BANNER in core else INSTRUCTOR_TEST_FAILURE
        return category


def write_grouped_csv(rows: list[GroupedError], output_path: Path) -> None:
    """Write grouped rows as CSV.

    Args:
        rows: Grouped rows.
        output_path: Target file path.

    Raises:
        OSError: If directory creation or writing fails.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(GROUPED_CSV_HEADERS)
        for row in rows:
            writer.writerow(
                [
                    row.category,
                    row.test_name,
                    row.error_type,
                    row.count,
                    row.fingerprint,
                    row.canonical_key,
                    row.clean_error_text,
                    row.assignment_context,
                    row.unique_submissions,
                ]
            )
    logger.info(f"Wrote grouped errors (path={output_path} rows={len(rows)})")


def load_grouped_csv(csv_path: Path) -> list[GroupedError]:
    """Load pre-grouped rows from CSV.

    Rows without a fingerprint are dropped with a warning.

    Args:
        csv_path: Grouped CSV path.

    Returns:
        Grouped rows in file order.

    Raises:
        OSError: If the file cannot be read.
    """
    rows: list[GroupedError] = []
    with csv_path.open("r", encoding="utf-8", newline="") as handle:
        for line_no, raw_row in enumerate(csv.DictReader(handle), start=2):
            row_fingerprint = (raw_row.get("fingerprint") or "").strip()
            if not row_fingerprint:
                logger.warning(
                    f"Grouped row has no fingerprint (path={csv_path} line={line_no})"
                )
                continue
            rows.append(
                GroupedError(
                    category=raw_row.get("category") or "",
                    test_name=raw_row.get("test_name") or "",
                    error_type=raw_row.get("error_type") or "",
                    count=_parse_int(raw_row.get("count")),
                    fingerprint=row_fingerprint,
                    canonical_key=raw_row.get("canonical_key") or "",
                    clean_error_text=raw_row.get("clean_error_text") or "",
                    assignment_context=raw_row.get("assignment_context") or "",
                    unique_submissions=_parse_int(raw_row.get("unique_submissions")),
                )
            )
    return rows


def _parse_int(value: str | None) -> int:
    try:
        return int((value or "0").strip() or "0")
    except ValueError:
        return 0
