# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Join persisted hints from every combination into one table."""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from feedbot.cost_ledger import CostLedger
from feedbot.database.json_store import JsonStateStore
from feedbot.grouping import GroupedError
from feedbot.llm_client import UsageMetadata
from feedbot.persistence import Combination, parse_state_file_name, utc_timestamp

logger = logging.getLogger(__name__)

AGGREGATE_BASE_HEADERS: tuple[str, ...] = (
    "category",
    "test_name",
    "error_type",
    "count",
    "fingerprint",
    "clean_error_text",
)
AGGREGATE_USAGE_HEADERS: tuple[str, ...] = (
    "prompt_tokens",
    "completion_tokens",
    "total_tokens",
    "cost_usd",
)


@dataclass
class AggregateRow:
    """Represent one group with the hint from each combination.

    Attributes:
        group: Grouped error row.
        hints: Hint text keyed by combination label.
        prompt_tokens: Prompt tokens summed over every combination.
        completion_tokens: Completion tokens summed over every combination.
        total_tokens: Total tokens summed over every combination.
        cost_usd: Cost summed over every combination.
    """

    group: GroupedError
    hints: dict[str, str] = field(default_factory=dict)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


@dataclass(frozen=True)
class AggregateTable:
    combinations: list[Combination]
    rows: list[AggregateRow]

    @property
    def hint_count(self) -> int:
        return sum(len(row.hints) for row in self.rows)


@dataclass(frozen=True)
class BackfillResult:
    documents: int
    added: int
    skipped: int


def discover_state_files(output_dir: Path) -> list[tuple[Combination, Path]]:
    """Find state documents and decode their combinations from the file names.

    Args:
        output_dir: Directory scanned non-recursively.

    Returns:
        ``(combination, path)`` pairs sorted by file name.
    """
    if not output_dir.is_dir():
        logger.warning(f"State directory not found (output_dir={output_dir})")
        return []
    found: list[tuple[Combination, Path]] = []
    for path in sorted(output_dir.iterdir()):
        if not path.is_file():
            continue
        combination = parse_state_file_name(path.name)
        if combination is not None:
            found.append((combination, path))
    logger.info(f"Discovered state documents (output_dir={output_dir} count={len(found)})")
    return found


def aggregate_results(groups: Sequence[GroupedError], output_dir: Path) -> AggregateTable:
    """Collect persisted hints for every group across every combination.

    Entries for fingerprints not present in ``groups`` are ignored.

    Args:
        groups: Grouped errors, in output order.
        output_dir: Directory holding JSON state documents.

    Returns:
        One row per distinct fingerprint plus the discovered combinations.
        When several groups share a fingerprint, the first one is kept.
    """
    store = JsonStateStore(output_dir)
    combinations = [combination for combination, _ in discover_state_files(output_dir)]
    rows: dict[str, AggregateRow] = {}
    for group in groups:
        if group.fingerprint in rows:
            logger.warning(
                f"Duplicate fingerprint in groups; keeping first row "
                f"(fingerprint={group.fingerprint} test_name={group.test_name})"
            )
            continue
        rows[group.fingerprint] = AggregateRow(group=group)
    for combination in combinations:
        ignored = 0
        for fingerprint, entry in store.load(combination).items():
            row = rows.get(fingerprint)
            if row is None:
                ignored += 1
                continue
            row.hints[combination.label] = entry.hint
            if entry.usage is not None:
                row.prompt_tokens += entry.usage.prompt_tokens or 0
                row.completion_tokens += entry.usage.completion_tokens or 0
                row.total_tokens += entry.usage.total_tokens or 0
                row.cost_usd += entry.usage.cost_usd or 0.0
        if ignored:
            logger.info(
                f"Ignored entries without a matching group (combination={combination.label} "
                f"count={ignored})"
            )
    return AggregateTable(combinations=combinations, rows=list(rows.values()))


def backfill_ledger(ledger: CostLedger, output_dir: Path) -> BackfillResult:
    """Append the usage stored in every state document to the cost ledger.

    Entries keep their original timestamps and are billed to the model of
    their combination. Entries without complete usage are skipped. Running
    twice appends the same entries twice.

    Args:
        ledger: Ledger receiving the entries.
        output_dir: Directory holding JSON state documents.

    Returns:
        Counts of scanned documents, added entries and skipped entries.

    Raises:
        PersistenceError: If the ledger cannot be written.
    """
    store = JsonStateStore(output_dir)
    documents = discover_state_files(output_dir)
    requests: list[tuple[str, UsageMetadata, str]] = []
    skipped = 0
    for combination, _ in documents:
        for entry in store.load(combination).values():
            if entry.usage is None or not _usage_is_complete(entry.usage):
                skipped += 1
                continue
            requests.append((combination.model, entry.usage, entry.timestamp or utc_timestamp()))
    ledger.log_requests(requests)
    result = BackfillResult(documents=len(documents), added=len(requests), skipped=skipped)
    logger.info(
        f"Ledger backfill finished (output_dir={output_dir} documents={result.documents} "
        f"added={result.added} skipped={result.skipped})"
    )
    return result


def _usage_is_complete(usage: UsageMetadata) -> bool:
    return None not in (
        usage.prompt_tokens,
        usage.completion_tokens,
        usage.total_tokens,
        usage.cost_usd,
    )


def write_aggregate_csv(table: AggregateTable, output_path: Path) -> None:
    """Write the aggregate table with one hint column per combination.

    Args:
        table: Table built by :func:`aggregate_results`.
        output_path: Destination CSV path.
    """
    labels = [combination.label for combination in table.combinations]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow([*AGGREGATE_BASE_HEADERS, *labels, *AGGREGATE_USAGE_HEADERS])
        for row in table.rows:
            group = row.group
            writer.writerow(
                [
                    group.category,
                    group.test_name,
                    group.error_type,
                    group.count,
                    group.fingerprint,
                    group.clean_error_text,
                    *(row.hints.get(label, "") for label in labels),
                    row.prompt_tokens,
                    row.completion_tokens,
                    row.total_tokens,
                    f"{row.cost_usd:.6f}",
                ]
            )
    logger.info(f"Aggregate CSV written (path={output_path} rows={len(table.rows)})")
