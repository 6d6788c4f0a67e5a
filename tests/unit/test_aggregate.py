import csv
from pathlib import Path

import pytest

from feedbot.aggregate import (
    AGGREGATE_BASE_HEADERS,
    AGGREGATE_USAGE_HEADERS,
    aggregate_results,
    backfill_ledger,
    discover_state_files,
    write_aggregate_csv,
)
from feedbot.cost_ledger import CostLedger
from feedbot.database import JsonStateStore
from feedbot.grouping import GroupedError
from feedbot.llm_client import UsageMetadata
from feedbot.persistence import Combination, ProcessingStateEntry

FIRST = Combination(model="openai/gpt-4o-mini", strategy="checklist-strategy")
SECOND = Combination(model="gpt-5-mini", strategy="chain-of-thought")


def _group(fingerprint: str, test_name: str) -> GroupedError:
    return GroupedError(
        category=f"{test_name} - Not Implemented",
        test_name=test_name,
        error_type="NOT_IMPLEMENTED",
        count=2,
        fingerprint=fingerprint,
        canonical_key=f"not_implemented::{test_name}::",
        clean_error_text="Not yet implemented",
    )


def _entry(hint: str, cost: float) -> ProcessingStateEntry:
    return ProcessingStateEntry(
        hint=hint,
        timestamp="2026-01-01T00:00:00Z",
        usage=UsageMetadata(
            prompt_tokens=10, completion_tokens=5, total_tokens=15, cost_usd=cost
        ),
    )


def test_ph6_agg_001_discovers_only_state_documents(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path)
    store.record(FIRST, "fpA", _entry("a", 0.1))
    store.record(SECOND, "fpA", _entry("b", 0.2))
    (tmp_path / "notes.json").write_text("{}", encoding="utf-8")

    found = discover_state_files(tmp_path)

    assert sorted(found, key=lambda item: item[0].label) == sorted(
        [(FIRST, store.path_for(FIRST)), (SECOND, store.path_for(SECOND))],
        key=lambda item: item[0].label,
    )
    assert discover_state_files(tmp_path / "missing") == []


def test_ph6_agg_002_rows_join_hints_and_sum_usage(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path)
    store.record(FIRST, "fpA", _entry("first hint", 0.1))
    store.record(SECOND, "fpA", _entry("second hint", 0.2))
    store.record(SECOND, "fpB", _entry("only second", 0.3))
    store.record(SECOND, "stale", _entry("no group", 0.4))

    table = aggregate_results([_group("fpA", "testA"), _group("fpB", "testB")], tmp_path)

    assert table.hint_count == 3
    first_row, second_row = table.rows
    assert first_row.hints == {FIRST.label: "first hint", SECOND.label: "second hint"}
    assert first_row.total_tokens == 30
    assert first_row.cost_usd == pytest.approx(0.3)
    assert second_row.hints == {SECOND.label: "only second"}


def test_ph6_agg_003_csv_has_one_column_per_combination(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path / "state")
    store.record(FIRST, "fpA", _entry("first hint", 0.1))
    table = aggregate_results([_group("fpA", "testA"), _group("fpB", "testB")], tmp_path / "state")
    output_path = tmp_path / "out" / "aggregate.csv"

    write_aggregate_csv(table, output_path)

    with output_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == [*AGGREGATE_BASE_HEADERS, FIRST.label, *AGGREGATE_USAGE_HEADERS]
    assert rows[1][6] == "first hint"
    assert rows[1][-1] == "0.100000"
    assert rows[2][6] == ""
    assert rows[2][-4:] == ["0", "0", "0", "0.000000"]


def test_ph6_agg_004_duplicate_fingerprints_keep_first_row(tmp_path: Path, caplog) -> None:
    caplog.set_level("INFO")
    store = JsonStateStore(tmp_path)
    store.record(FIRST, "fpA", _entry("first hint", 0.1))

    table = aggregate_results([_group("fpA", "testA"), _group("fpA", "testB")], tmp_path)

    assert [row.group.test_name for row in table.rows] == ["testA"]
    assert table.rows[0].hints == {FIRST.label: "first hint"}
    assert any(
        "Duplicate fingerprint" in record.message and "test_name=testB" in record.message
        for record in caplog.records
    )


def test_ph6_agg_005_backfill_copies_usage_from_every_document(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path / "state")
    store.record(FIRST, "fpA", _entry("first hint", 0.1))
    store.record(SECOND, "fpA", _entry("second hint", 0.2))
    store.record(
        SECOND, "fpB", ProcessingStateEntry(hint="no usage", timestamp="2026-01-02T00:00:00Z")
    )
    ledger = CostLedger(tmp_path / "ledger.json")

    result = backfill_ledger(ledger, tmp_path / "state")

    assert (result.documents, result.added, result.skipped) == (2, 2, 1)
    entries = ledger.load().entries
    assert sorted(entry.model for entry in entries) == sorted([FIRST.model, SECOND.model])
    assert {entry.timestamp for entry in entries} == {"2026-01-01T00:00:00Z"}
    assert ledger.total_cost() == pytest.approx(0.3)


def test_ph6_agg_006_backfill_skips_incomplete_usage(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path)
    store.record(
        FIRST,
        "fpA",
        ProcessingStateEntry(
            hint="partial", timestamp="2026-01-01T00:00:00Z", usage=UsageMetadata(total_tokens=4)
        ),
    )
    ledger = CostLedger(tmp_path / "ledger.json")

    result = backfill_ledger(ledger, tmp_path)

    assert (result.added, result.skipped) == (0, 1)
    assert ledger.load().entries == []
    assert not (tmp_path / "ledger.json").exists()
