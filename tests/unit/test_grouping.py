import csv
import re
from pathlib import Path

import pytest

from feedbot.categories import (
    ASSIGNMENT_CATEGORIES,
    BUILD_CATEGORIES,
    Categorizer,
    Category,
)
from feedbot.fingerprint import build_canonical_key, fingerprint
from feedbot.grouping import (
    GROUPED_CSV_HEADERS,
    UNKNOWN_TEST_NAME,
    ErrorGrouper,
    GroupingStats,
    load_grouped_csv,
    mode_value,
    write_grouped_csv,
)
from feedbot.normalizer import INSTRUCTOR_BANNER
from feedbot.records import RawRecord, load_raw_records


def _record(output: str, name: str = "", part: str = "", submission: str = "") -> RawRecord:
    return RawRecord(
        fields={
            "output": output,
            "name": name,
            "part": part,
            "grader_result_id": submission,
        }
    )


def test_ph2_cat_001_first_matching_category_wins_in_catalog_order() -> None:
    categorizer = Categorizer(ASSIGNMENT_CATEGORIES)

    # Matches both not_implemented and test_failure patterns.
    category = categorizer.categorize("AssertionError: Not yet implemented")

    assert category is not None
    assert category.id == "not_implemented"


def test_ph2_cat_002_zero_faults_precedes_partial_mutation_category() -> None:
    categorizer = Categorizer(ASSIGNMENT_CATEGORIES)

    zero = categorizer.categorize("Faults detected: 0/5")
    partial = categorizer.categorize("Faults detected: 3/5")

    assert zero is not None and zero.id == "mutation_testing_zero_faults"
    assert partial is not None and partial.id == "mutation_testing_partial"


def test_ph2_cat_003_unmatched_text_yields_none() -> None:
    assert Categorizer(ASSIGNMENT_CATEGORIES).categorize("all good") is None


def test_ph2_cat_004_duplicate_category_ids_are_rejected() -> None:
    duplicate = Category(id="x", name="X", patterns=(re.compile("x"),))

    with pytest.raises(ValueError):
        Categorizer([duplicate, duplicate])


def test_ph2_cat_005_build_catalog_detects_java_version_mismatch() -> None:
    category = Categorizer(BUILD_CATEGORIES).categorize(
        "Unsupported class file major version 65"
    )

    assert category is not None
    assert category.id == "java_version_mismatch"


def test_ph2_fp_001_fingerprint_is_deterministic_sixteen_hex_chars() -> None:
    key = build_canonical_key("unknown", "Unknown Test", "boom")

    assert key == "unknown::Unknown Test::boom"
    assert fingerprint(key) == fingerprint(key)
    assert re.fullmatch(r"[0-9a-f]{16}", fingerprint(key))
    assert fingerprint(key) != fingerprint(build_canonical_key("unknown", "", "boom"))


def test_ph2_grp_001_runner_paths_with_different_lines_share_one_group() -> None:
    records = [
        _record("/home/runner/work/x/x/pawtograder/Foo.java:42: NullPointerException"),
        _record("/home/runner/work/y/y/pawtograder/Foo.java:99: NullPointerException"),
    ]

    groups = ErrorGrouper().group(records)

    assert len(groups) == 1
    assert groups[0].occurrences == 2
    assert groups[0].category_id == "unknown"
    assert groups[0].representative_test_name == UNKNOWN_TEST_NAME


def test_ph2_grp_002_equivalent_assertion_values_share_one_group() -> None:
    records = [
        _record("expected:<2.0> but was:<2.5>", name="testScale"),
        _record("expected:<2.00> but was:<2.50>", name="testScaleAgain"),
    ]

    groups = ErrorGrouper().group(records)

    assert len(groups) == 1
    assert groups[0].occurrences == 2
    assert groups[0].category_id == "instructor_test_failure"
    assert groups[0].canonical_key == (
        "instructor_test_failure::expected:<2> but was:<2.5>::"
    )


def test_ph2_grp_003_instructor_banner_marks_student_test_failure() -> None:
    records = [_record(f"{INSTRUCTOR_BANNER}\nexpected:<1> but was:<2>", name="t")]

    groups = ErrorGrouper().group(records)

    assert groups[0].category_id == "student_test_failure"
    assert groups[0].to_grouped().error_type == "STUDENT_TEST_FAILURE"


def test_ph2_grp_004_occurrence_counts_sum_to_non_empty_records() -> None:
    records = [
        _record("Faults detected: 0/5", name="mutants"),
        _record("Faults detected: 0/5", name="mutants"),
        _record("Not yet implemented", name="testA"),
        _record(""),
        _record("Dependencies Not Met", name="testB"),
    ]

    groups = ErrorGrouper().group(records)
    stats = GroupingStats.from_groups(groups, total_records=len(records))

    assert sum(group.occurrences for group in groups) == 4
    assert stats.skipped_records == 1
    assert stats.unique_patterns == 3
    assert stats.reduction_percent == pytest.approx(25.0)
    assert groups[0].occurrences == 2


def test_ph2_grp_005_grouping_is_independent_of_input_order() -> None:
    records = [
        _record("Not yet implemented", name="testA"),
        _record("expected:<1> but was:<2>", name="testB"),
        _record("Faults detected: 2/5", name="mutants"),
        _record("Not yet implemented", name="testA"),
    ]

    forward = ErrorGrouper().group(records)
    backward = ErrorGrouper().group(list(reversed(records)))

    assert {group.fingerprint: group.occurrences for group in forward} == {
        group.fingerprint: group.occurrences for group in backward
    }


def test_ph2_grp_006_test_name_is_part_of_non_assertion_keys() -> None:
    records = [
        _record("Not yet implemented", name="testA"),
        _record("Not yet implemented", name="testB"),
    ]

    groups = ErrorGrouper().group(records)

    assert len(groups) == 2


def test_ph2_grp_007_submissions_examples_and_context_are_tracked() -> None:
    records = [
        _record("expected:<1> but was:<2>", name="testB", part="Part 1", submission="s1"),
        _record("expected:<1> but was:<2>", name="testA", part="Part 2", submission="s2"),
        _record("expected:<1> but was:<2>", name="testA", part="Part 2", submission="s2"),
    ]

    group = ErrorGrouper().group(records)[0]

    assert group.submission_ids == {"s1", "s2"}
    assert len(group.examples) == 1
    assert group.representative_test_name == "testA"
    assert group.representative_context == "Part 2"
    assert group.to_grouped().unique_submissions == 2
    assert group.to_grouped().category == "testA - Instructor Test Failure"


def test_ph2_grp_008_mode_value_ties_resolve_to_first_inserted_key() -> None:
    assert mode_value({"b": 2, "a": 2, "c": 1}) == "b"
    assert mode_value({}) == ""


def test_ph2_grp_009_build_profile_ignores_test_names_and_keeps_two_examples() -> None:
    records = [
        _record("* What went wrong:\nUnsupported class file major version 65", name="x"),
        _record("* What went wrong:\nUnsupported class file major version 61", name="y"),
        _record("* What went wrong:\nUnsupported class file major version 52", name="z"),
    ]

    groups = ErrorGrouper(profile="build").group(records)

    assert len(groups) == 1
    assert groups[0].category_id == "java_version_mismatch"
    assert groups[0].canonical_key.startswith("java_version_mismatch::::")
    assert len(groups[0].examples) == 2


def test_ph2_grp_010_unknown_profile_is_rejected() -> None:
    with pytest.raises(ValueError):
        ErrorGrouper(profile="other")  # type: ignore[arg-type]


def test_ph2_grp_011_grouped_csv_round_trip_drops_rows_without_fingerprint(
    tmp_path: Path,
) -> None:
    groups = ErrorGrouper().group(
        [_record("Not yet implemented", name="testA", submission="s1")]
    )
    rows = [group.to_grouped() for group in groups]
    output_path = tmp_path / "out" / "grouped.csv"

    write_grouped_csv(rows, output_path)
    with output_path.open("a", encoding="utf-8", newline="") as handle:
        csv.writer(handle).writerow(["x", "y", "z", "1", "", "", "", "", "0"])
    loaded = load_grouped_csv(output_path)

    with output_path.open("r", encoding="utf-8", newline="") as handle:
        header = next(csv.reader(handle))
    assert tuple(header) == GROUPED_CSV_HEADERS
    assert loaded == rows


def test_ph2_grp_012_raw_csv_loader_skips_blank_rows_and_reads_first_output(
    tmp_path: Path,
) -> None:
    csv_path = tmp_path / "raw.csv"
    csv_path.write_text(
        "name,output,test_output,grader_result_id\n"
        'testA,,"Not yet implemented",r1\n'
        ",,,\n"
        'testB,"expected:<1> but was:<2>",ignored,r2\n',
        encoding="utf-8",
    )

    records = load_raw_records(csv_path)

    assert len(records) == 2
    assert records[0].output_text == "Not yet implemented"
    assert records[1].output_text == "expected:<1> but was:<2>"
    assert records[1].submission_id == "r2"
