import pytest

from feedbot.extract import extract_build_core, extract_core
from feedbot.normalizer import (
    ASSERTION_PLACEHOLDER,
    INSTRUCTOR_BANNER,
    INSTRUCTOR_FALLBACK_SNIPPET,
    UNKNOWN_ASSERTION_SNIPPET,
    build_clean_error_text,
    choose_prompt_text,
    normalize,
    normalize_assertion,
    normalize_build,
    strip_markdown_and_bullets,
)


def test_ph1_ext_001_dependency_block_wins_and_stops_at_blank_line() -> None:
    raw = "\n".join(
        [
            "Running grader",
            "expected:<1> but was:<2>",
            "Dependencies Not Met",
            "This unit was not graded because the following dependencies were not satisfied:",
            "  - Part 1",
            "",
            "trailing noise",
        ]
    )

    core = extract_core(raw)

    assert core.splitlines() == [
        "Dependencies Not Met",
        "This unit was not graded because the following dependencies were not satisfied:",
        "- Part 1",
    ]


def test_ph1_ext_002_mutation_block_is_bounded_to_thirty_lines() -> None:
    raw = "Faults detected: 2/5\n" + "\n".join(f"mutant {index}" for index in range(60))

    core = extract_core(raw)

    lines = core.splitlines()
    assert lines[0] == "Faults detected: 2/5"
    assert len(lines) == 30


def test_ph1_ext_003_assertion_window_keeps_one_line_before_and_five_after() -> None:
    raw = "\n".join(
        ["header", "context line", "expected:<1> but was:<2>"]
        + [f"at frame {index}" for index in range(10)]
    )

    core = extract_core(raw)

    assert core.splitlines() == [
        "context line",
        "expected:<1> but was:<2>",
        "at frame 0",
        "at frame 1",
        "at frame 2",
        "at frame 3",
        "at frame 4",
    ]


def test_ph1_ext_004_fallback_keeps_eight_non_blank_lines_truncated() -> None:
    raw = "\n\n".join(["x" * 500] + [f"line {index}" for index in range(20)])

    core = extract_core(raw)

    lines = core.splitlines()
    assert len(lines) == 8
    assert lines[0] == "x" * 240
    assert lines[1] == "line 0"


def test_ph1_ext_005_extract_core_of_empty_text_is_empty() -> None:
    assert extract_core("") == ""
    assert extract_build_core("") == ""


def test_ph1_ext_006_build_core_prefers_what_went_wrong_block() -> None:
    raw = "\n".join(
        [
            "> Task :compileJava FAILED",
            "* What went wrong:",
            "Execution failed for task ':compileJava'.",
            "> invalid source release: 21",
            "* Try:",
            "> Run with --stacktrace",
        ]
    )

    core = extract_build_core(raw)

    assert core == (
        "* What went wrong:\nExecution failed for task ':compileJava'.\n"
        "> invalid source release: 21"
    )


def test_ph1_ext_007_build_core_falls_back_to_failing_tests_summary() -> None:
    raw = "\n".join(
        [
            "> Task :test",
            "There were failing tests.",
            "  FooTest > bar FAILED",
            "See the report at: file:///tmp/report.html",
        ]
    )

    assert extract_build_core(raw) == "There were failing tests.\nFooTest > bar FAILED"


def test_ph1_ext_008_build_core_drops_grader_preamble_and_caps_length() -> None:
    raw = "Beginning grading\nCopying student files\n" + "y" * 400

    core = extract_build_core(raw)

    assert "Beginning grading" not in core
    assert len(core) <= 300


def test_ph1_norm_001_runner_paths_and_line_numbers_collapse() -> None:
    first = normalize("/home/runner/work/x/x/pawtograder/Foo.java:42: NullPointerException")
    second = normalize("/home/runner/work/y/y/pawtograder/Foo.java:99: NullPointerException")

    assert first == second
    assert "42" not in first
    assert "NullPointerException" in first


def test_ph1_norm_002_counts_uuids_and_timestamps_are_replaced() -> None:
    text = (
        "Tests passed: 3/7 Faults detected: 1/5 run "
        "123e4567-e89b-12d3-a456-426614174000 at 2024-03-01T10:11:12Z line 17"
    )

    normalized = normalize(text)

    assert "Tests passed: X/Y" in normalized
    assert "Faults detected: X/Y" in normalized
    assert "<uuid>" in normalized
    assert "<ts>" in normalized
    assert "line X" in normalized


def test_ph1_norm_003_expected_actual_pair_becomes_placeholder() -> None:
    assert normalize("expected:<4> but was:<5>") == ASSERTION_PLACEHOLDER


@pytest.mark.parametrize(
    "text",
    [
        "/home/runner/work/a/b/pawtograder/src/Foo.java:12: error",
        "Tests passed: 1/2\nexpected:<1> but was:<2>",
        "Mutation testing score: 40% Survived mutants: 3",
        "C:\\Users\\student\\Foo.java failed at Test #4",
        "plain   text\twith   spaces",
        "failed at line\n5",
        "Tests\npassed: 3/7 Survived\nmutants: 2",
    ],
)
def test_ph1_norm_004_normalize_is_idempotent(text: str) -> None:
    once = normalize(text)

    assert normalize(once) == once


def test_ph1_norm_012_labels_split_across_lines_normalize_in_one_pass() -> None:
    assert normalize("failed at line\n5") == "failed at line X"
    assert normalize("failed at line   17") == "failed at line X"
    assert "7" not in normalize_build("error at line\t7")
    assert normalize("Tests\npassed: 3/7") == "Tests passed: X/Y"


def test_ph1_norm_005_build_normalization_replaces_versions_and_names() -> None:
    text = "Unsupported class file major version 65 in /opt/gradle-8.5/lib/x.jar class Foo"

    normalized = normalize_build(text)

    assert "major version X" in normalized
    assert "65" not in normalized
    assert "class X" in normalized
    assert normalize_build(normalized) == normalized


def test_ph1_norm_006_assertion_snippets_ignore_trailing_zeros() -> None:
    first = normalize_assertion("expected:<2.0> but was:<2.5>")
    second = normalize_assertion("expected:<2.00> but was:<2.50>")

    assert first == second == "expected:<2> but was:<2.5>"


def test_ph1_norm_007_assertion_snippets_collapse_large_numbers() -> None:
    snippet = normalize_assertion("expected:<1.5E10> but was:<1234567890123456>")

    assert snippet == "expected:<LARGE_NUM> but was:<LARGE_NUM>"


def test_ph1_norm_008_assertion_fallbacks_are_ordered() -> None:
    assert normalize_assertion(f"{INSTRUCTOR_BANNER}\nsomething") == INSTRUCTOR_FALLBACK_SNIPPET
    assert (
        normalize_assertion("at edu.course.recipes.RecipeTest.scalesAmounts(RecipeTest.java:3)")
        == "test_method:RecipeTest.scalesAmounts"
    )
    assert (
        normalize_assertion("org.opentest4j.AssertionFailedError: wrong total")
        == "wrong total"
    )
    assert normalize_assertion("\n\n") == UNKNOWN_ASSERTION_SNIPPET


def test_ph1_norm_009_markdown_and_bullets_are_stripped() -> None:
    text = "```\n**Bold** message\n- bullet item\n❌ failed check\n```"

    assert strip_markdown_and_bullets(text) == "Bold message \nbullet item \nfailed check"


def test_ph1_norm_010_clean_error_text_prefixes_test_level_categories_only() -> None:
    assert build_clean_error_text("boom", "testAdd", "test_failure") == (
        "Test failed: testAdd\nboom"
    )
    assert build_clean_error_text("boom", "testAdd", "dependency_not_met") == "boom"


def test_ph1_norm_011_prompt_text_keeps_original_for_mutation_categories() -> None:
    original = "Faults detected: 2/5\n\nSurvived mutants: 3"

    assert choose_prompt_text(original, "Faults detected: 2/5", "mutation_testing_partial") == (
        "Faults detected: 2/5 Survived mutants: 3"
    )
