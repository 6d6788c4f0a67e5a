# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Text normalization helpers for grouping grader output.

Every function here is pure: the same input always produces the same output,
independent of process time, locale, or the order in which records arrive.
"""

import logging
import re
from typing import Callable

logger = logging.getLogger(__name__)

REPO_TOKEN: str = "[REPO]"
PATH_TOKEN: str = "<path>"
UUID_TOKEN: str = "<uuid>"
TIMESTAMP_TOKEN: str = "<ts>"
LARGE_NUMBER_TOKEN: str = "LARGE_NUM"
ASSERTION_PLACEHOLDER: str = "expected:<EXPECTED> but was:<ACTUAL>"
INSTRUCTOR_BANNER: str = "Your tests failed against the instructor's solution"
INSTRUCTOR_FALLBACK_SNIPPET: str = "tests_failed_against_instructor_solution"
UNKNOWN_ASSERTION_SNIPPET: str = "unknown_test_failure"

_Rewrite = tuple[re.Pattern[str], str | Callable[[re.Match[str]], str]]

_ASSIGNMENT_REWRITES: list[_Rewrite] = [
    # Runner checkouts: /home/runner/work/<owner>/<repo>/pawtograder/...
    (
        re.compile(
            r"(?:file://)?/home/runner/(?:_work|work)/[^/\s]+/[^/\s]+/"
            r"(?:pawtograder|pawtograder-grading)([^\s]*)",
            re.I,
        ),
        REPO_TOKEN + r"/pawtograder\1",
    ),
    (
        re.compile(r"(?:file://)?/home/runner/(?:_work|work)/[^/\s]+/[^/\s]+", re.I),
        REPO_TOKEN,
    ),
    (re.compile(r"expected:<[^>]+>\s+but\s+was:<[^>]+>", re.I), ASSERTION_PLACEHOLDER),
    (re.compile(r"Tests\s+passed:\s*\d+\s*/\s*\d+", re.I), "Tests passed: X/Y"),
    (re.compile(r"Tests\s+run:\s*\d+", re.I), "Tests run: X"),
    (re.compile(r"Faults\s+detected:\s*\d+\s*/\s*\d+", re.I), "Faults detected: X/Y"),
    (
        re.compile(r"Mutation\s+testing\s+score:\s*\d+(?:\.\d+)?%", re.I),
        "Mutation testing score: X%",
    ),
    (re.compile(r"Total\s+mutants:\s*\d+", re.I), "Total mutants: X"),
    (re.compile(r"Killed\s+mutants:\s*\d+", re.I), "Killed mutants: X"),
    (re.compile(r"Survived\s+mutants:\s*\d+", re.I), "Survived mutants: X"),
    # UUIDs and timestamps go before the ":N" rule, which would split them.
    (
        re.compile(
            r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.I
        ),
        UUID_TOKEN,
    ),
    (re.compile(r"\d{4}-\d{2}-\d{2}T[0-9:.+\-Z]+"), TIMESTAMP_TOKEN),
    (re.compile(r"/[^\s]+\.(?:java|kt|txt|md|xml)(?::\d+)?", re.I), PATH_TOKEN),
    (re.compile(r"[A-Za-z]:\\[^\s)]+"), PATH_TOKEN),
    (re.compile(r"line\s+\d+", re.I), "line X"),
    (re.compile(r":\d+(?::\d+)?"), ":X"),
    (re.compile(r"UnitTest\.\[\d+\]"), "UnitTest.[X]"),
    (re.compile(r"Test\s*#\d+", re.I), "Test #X"),
]

_BUILD_REWRITES: list[_Rewrite] = [
    (re.compile(r"major\s+version\s+\d+", re.I), "major version X"),
    (re.compile(r"gradle-[\d.]+", re.I), "gradle-X"),
    (re.compile(r"/[^\s]+\.jar"), PATH_TOKEN),
    (re.compile(r"file://[^\s)]+"), PATH_TOKEN),
    (re.compile(r"/[A-Za-z0-9_\-/.]+"), PATH_TOKEN),
    (re.compile(r"line\s+\d+", re.I), "line X"),
    (re.compile(r":\d+:"), ":X:"),
    (re.compile(r":\d+"), ":X"),
    (
        re.compile(r"variable\s+['\"]?[A-Za-z_][A-Za-z0-9_]*['\"]?", re.I),
        "variable X",
    ),
    # Capitalised identifiers only, so phrases like "class file" survive.
    (re.compile(r"\bclass\s+['\"]?[A-Z][A-Za-z0-9_]*['\"]?"), "class X"),
]

_WHITESPACE = re.compile(r"\s+")
_ASSERTION_VALUES = re.compile(r"expected:\s*<([^>]+)>\s+but\s+was:\s*<([^>]+)>", re.I)
_TRAILING_ZERO_DECIMAL = re.compile(r"\b(\d+)\.(\d*?)0+\b")
_SCIENTIFIC_NUMBER = re.compile(r"\d+\.\d+E\d+", re.I)
_LONG_NUMBER = re.compile(r"\d{15,}")
_TEST_METHOD_REFERENCE = re.compile(r"\b(?:[a-z_][\w]*\.)+([A-Z]\w*Test)\.(\w+)")
_ASSERTION_FAILED_PREFIX = re.compile(r"org\.opentest4j\.AssertionFailedError:\s*", re.I)

_MARKDOWN_CLEANERS: list[_Rewrite] = [
    (re.compile(r"```"), ""),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"^\s*[*•\-]\s+"), ""),
    (re.compile(r"^\s*❌\s*"), ""),
]
_UNPREFIXED_CATEGORY = re.compile(
    r"^dependency_not_met|mutation_testing_|test_compilation_failed$"
)


def normalize(core: str) -> str:
    """Normalize assignment grader text by replacing volatile substrings.

    Args:
        core: Extracted core text.

    Returns:
        Canonical single-line text with placeholders for paths, counts,
        identifiers and timestamps.
    """
    return _apply(core, _ASSIGNMENT_REWRITES)


def normalize_build(core: str) -> str:
    """Normalize build output text for grouping.

    Args:
        core: Extracted build core text.

    Returns:
        Canonical single-line text with versions, paths, line numbers, variable
        and class names replaced.
    """
    return _apply(core, _BUILD_REWRITES)


def normalize_assertion(text: str) -> str:
    """Derive a grouping snippet for an assertion failure.

    The ``expected``/``actual`` values are kept but stripped of numeric noise:
    trailing decimal zeros are dropped (``2.50`` becomes ``2.5``) and scientific
    notation or very long numerals collapse to ``LARGE_NUM``.

    Args:
        text: Core text of a test-failure record.

    Returns:
        A short, deterministic snippet usable as a grouping discriminant.
    """
    match = _ASSERTION_VALUES.search(text)
    if match:
        expected = _canonical_assertion_value(match.group(1))
        actual = _canonical_assertion_value(match.group(2))
        return f"expected:<{expected}> but was:<{actual}>"
    if INSTRUCTOR_BANNER in text:
        return INSTRUCTOR_FALLBACK_SNIPPET

    method = _TEST_METHOD_REFERENCE.search(text)
    if method:
        return f"test_method:{method.group(1)}.{method.group(2)}"

    lines = text.split("\n")
    for line in lines:
        if "AssertionFailedError" in line and not _is_stack_frame(line):
            cleaned = _ASSERTION_FAILED_PREFIX.sub("", line)
            return _WHITESPACE.sub(" ", cleaned).strip()[:150]
    for line in lines:
        if line.strip() and not _is_stack_frame(line) and "Test failed:" not in line:
            return _WHITESPACE.sub(" ", line).strip()[:100]
    return UNKNOWN_ASSERTION_SNIPPET


def strip_markdown_and_bullets(text: str) -> str:
    """Remove markdown emphasis, bullets and code fences from text."""
    cleaned: list[str] = []
    for line in re.split(r"\r?\n", text):
        for pattern, replacement in _MARKDOWN_CLEANERS:
            line = pattern.sub(replacement, line)
        line = line.strip()
        if line:
            cleaned.append(line)
    return re.sub(r"\s+\n\s+", " \n", " \n".join(cleaned)).strip()


def build_clean_error_text(core: str, test_name: str = "", category_id: str = "") -> str:
    """Build plain error text suitable for an LLM prompt.

    Args:
        core: Extracted core text.
        test_name: Representative test name, if any.
        category_id: Category identifier of the group.

    Returns:
        Plain text, prefixed with ``Test failed: <name>`` for test-level
        categories.
    """
    plain = strip_markdown_and_bullets(core)
    if test_name and not _UNPREFIXED_CATEGORY.search(category_id):
        return f"Test failed: {test_name}\n{plain}".strip()
    return plain


def choose_prompt_text(original: str, processed: str, category_id: str) -> str:
    """Pick the text sent to the model, keeping context the core may have lost.

    Args:
        original: Raw output text of the first example.
        processed: Extracted core of the same example.
        category_id: Category identifier of the group.

    Returns:
        Lightly cleaned text.
    """
    if "mutation" in category_id:
        return _flatten(original)
    if len(processed) < 100 and len(original) > len(processed) * 2:
        return _flatten(original)
    clean = build_clean_error_text(processed, "", category_id)
    if len(clean) < 50 and len(original) > 100:
        return _flatten(original)
    return clean


def _apply(text: str, rewrites: list[_Rewrite]) -> str:
    for pattern, replacement in rewrites:
        text = pattern.sub(replacement, text)
    return _WHITESPACE.sub(" ", text).strip()


def _canonical_assertion_value(value: str) -> str:
    value = _WHITESPACE.sub(" ", value).strip()
    value = _TRAILING_ZERO_DECIMAL.sub(_strip_trailing_zeros, value)
    value = _SCIENTIFIC_NUMBER.sub(LARGE_NUMBER_TOKEN, value)
    return _LONG_NUMBER.sub(LARGE_NUMBER_TOKEN, value)


def _strip_trailing_zeros(match: re.Match[str]) -> str:
    fraction = match.group(2)
    return f"{match.group(1)}.{fraction}" if fraction else match.group(1)


def _is_stack_frame(line: str) -> bool:
    return "at app//" in line or "at java." in line


def _flatten(text: str) -> str:
    return _WHITESPACE.sub(" ", re.sub(r"\n+", "\n", text)).strip()
