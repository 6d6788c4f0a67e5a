# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Core excerpt extraction from verbose grader output."""

import re

BLOCK_WINDOW: int = 30
ASSERTION_LEADING_CONTEXT: int = 1
ASSERTION_TRAILING_LINES: int = 5
FALLBACK_LINE_COUNT: int = 8
FALLBACK_LINE_WIDTH: int = 240
BUILD_BLOCK_WINDOW: int = 6
BUILD_FALLBACK_CHARS: int = 300

_DEPENDENCY_SIGNAL = re.compile(r"Dependencies Not Met|not graded because", re.I)
_MUTATION_SIGNAL = re.compile(
    r"Mutation testing|Faults detected|Mutation testing score", re.I
)
_ASSERTION_SIGNAL = re.compile(
    r"expected:<[^>]+>\s+but was:<[^>]+>|AssertionError|ComparisonFailure", re.I
)
_GRADLE_FAILURE_HEADER = "* What went wrong:"
_GRADLE_TRY_HEADER = "* Try:"
_FAILING_TESTS_SIGNAL = re.compile(r"There were failing tests|Failed tests:", re.I)
_REPORT_LINK = re.compile(r"See the report at:", re.I)
_GRADER_PREAMBLE = re.compile(
    r"Beginning grading|Copying student files|Setting up virtual environment"
    r"|Linting student submission|Running \."
)


def extract_core(raw: str) -> str:
    """Reduce raw assignment grader output to its diagnostic excerpt.

    Rules are tried in order and the first match wins: dependency gating block,
    mutation-testing summary block, assertion-focused window, then a short
    fallback snippet.

    Args:
        raw: Raw multi-line output text.

    Returns:
        Extracted core text; empty when ``raw`` is empty.
    """
    if not raw:
        return ""
    lines = raw.split("\n")

    for signal in (_DEPENDENCY_SIGNAL, _MUTATION_SIGNAL):
        index = _find_line(lines, signal)
        if index is not None:
            return _block_until_blank(lines, index, BLOCK_WINDOW)

    index = _find_line(lines, _ASSERTION_SIGNAL)
    if index is not None:
        start = max(0, index - ASSERTION_LEADING_CONTEXT)
        end = min(len(lines), index + 1 + ASSERTION_TRAILING_LINES)
        return "\n".join(
            line.strip() for line in lines[start:end] if line.strip()
        )

    snippet = [line.strip() for line in lines if line.strip()]
    return "\n".join(
        line[:FALLBACK_LINE_WIDTH] for line in snippet[:FALLBACK_LINE_COUNT]
    )


def extract_build_core(raw: str) -> str:
    """Reduce raw Gradle build output to its diagnostic excerpt.

    Args:
        raw: Raw multi-line build output.

    Returns:
        The ``What went wrong`` block, the failing-tests summary, or a cleaned
        and truncated prefix of the output.
    """
    if not raw:
        return ""
    lines = raw.split("\n")

    for index, line in enumerate(lines):
        if _GRADLE_FAILURE_HEADER not in line:
            continue
        block = [line]
        for follow in lines[index + 1 : index + BUILD_BLOCK_WINDOW]:
            if not follow or _GRADLE_TRY_HEADER in follow:
                break
            if follow.strip():
                block.append(follow)
        return "\n".join(block).strip()

    index = _find_line(lines, _FAILING_TESTS_SIGNAL)
    if index is not None:
        block = [lines[index].strip()]
        for follow in lines[index + 1 : index + BUILD_BLOCK_WINDOW]:
            if not follow.strip() or _REPORT_LINK.search(follow):
                break
            block.append(follow.strip())
        return "\n".join(block).strip()

    cleaned = "\n".join(line for line in lines if not _GRADER_PREAMBLE.search(line))
    return cleaned[:BUILD_FALLBACK_CHARS].strip()


def _find_line(lines: list[str], pattern: re.Pattern[str]) -> int | None:
    for index, line in enumerate(lines):
        if pattern.search(line):
            return index
    return None


def _block_until_blank(lines: list[str], start: int, window: int) -> str:
    """Collect stripped lines from ``start`` until a blank line or the window ends."""
    block: list[str] = []
    for line in lines[start : start + window]:
        if not line.strip():
            break
        block.append(line.strip())
    return "\n".join(block).strip()
