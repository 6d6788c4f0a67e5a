# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Skip rules that keep uninformative groups away from the provider."""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Sequence

from feedbot.grouping import GroupedError

logger = logging.getLogger(__name__)

DEPENDENCY_ERROR_TYPE: str = "DEPENDENCY_NOT_MET"
INSTRUCTOR_ERROR_TYPE: str = "INSTRUCTOR_TEST_FAILURE"

_DEPENDENCY_GATING = re.compile(
    r"This unit was not graded because the following dependencies were not satisfied",
    re.I,
)
_SCORE_THRESHOLD_GATING = re.compile(
    r"Please meet the required score thresholds shown above before this unit will be graded",
    re.I,
)
_FAULTS_ZERO_OF_FIVE = re.compile(r"Faults detected:\s*0\s*/\s*5", re.I)
_HIDDEN_HINTS_LIMIT = re.compile(
    r"\d+\s+additional hints available but not shown\.[\s\S]*You are limited to 1 hint total",
    re.I,
)
_INSTRUCTOR_CATEGORY = re.compile(r"instructor[_\s-]?test[_\s-]?failure", re.I)
_INSTRUCTOR_NO_DETAIL = (
    re.compile(r"additional failing tests not shown", re.I),
    re.compile(r"hints?\s+available\s+but\s+not\s+shown", re.I),
    re.compile(r"tests passed:\s*\d+\s*/\s*\d+", re.I),
)
_INSTRUCTOR_ACTIONABLE_DETAIL = (
    re.compile(r"AssertionFailedError", re.I),
    re.compile(r"expected:\s*<", re.I),
    re.compile(r"but was:\s*<", re.I),
    re.compile(r"\bat\s+app//", re.I),
    re.compile(r"\bat\s+[\w.$]+\([^)]*:\d+\)", re.I),
    re.compile(
        r"\b(?:NullPointerException|IllegalArgumentException|RuntimeException|Exception)\b",
        re.I,
    ),
)


@dataclass(frozen=True)
class SkipRule:
    """Represent one named skip check.

    Attributes:
        reason: Human-readable reason logged when the rule fires.
        matches: Predicate over the row and its combined searchable text.
    """

    reason: str
    matches: Callable[[GroupedError, str], bool]


def combined_text(row: GroupedError) -> str:
    """Join every searchable field of a row."""
    return f"{row.category}\n{row.error_type}\n{row.canonical_key}\n{row.clean_error_text}"


def _is_dependency_category(row: GroupedError, text: str) -> bool:
    return row.error_type == DEPENDENCY_ERROR_TYPE


def _is_dependency_gating(row: GroupedError, text: str) -> bool:
    return bool(_DEPENDENCY_GATING.search(text))


def _is_score_threshold_gating(row: GroupedError, text: str) -> bool:
    return bool(_SCORE_THRESHOLD_GATING.search(text))


def _is_zero_faults_with_hidden_hints(row: GroupedError, text: str) -> bool:
    return bool(_FAULTS_ZERO_OF_FIVE.search(text) and _HIDDEN_HINTS_LIMIT.search(text))


def _is_instructor_failure_without_detail(row: GroupedError, text: str) -> bool:
    instructor_related = row.error_type == INSTRUCTOR_ERROR_TYPE or bool(
        _INSTRUCTOR_CATEGORY.search(text)
    )
    if not instructor_related:
        return False
    if any(pattern.search(text) for pattern in _INSTRUCTOR_ACTIONABLE_DETAIL):
        return False
    return any(pattern.search(text) for pattern in _INSTRUCTOR_NO_DETAIL)


DEFAULT_SKIP_RULES: tuple[SkipRule, ...] = (
    SkipRule("DEPENDENCY_NOT_MET category", _is_dependency_category),
    SkipRule("Dependency gating system message", _is_dependency_gating),
    SkipRule("Score-threshold gating system message", _is_score_threshold_gating),
    SkipRule("Mutation 0/5 with hidden hints", _is_zero_faults_with_hidden_hints),
    SkipRule(
        "Instructor failure without actionable detail",
        _is_instructor_failure_without_detail,
    ),
)


class SkipPredicate:
    """Evaluate skip rules in order; the first rule that fires wins."""

    def __init__(self, rules: Sequence[SkipRule] = DEFAULT_SKIP_RULES) -> None:
        self._rules = tuple(rules)

    def reason(self, row: GroupedError) -> str | None:
        """Return the reason a row must not reach the provider.

        Args:
            row: Grouped error row.

        Returns:
            Reason of the first firing rule, or ``None`` to process the row.
        """
        text = combined_text(row)
        for rule in self._rules:
            if rule.matches(row, text):
                return rule.reason
        return None
