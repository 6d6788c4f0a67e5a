# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Ordered error category catalogs and the categorizer.

Catalog order is part of the classification contract: specific categories come
before the catch-all patterns for the same signal, and evaluation stops at the
first matching pattern. Reordering a catalog changes results.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Category:
    """Represent one labeled error category.

    Attributes:
        id: Stable category identifier used in canonical keys.
        name: Display name.
        patterns: Ordered detection patterns.
        description: Short description of the failure.
        student_message: Optional student-facing explanation.
    """

    id: str
    name: str
    patterns: tuple[re.Pattern[str], ...] = field(default=())
    description: str = ""
    student_message: str | None = None


UNKNOWN_CATEGORY = Category(id="unknown", name="Unknown Error")
STUDENT_TEST_FAILURE = Category(id="student_test_failure", name="Student Test Failure")
INSTRUCTOR_TEST_FAILURE = Category(
    id="instructor_test_failure", name="Instructor Test Failure"
)
ASSERTION_CATEGORY_IDS: frozenset[str] = frozenset(
    {STUDENT_TEST_FAILURE.id, INSTRUCTOR_TEST_FAILURE.id}
)


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.I) for source in sources)


ASSIGNMENT_CATEGORIES: tuple[Category, ...] = (
    Category(
        id="not_implemented",
        name="Not Implemented",
        patterns=_patterns(
            r"Not yet implemented",
            r"UnsupportedOperationException",
            r"NotImplementedException",
            r"fail\(.{0,80}Not yet implemented.{0,80}\)",
            r"not yet been provided by the student",
        ),
        description="Student has not provided an implementation yet",
        student_message=(
            "It looks like this part isn't implemented yet. Start by writing the "
            "method and running tests locally."
        ),
    ),
    Category(
        id="dependency_not_met",
        name="Dependency Not Met",
        patterns=_patterns(
            r"Dependencies Not Met",
            r"not graded because the following dependencies were not satisfied",
            r"NoClassDefFoundError",
            r"ClassNotFoundException",
            r"Could not resolve dependency",
        ),
        description="Grading skipped due to unmet prerequisite or missing dependency",
        student_message=(
            "A prerequisite failed or a dependency is missing. Fix the earlier unit "
            "or add the required dependency."
        ),
    ),
    Category(
        id="mutation_testing_zero_faults",
        name="Mutation Testing: Zero Faults",
        patterns=_patterns(
            r"Faults detected:\s*0\b",
            r"Mutation testing score:\s*0(?:\.0+)?%",
            r"All mutants survived",
            r"Killed mutants:\s*0\b",
            r"Mutations killed:\s*0\b",
        ),
        description="Tests did not catch any mutants",
        student_message=(
            "Your tests didn't catch any bugs. Add more assertions and edge cases."
        ),
    ),
    Category(
        id="mutation_testing_partial",
        name="Mutation Testing: Partial",
        patterns=_patterns(
            r"Faults detected:\s*(?!0)\d+",
            r"Mutation testing score:\s*(?!0(?:\.0+)?%)\d+(?:\.\d+)?%",
            r"Survived mutants:\s*\d+",
        ),
        description="Tests caught some mutants but not all",
        student_message=(
            "Good start! Some bugs were caught, but a few survived. Strengthen tests "
            "for remaining cases."
        ),
    ),
    Category(
        id="test_compilation_failed",
        name="Test Compilation Failed",
        patterns=_patterns(
            r"Your tests failed to compile",
            r"Tests failed to compile",
            r"Failed to compile tests",
        ),
        description="The test sources did not compile",
        student_message="Fix compilation errors in your test code before running tests.",
    ),
    Category(
        id="implementation_incomplete",
        name="Implementation Incomplete",
        patterns=_patterns(r"additional failing tests not shown"),
        description="Additional failing tests indicate an incomplete implementation",
    ),
    Category(
        id="test_failure",
        name="Test Failure",
        patterns=_patterns(
            r"expected:<[^>]+>\s+but was:<[^>]+>",
            r"AssertionError",
            r"ComparisonFailure",
            r"assert\s+.*\s+failed",
            r"AssertionFailedError",
            r"Tests passed:\s*\d+\s*/\s*\d+[\s\S]*?(?:fail|failure|failed)",
        ),
        description="A test failed with incorrect output or state",
        student_message=(
            "A test is failing. Compare expected vs actual values and trace the "
            "code path."
        ),
    ),
)

JAVA_VERSION_MISMATCH = Category(
    id="java_version_mismatch",
    name="Java Version Incompatibility",
    patterns=_patterns(
        r"unsupported class file major version \d+",
        r"unsupported class major version \d+",
        r"unsupported class (?:file )?major version (?:\d+|x)",
        r"has been compiled by a more recent version of the Java Runtime",
        r"UnsupportedClassVersionError",
        r"major\.minor version",
        r"source (?:level|option) \d+ is no longer supported",
        r"target (?:release|option) \d+ (?:is )?not supported",
        r"invalid target release: \d+",
    ),
    description="Code compiled with newer Java version than runtime supports",
    student_message="Your code was compiled with a different Java version.",
)

# Raw-output signals checked when no catalog pattern matched the core.
JAVA_VERSION_RAW_SIGNALS: tuple[re.Pattern[str], ...] = _patterns(
    r"UnsupportedClassVersionError",
    r"unsupported class (?:file )?major version (?:\d+|x)",
    r"has been compiled by a more recent version",
    r"major\.minor version",
    r"source (?:level|option) \d+ is no longer supported",
    r"target (?:release|option) \d+ (?:is )?not supported",
    r"invalid target release: \d+",
)

BUILD_CATEGORIES: tuple[Category, ...] = (
    JAVA_VERSION_MISMATCH,
    Category(
        id="java_toolchain_missing",
        name="Java Toolchain Not Found",
        patterns=_patterns(
            r"Cannot find a Java installation matching this task'?s? requirements",
            r"No matching toolchain",
            r"Could not target platform: 'Java SE \d+' using tool chain",
            r"Failed to calculate the value of task ':[^']+' property 'javaCompiler'",
            r"property 'javaCompiler'",
        ),
        description="Gradle could not resolve a matching Java toolchain",
    ),
    Category(
        id="nullaway_param_nullable",
        name="NullAway: Nullable Parameter",
        patterns=_patterns(
            r"error: \[NullAway\] passing @Nullable .* where @NonNull is required"
        ),
        description="Passing a @Nullable value where a @NonNull parameter is required",
    ),
    Category(
        id="nullaway_field_assignment",
        name="NullAway: Nullable Field Assignment",
        patterns=_patterns(
            r"error: \[NullAway\] assigning @Nullable expression to @NonNull field"
        ),
        description="Assigning a @Nullable expression to a @NonNull field",
    ),
    Category(
        id="nullaway_return_nullable",
        name="NullAway: Nullable Return",
        patterns=_patterns(
            r"error: \[NullAway\] returning @Nullable expression from method with "
            r"@NonNull return type"
        ),
        description="Returning a @Nullable expression from a @NonNull method",
    ),
    Category(
        id="nullaway_deref_nullable",
        name="NullAway: Nullable Dereference",
        patterns=_patterns(r"error: \[NullAway\] dereferenced expression .* is @Nullable"),
        description="Dereferencing an expression that may be null",
    ),
    Category(
        id="nullability_error",
        name="Nullability Error",
        patterns=_patterns(r"\[NullAway\]"),
        description="Code violates @NonNull/@Nullable contracts",
    ),
    Category(
        id="failing_tests",
        name="Failing Tests",
        patterns=_patterns(
            r"There were failing tests",
            r"There were \d+ failing tests",
            r"Failed tests:",
        ),
        description="The test suite reported failing tests",
    ),
    Category(
        id="symbol_not_found",
        name="Symbol Not Found",
        patterns=_patterns(r"cannot find symbol", r"symbol not found"),
        description="Variable, method, or class does not exist or is not imported",
    ),
    Category(
        id="type_mismatch",
        name="Type Mismatch",
        patterns=_patterns(
            r"incompatible types", r"required: .+ found: .+", r"cannot be converted to"
        ),
        description="Wrong type assigned to variable or returned from method",
    ),
    Category(
        id="operator_type_mismatch",
        name="Operator Type Mismatch",
        patterns=_patterns(r"bad operand types for binary operator"),
        description="Using operators on incompatible types",
    ),
    Category(
        id="syntax_error",
        name="Syntax Error",
        patterns=_patterns(
            r"';' expected",
            r"illegal start of expression",
            r"not a statement",
            r"<identifier> expected",
        ),
        description="Code has syntax errors",
    ),
    Category(
        id="method_signature",
        name="Method Signature Error",
        patterns=_patterns(
            r"method .+ cannot be applied to",
            r"no suitable method found for",
            r"constructor .+ cannot be applied to given types",
        ),
        description="Method called with wrong number or type of arguments",
    ),
    Category(
        id="override_mismatch",
        name="Override/Implements Mismatch",
        patterns=_patterns(
            r"does not override or implement a method from a supertype",
            r"MissingOverride",
        ),
        description="Method override annotations or signatures are incorrect",
    ),
    Category(
        id="class_declaration",
        name="Class Declaration Error",
        patterns=_patterns(r"class .+ is public, should be declared in a file named"),
        description="Public class name does not match filename",
    ),
    Category(
        id="duplicate_class",
        name="Duplicate Class",
        patterns=_patterns(r"duplicate class:", r"is already defined"),
        description="Duplicate class or redefinition detected",
    ),
    Category(
        id="abstract_instantiation",
        name="Abstract Class Instantiation",
        patterns=_patterns(r"is abstract; cannot be instantiated"),
        description="Attempting to instantiate an abstract class",
    ),
    Category(
        id="missing_abstract_override",
        name="Missing Abstract Method Override",
        patterns=_patterns(r"is not abstract and does not override abstract method"),
        description="Concrete class missing a required abstract method",
    ),
    Category(
        id="unclosed_block",
        name="Unclosed Block",
        patterns=_patterns(r"reached end of file while parsing"),
        description="Missing closing brace or bracket",
    ),
    Category(
        id="package_error",
        name="Package Error",
        patterns=_patterns(r"package .+ does not exist"),
        description="Package import does not exist or is misspelled",
    ),
    Category(
        id="checkstyle_violation",
        name="Checkstyle Violation",
        patterns=_patterns(
            r"Checkstyle rule violations were found",
            r"Checkstyle violations were found",
        ),
        description="Checkstyle reported coding style violations",
    ),
    Category(
        id="spotless_violation",
        name="Spotless/Formatting Violation",
        patterns=_patterns(
            r"spotlessJavaCheck",
            r"spotlessJavaApply",
            r"format violations",
            r"There were \d+ lint error\(s\)",
        ),
        description="Spotless formatter or lint rules failed",
    ),
    Category(
        id="errorprone_warning",
        name="Error Prone Warning",
        patterns=_patterns(
            r"DuplicateBranches",
            r"EmptyBlockTag",
            r"EqualsGetClass",
            r"UnnecessaryParentheses",
            r"FormatString",
        ),
        description="Static analysis detected code-quality issues",
    ),
)


class Categorizer:
    """Classify text against an ordered category catalog."""

    def __init__(self, catalog: Sequence[Category]) -> None:
        """Initialize the categorizer.

        Args:
            catalog: Categories in evaluation order.

        Raises:
            ValueError: If two categories share an identifier.
        """
        ids = [category.id for category in catalog]
        if len(ids) != len(set(ids)):
            raise ValueError("Category identifiers must be unique.")
        self._rules: list[tuple[re.Pattern[str], Category]] = [
            (pattern, category) for category in catalog for pattern in category.patterns
        ]
        self._by_id = {category.id: category for category in catalog}

    def categorize(self, text: str) -> Category | None:
        """Return the first category with a matching pattern.

        Args:
            text: Core or normalized error text.

        Returns:
            Matching category, or ``None`` when nothing matches.
        """
        for pattern, category in self._rules:
            if pattern.search(text):
                return category
        return None

    def get(self, category_id: str) -> Category | None:
        return self._by_id.get(category_id)
