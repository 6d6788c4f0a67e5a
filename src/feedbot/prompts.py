# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Prompt construction for grouped grader errors."""

import logging

from feedbot.grouping import GroupedError
from feedbot.llm_client import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNMENT_URL: str = (
    "https://neu-pdi.github.io/cs3100-public-resources/assignments/cyb1-recipes"
)

BASE_PROMPT: str = """You are FeedBot, an automated feedback assistant for a programming course.
Help the student understand why their submission failed and how to make progress,
without giving them the solution.
1. Analyze the error output produced by the grading system.
2. Identify the type of problem (build configuration, language version, test failure, runtime error).
3. Infer the misunderstanding or mistake the student likely made.
4. Write a short hint that explains the issue and suggests one concrete next step.
Do NOT provide code or a complete fix. Do NOT mention graders or infrastructure.
If you cannot produce a complete 3-4 sentence hint, output exactly: RETRY.
"""

PROMPT_STRATEGIES: dict[str, str] = {
    "checklist-strategy": (
        "\nStructure the hint as a short checklist of things the student should verify, "
        "most likely cause first.\n"
    ),
    "chain-of-thought": (
        "\nReason step by step about what the failing output implies before writing "
        "the hint, but only output the final hint.\n"
    ),
    "design-recipe-focused": (
        "\nRelate the hint to the design recipe: signatures, purpose statements, "
        "examples, and tests.\n"
    ),
    "concept-oriented": (
        "\nName the programming concept the student should review and explain how it "
        "applies here.\n"
    ),
    "test-design": (
        "\nFocus on how the student could design a test that exposes this problem "
        "locally.\n"
    ),
    "reflection-prompting": (
        "\nEnd with one reflective question that helps the student find the bug "
        "themselves.\n"
    ),
}
DEFAULT_STRATEGIES: tuple[str, ...] = (
    "checklist-strategy",
    "chain-of-thought",
    "design-recipe-focused",
)


class PromptGenerator:
    """Build model prompts for a grouped error and prompt strategy."""

    def __init__(
        self,
        assignment_url: str = DEFAULT_ASSIGNMENT_URL,
        assignment_spec: str = "",
    ) -> None:
        """Initialize prompt settings.

        Args:
            assignment_url: Public assignment URL quoted in every prompt.
            assignment_spec: Optional assignment text appended to the base prompt.
        """
        self._assignment_url = assignment_url
        self._assignment_spec = assignment_spec

    def generate(self, row: GroupedError, strategy: str) -> str:
        """Generate the prompt text.

        Unknown strategies fall back to the base prompt.

        Args:
            row: Grouped error to explain.
            strategy: Prompt strategy identifier.

        Returns:
            Complete prompt text.
        """
        prompt = BASE_PROMPT
        if self._assignment_spec:
            prompt += f"Assignment Spec: {self._assignment_spec}\n"
        variation = PROMPT_STRATEGIES.get(strategy)
        if variation is None:
            logger.debug(f"Unknown prompt strategy; using base prompt (strategy={strategy})")
        else:
            prompt += variation
        return prompt + self._format_row_context(row)

    def messages(self, row: GroupedError, strategy: str) -> list[ChatMessage]:
        return [ChatMessage(role="user", content=self.generate(row, strategy))]

    def _format_row_context(self, row: GroupedError) -> str:
        return (
            f"\nThis is the assignment the student is working on: {self._assignment_url}\n"
            f"\nCategory: {row.category}\n"
            f"Test Name: {row.test_name}\n"
            f"LOG:\n{row.clean_error_text}"
        )
