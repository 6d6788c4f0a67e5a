# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Concurrent hint generation over grouped errors."""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Literal, Sequence

from feedbot.cost_ledger import CostLedger
from feedbot.grouping import GroupedError
from feedbot.llm_client import ChatMessage, LLMClient, ProviderError, ProviderResult
from feedbot.persistence import Combination, ProcessingStateEntry, StateStore
from feedbot.prompts import PromptGenerator
from feedbot.skip import SkipPredicate
from feedbot.structured import COULD_NOT_COMPLY, StructuredResponder

logger = logging.getLogger(__name__)

JobOutcome = Literal["completed", "skipped", "failed"]

ALREADY_PROCESSED_REASON: str = "already processed"


@dataclass(frozen=True)
class ProcessorConfig:
    """Describe pacing, retry and sampling settings for a run.

    Attributes:
        concurrency: Number of worker threads per combination.
        limit: Process only the first ``limit`` groups when set.
        delay_seconds: Pause after each completed job; only used with one worker.
        combination_delay_seconds: Pause between combinations.
        max_retries: Retries allowed for rate-limited calls.
        base_delay_seconds: First retry delay; doubles on every attempt.
        temperature: Sampling temperature sent to the provider.
        max_tokens: Optional completion token cap.
        structured_fields: When set, responses must be JSON objects with
            these keys.
        progress_batch_size: Emit a progress line every N finished jobs.
    """

    concurrency: int = 1
    limit: int | None = None
    delay_seconds: float = 0.0
    combination_delay_seconds: float = 0.0
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    temperature: float | None = 0.2
    max_tokens: int | None = None
    structured_fields: tuple[str, ...] = ()
    progress_batch_size: int = 10

    def __post_init__(self) -> None:
        if self.concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.progress_batch_size <= 0:
            raise ValueError("progress_batch_size must be > 0")


@dataclass
class CombinationStats:
    """Count job outcomes for one combination."""

    combination: Combination
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def finished(self) -> int:
        return self.processed + self.skipped + self.failed

    def add(self, outcome: JobOutcome) -> None:
        if outcome == "completed":
            self.processed += 1
        elif outcome == "skipped":
            self.skipped += 1
        else:
            self.failed += 1

    def summary_line(self) -> str:
        return (
            f"{self.combination.label}: {self.processed} processed, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


@dataclass(frozen=True)
class RunReport:
    """Represent the outcome of one processor run."""

    combinations: list[CombinationStats] = field(default_factory=list)
    total_cost_usd: float | None = None

    def summary_text(self) -> str:
        lines = ["=== SUMMARY ==="]
        lines.extend(stats.summary_line() for stats in self.combinations)
        if self.total_cost_usd is not None:
            lines.append(f"Total cost: ${self.total_cost_usd:.6f}")
        return "\n".join(lines)


class _JobCursor:
    """Hand out job indexes and fingerprints to workers exactly once."""

    def __init__(self, total: int, persisted: set[str]) -> None:
        self._total = total
        self._next_index = 0
        self._persisted = persisted
        self._claimed: set[str] = set()
        self._lock = threading.Lock()

    def claim_index(self) -> int | None:
        with self._lock:
            if self._next_index >= self._total:
                return None
            index = self._next_index
            self._next_index += 1
            return index

    def claim_fingerprint(self, fingerprint: str) -> bool:
        """Return ``False`` when the fingerprint is persisted or already taken."""
        with self._lock:
            if fingerprint in self._persisted or fingerprint in self._claimed:
                return False
            self._claimed.add(fingerprint)
            return True


class JobProcessor:
    """Generate and persist hints for every (combination, group) job."""

    def __init__(
        self,
        client: LLMClient,
        store: StateStore,
        prompt_generator: PromptGenerator,
        config: ProcessorConfig | None = None,
        ledger: CostLedger | None = None,
        skip_predicate: SkipPredicate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the processor.

        Args:
            client: Provider client.
            store: Durable processing state.
            prompt_generator: Builds messages per group and strategy.
            config: Pacing, retry and sampling settings.
            ledger: Cost ledger that receives usage when present.
            skip_predicate: Rules deciding which groups never reach the provider.
            sleep: Sleep function used for retries and pacing.
        """
        self._config = config or ProcessorConfig()
        self._client: LLMClient = (
            StructuredResponder(client, required_fields=self._config.structured_fields)
            if self._config.structured_fields
            else client
        )
        self._store = store
        self._prompt_generator = prompt_generator
        self._ledger = ledger
        self._skip_predicate = skip_predicate or SkipPredicate()
        self._sleep = sleep

    def run(
        self, groups: Sequence[GroupedError], combinations: Sequence[Combination]
    ) -> RunReport:
        """Process every group for every combination.

        Combinations run one after another; jobs inside a combination run on
        ``concurrency`` worker threads.

        Args:
            groups: Grouped errors in processing order.
            combinations: Model and strategy pairs to run.

        Returns:
            Per-combination outcome counts.

        Raises:
            PersistenceError: If state or ledger writes fail.
        """
        selected = list(groups if self._config.limit is None else groups[: self._config.limit])
        report = RunReport()
        for position, combination in enumerate(combinations):
            stats = self._run_combination(selected, combination)
            report.combinations.append(stats)
            logger.info(
                "combination_finished model=%s strategy=%s processed=%s skipped=%s failed=%s",
                combination.model,
                combination.strategy,
                stats.processed,
                stats.skipped,
                stats.failed,
            )
            is_last = position == len(combinations) - 1
            if not is_last and self._config.combination_delay_seconds > 0:
                self._sleep(self._config.combination_delay_seconds)
        if self._ledger is None:
            return report
        return RunReport(
            combinations=report.combinations, total_cost_usd=self._ledger.total_cost()
        )

    def _run_combination(
        self, groups: list[GroupedError], combination: Combination
    ) -> CombinationStats:
        persisted = set(self._store.load(combination))
        stats = CombinationStats(combination=combination, total=len(groups))
        logger.info(
            "combination_started model=%s strategy=%s jobs=%s persisted=%s workers=%s",
            combination.model,
            combination.strategy,
            len(groups),
            len(persisted),
            self._config.concurrency,
        )
        if not groups:
            return stats

        cursor = _JobCursor(total=len(groups), persisted=persisted)
        stats_lock = threading.Lock()
        abort = threading.Event()

        def worker() -> None:
            while not abort.is_set():
                index = cursor.claim_index()
                if index is None:
                    return
                try:
                    outcome = self._run_job(groups[index], combination, cursor)
                except BaseException:
                    abort.set()
                    raise
                with stats_lock:
                    stats.add(outcome)
                    finished = stats.finished
                    failed = stats.failed
                logger.info(
                    "job_outcome model=%s strategy=%s index=%s total=%s outcome=%s",
                    combination.model,
                    combination.strategy,
                    index + 1,
                    len(groups),
                    outcome,
                )
                if finished % self._config.progress_batch_size == 0 or finished == len(groups):
                    self._log_progress(finished, len(groups), failed)
                is_last = index == len(groups) - 1
                if (
                    outcome == "completed"
                    and self._config.concurrency == 1
                    and self._config.delay_seconds > 0
                    and not is_last
                ):
                    self._sleep(self._config.delay_seconds)

        worker_count = min(self._config.concurrency, len(groups))
        with concurrent.futures.ThreadPoolExecutor(max_workers=worker_count) as executor:
            futures = [executor.submit(worker) for _ in range(worker_count)]
            for future in futures:
                future.result()
        return stats

    def _run_job(
        self, group: GroupedError, combination: Combination, cursor: _JobCursor
    ) -> JobOutcome:
        reason = self._skip_predicate.reason(group)
        if reason is not None:
            logger.info(
                f"Skipping group (fingerprint={group.fingerprint} "
                f"combination={combination.label} reason={reason})"
            )
            return "skipped"
        if not cursor.claim_fingerprint(group.fingerprint):
            logger.info(
                f"Skipping group (fingerprint={group.fingerprint} "
                f"combination={combination.label} reason={ALREADY_PROCESSED_REASON})"
            )
            return "skipped"

        messages = self._prompt_generator.messages(group, combination.strategy)
        try:
            result = self._call_with_retry(combination, messages)
        except ProviderError as exc:
            logger.warning(
                f"Hint generation failed (fingerprint={group.fingerprint} "
                f"combination={combination.label} kind={exc.kind} error={exc})"
            )
            return "failed"

        if self._ledger is not None and result.usage is not None:
            self._ledger.log_request(combination.model, result.usage)

        hint = result.content.strip()
        if not hint or hint == COULD_NOT_COMPLY:
            logger.warning(
                f"Hint generation returned no usable content (fingerprint={group.fingerprint} "
                f"combination={combination.label})"
            )
            return "failed"

        entry = ProcessingStateEntry.now(hint=hint, usage=result.usage)
        if not self._store.record(combination, group.fingerprint, entry):
            logger.info(
                f"Skipping group (fingerprint={group.fingerprint} "
                f"combination={combination.label} reason={ALREADY_PROCESSED_REASON})"
            )
            return "skipped"
        return "completed"

    def _call_with_retry(
        self, combination: Combination, messages: list[ChatMessage]
    ) -> ProviderResult:
        """Call the provider, retrying rate limits with exponential backoff.

        Raises:
            ProviderError: On a terminal error, or once retries are exhausted.
        """
        attempt = 0
        while True:
            try:
                return self._client.process(
                    combination.model,
                    messages,
                    temperature=self._config.temperature,
                    max_tokens=self._config.max_tokens,
                )
            except ProviderError as exc:
                if not exc.is_rate_limit or attempt >= self._config.max_retries:
                    raise
                delay = self._config.base_delay_seconds * 2**attempt
                attempt += 1
                logger.warning(
                    f"Rate limited; retrying (model={combination.model} "
                    f"attempt={attempt} max_retries={self._config.max_retries} "
                    f"delay_seconds={delay})"
                )
                self._sleep(delay)

    def _log_progress(self, finished: int, total: int, failed: int) -> None:
        percent = 100.0 if total == 0 else (finished / total) * 100.0
        logger.info(
            "feedbot_progress finished=%s total=%s failed=%s percent=%.2f",
            finished,
            total,
            failed,
            percent,
        )
