# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Command line entry point for grouping grader errors and generating hints."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import TextIO, cast

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from feedbot.aggregate import aggregate_results, backfill_ledger, write_aggregate_csv
from feedbot.config import ConfigError, Settings, load_settings
from feedbot.cost_ledger import DEFAULT_LEDGER_FILENAME, CostLedger
from feedbot.database import JsonStateStore, SQLiteStateStore
from feedbot.grouping import (
    ErrorGrouper,
    GroupedError,
    GroupingStats,
    load_grouped_csv,
    write_grouped_csv,
)
from feedbot.llm import OllamaClient, OpenAIClient
from feedbot.llm.openai_client import OpenAIProvider
from feedbot.llm_client import LLMClient
from feedbot.persistence import Combination, PersistenceError, StateStore
from feedbot.processor import JobProcessor, ProcessorConfig
from feedbot.prompts import DEFAULT_ASSIGNMENT_URL, DEFAULT_STRATEGIES, PromptGenerator
from feedbot.records import load_raw_records

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR: Path = Path("feedbot_output")
DEFAULT_SQLITE_FILENAME: str = "feedbot_state.sqlite3"
LEDGER_ACTIONS: tuple[str, ...] = ("view", "csv", "json", "reset", "backfill")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="feedbot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    group_parser = subparsers.add_parser("group", help="Group raw grader output.")
    group_parser.add_argument("--input", required=True, help="Raw grader CSV path.")
    group_parser.add_argument(
        "--profile",
        choices=("assignment", "build"),
        default="assignment",
        help="Extraction and category profile.",
    )
    group_parser.add_argument(
        "--output", default="grouped.csv", help="Grouped CSV output path."
    )
    group_parser.add_argument(
        "--top", type=int, default=10, help="Number of groups shown in the summary."
    )

    process_parser = subparsers.add_parser("process", help="Generate hints for groups.")
    process_parser.add_argument("--input", required=True, help="Grouped CSV path.")
    process_parser.add_argument(
        "--output-dir",
        default=str(DEFAULT_OUTPUT_DIR),
        help="Directory for state documents.",
    )
    process_parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Worker threads per combination; defaults to the provider setting.",
    )
    process_parser.add_argument(
        "--limit", type=int, default=None, help="Process only the first N groups."
    )
    process_parser.add_argument(
        "--track-costs", action="store_true", help="Append usage to the cost ledger."
    )
    process_parser.add_argument(
        "--ledger", default=None, help="Cost ledger path; defaults inside --output-dir."
    )
    process_parser.add_argument(
        "--strategy",
        action="append",
        default=None,
        help="Prompt strategy; repeat for several.",
    )
    process_parser.add_argument(
        "--model",
        action="append",
        default=None,
        help="Model identifier; repeat for several. Defaults to the provider models.",
    )
    process_parser.add_argument(
        "--store",
        choices=("json", "sqlite"),
        default="json",
        help="Processing state backend.",
    )
    process_parser.add_argument(
        "--max-retries", type=int, default=3, help="Retries for rate-limited calls."
    )
    process_parser.add_argument(
        "--structured-fields",
        default="",
        help="Comma-separated keys; require JSON object responses with these keys.",
    )
    process_parser.add_argument(
        "--assignment-url", default=DEFAULT_ASSIGNMENT_URL, help="Assignment URL."
    )
    process_parser.add_argument(
        "--assignment-spec", default=None, help="Optional assignment text file."
    )

    ledger_parser = subparsers.add_parser("ledger", help="Inspect the cost ledger.")
    ledger_parser.add_argument("action", choices=LEDGER_ACTIONS)
    ledger_parser.add_argument(
        "--ledger",
        default=str(DEFAULT_OUTPUT_DIR / DEFAULT_LEDGER_FILENAME),
        help="Cost ledger path.",
    )
    ledger_parser.add_argument(
        "--output", default=None, help="CSV output path for the csv action."
    )
    ledger_parser.add_argument(
        "--confirm", action="store_true", help="Required by the reset action."
    )
    ledger_parser.add_argument(
        "--output-dir",
        default=str(DEFAULT_OUTPUT_DIR),
        help="Directory holding state documents for the backfill action.",
    )

    aggregate_parser = subparsers.add_parser(
        "aggregate", help="Join hints from every combination."
    )
    aggregate_parser.add_argument("--input", required=True, help="Grouped CSV path.")
    aggregate_parser.add_argument(
        "--output-dir",
        default=str(DEFAULT_OUTPUT_DIR),
        help="Directory holding state documents.",
    )
    aggregate_parser.add_argument(
        "--output", required=True, help="Aggregate CSV output path."
    )
    return parser


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    if args.command == "group":
        return _run_group(args=args, stdout=stdout, stderr=stderr)
    if args.command == "process":
        return _run_process(args=args, stdout=stdout, stderr=stderr)
    if args.command == "ledger":
        return _run_ledger(args=args, stdout=stdout, stderr=stderr)
    if args.command == "aggregate":
        return _run_aggregate(args=args, stdout=stdout, stderr=stderr)

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return 2


def _run_group(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run the group command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    input_path = Path(args.input)
    if not input_path.exists():
        logger.warning(f"Input file does not exist (path={input_path})")
        stderr.write(f"Input file does not exist: {input_path}\n")
        return 2
    if args.top < 0:
        stderr.write("top must be >= 0\n")
        return 2

    records = load_raw_records(input_path)
    groups = ErrorGrouper(profile=args.profile).group(records)
    stats = GroupingStats.from_groups(groups, total_records=len(records))
    rows = [group.to_grouped() for group in groups]
    output_path = Path(args.output)
    try:
        write_grouped_csv(rows, output_path)
    except OSError as exc:
        logger.warning(f"Failed to write grouped CSV (output_path={output_path} error={exc})")
        stderr.write(f"Failed to write grouped CSV: {output_path}\n")
        return 2

    console = _console(stdout)
    console.print(
        f"Records: {stats.total_records}  Grouped: {stats.grouped_records}  "
        f"Skipped: {stats.skipped_records}  Patterns: {stats.unique_patterns}  "
        f"Reduction: {stats.reduction_percent:.1f}%",
        markup=False,
        highlight=False,
    )
    _write_group_table(rows[: args.top], console)
    _write_error_type_table(stats, console)
    console.print(f"Grouped CSV written: {output_path}", markup=False, highlight=False)
    return 0


def _run_process(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run the process command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    input_path = Path(args.input)
    if not input_path.exists():
        logger.warning(f"Input file does not exist (path={input_path})")
        stderr.write(f"Input file does not exist: {input_path}\n")
        return 2
    if args.concurrency is not None and args.concurrency <= 0:
        stderr.write("concurrency must be > 0\n")
        return 2
    if args.limit is not None and args.limit < 0:
        stderr.write("limit must be >= 0\n")
        return 2
    if args.max_retries < 0:
        stderr.write("max-retries must be >= 0\n")
        return 2

    try:
        settings = load_settings()
    except ConfigError as exc:
        stderr.write(f"Configuration error: {exc}\n")
        return 2

    assignment_spec = ""
    if args.assignment_spec:
        try:
            assignment_spec = Path(args.assignment_spec).read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning(
                f"Failed to read assignment text (path={args.assignment_spec} error={exc})"
            )
            stderr.write(f"Failed to read assignment text: {args.assignment_spec}\n")
            return 2

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    groups = load_grouped_csv(input_path)
    models = args.model or list(settings.models)
    strategies = args.strategy or list(DEFAULT_STRATEGIES)
    combinations = [
        Combination(model=model, strategy=strategy)
        for model in models
        for strategy in strategies
    ]
    config = ProcessorConfig(
        concurrency=args.concurrency or settings.pacing.concurrency,
        limit=args.limit,
        delay_seconds=settings.pacing.delay_seconds,
        combination_delay_seconds=settings.pacing.combination_delay_seconds,
        max_retries=args.max_retries,
        structured_fields=tuple(
            part.strip() for part in args.structured_fields.split(",") if part.strip()
        ),
    )
    ledger = None
    if args.track_costs:
        ledger_path = Path(args.ledger) if args.ledger else output_dir / DEFAULT_LEDGER_FILENAME
        ledger = CostLedger(ledger_path)

    processor = JobProcessor(
        client=build_llm_client(settings, include_cost=args.track_costs),
        store=build_state_store(args.store, output_dir),
        prompt_generator=PromptGenerator(
            assignment_url=args.assignment_url, assignment_spec=assignment_spec
        ),
        config=config,
        ledger=ledger,
    )
    logger.info(
        f"Processing started (provider={settings.provider} groups={len(groups)} "
        f"combinations={len(combinations)} store={args.store})"
    )
    try:
        report = processor.run(groups, combinations)
    except PersistenceError as exc:
        stderr.write(f"Persistence failure: {exc}\n")
        return 1
    _console(stdout).print(report.summary_text(), markup=False, highlight=False)
    return 0


def _run_ledger(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run the ledger command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    ledger = CostLedger(Path(args.ledger))
    console = _console(stdout)
    if args.action == "reset":
        if not args.confirm:
            stderr.write("This will reset the cost ledger. Re-run with --confirm to proceed.\n")
            return 2
        try:
            ledger.reset()
        except PersistenceError as exc:
            stderr.write(f"Persistence failure: {exc}\n")
            return 1
        console.print("Cost ledger reset.", markup=False, highlight=False)
        return 0
    if args.action == "backfill":
        return _run_backfill(ledger, Path(args.output_dir), console, stderr)
    if args.action == "json":
        console.print(
            json.dumps(ledger.load().to_dict(), indent=2),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return 0
    if args.action == "csv":
        csv_text = ledger.to_csv()
        if not args.output:
            stdout.write(csv_text)
            return 0
        output_path = Path(args.output)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(csv_text, encoding="utf-8")
        except OSError as exc:
            logger.warning(f"Failed to write ledger CSV (output_path={output_path} error={exc})")
            stderr.write(f"Failed to write ledger CSV: {output_path}\n")
            return 2
        console.print(f"Cost ledger exported to {output_path}", markup=False, highlight=False)
        return 0
    _write_ledger_report(ledger, console)
    return 0


def _run_backfill(
    ledger: CostLedger, output_dir: Path, console: Console, stderr: TextIO
) -> int:
    try:
        result = backfill_ledger(ledger, output_dir)
    except PersistenceError as exc:
        stderr.write(f"Persistence failure: {exc}\n")
        return 1
    if not result.documents:
        stderr.write(f"No state documents found in {output_dir}\n")
        return 2
    console.print(
        f"Backfill complete: {result.added} entries added, {result.skipped} skipped",
        markup=False,
        highlight=False,
    )
    return 0


def _run_aggregate(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run the aggregate command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    input_path = Path(args.input)
    if not input_path.exists():
        logger.warning(f"Input file does not exist (path={input_path})")
        stderr.write(f"Input file does not exist: {input_path}\n")
        return 2
    table = aggregate_results(load_grouped_csv(input_path), Path(args.output_dir))
    if not table.combinations:
        stderr.write(f"No state documents found in {args.output_dir}\n")
        return 2
    output_path = Path(args.output)
    try:
        write_aggregate_csv(table, output_path)
    except OSError as exc:
        logger.warning(f"Failed to write aggregate CSV (output_path={output_path} error={exc})")
        stderr.write(f"Failed to write aggregate CSV: {output_path}\n")
        return 2
    _console(stdout).print(
        f"Aggregated {table.hint_count} hints from {len(table.combinations)} "
        f"combinations into {output_path}",
        markup=False,
        highlight=False,
    )
    return 0


def build_llm_client(settings: Settings, include_cost: bool = False) -> LLMClient:
    """Create the configured LLM client.

    Args:
        settings: Resolved provider settings.
        include_cost: Ask providers that support it to report request cost.

    Returns:
        Configured LLM client.
    """
    if settings.provider == "ollama":
        return OllamaClient(provider_url=settings.endpoint or "")
    return OpenAIClient(
        provider=cast(OpenAIProvider, settings.provider),
        api_key=settings.api_key,
        endpoint=settings.endpoint,
        api_version=settings.api_version,
        include_cost=include_cost,
    )


def build_state_store(kind: str, output_dir: Path) -> StateStore:
    """Create the processing state backend.

    Args:
        kind: ``json`` or ``sqlite``.
        output_dir: Directory that holds the state.

    Returns:
        Configured state store.
    """
    if kind == "sqlite":
        return SQLiteStateStore(output_dir / DEFAULT_SQLITE_FILENAME)
    return JsonStateStore(output_dir)


def _console(stdout: TextIO) -> Console:
    return Console(file=stdout, force_terminal=False, color_system="truecolor", width=120)


def _write_group_table(rows: list[GroupedError], console: Console) -> None:
    table = Table(show_header=True, show_lines=True, expand=True)
    table.add_column("count", ratio=1, justify="right")
    table.add_column("error_type", ratio=2, overflow="fold")
    table.add_column("test_name", ratio=2, overflow="fold")
    table.add_column("fingerprint", ratio=2, overflow="fold")
    table.add_column("clean_error_text", ratio=5, overflow="fold")
    for row in rows:
        table.add_row(
            str(row.count),
            row.error_type,
            row.test_name,
            row.fingerprint,
            row.clean_error_text,
        )
    console.print(table)


def _write_error_type_table(stats: GroupingStats, console: Console) -> None:
    table = Table(show_header=True, expand=True)
    table.add_column("error_type", ratio=3, overflow="fold")
    table.add_column("records", ratio=1, justify="right")
    table.add_column("patterns", ratio=1, justify="right")
    for error_type, (records, patterns) in stats.totals_by_error_type.items():
        table.add_row(error_type, str(records), str(patterns))
    console.print(table)


def _write_ledger_report(ledger: CostLedger, console: Console) -> None:
    document = ledger.load()
    console.print(
        f"Created: {document.created_at}\n"
        f"Last Updated: {document.last_updated_at}\n"
        f"Total Requests: {len(document.entries)}\n"
        f"Total Cost: ${document.total_cost:.6f}",
        markup=False,
        highlight=False,
    )
    table = Table(show_header=True, expand=True)
    table.add_column("model", ratio=3, overflow="fold")
    table.add_column("requests", ratio=1, justify="right")
    table.add_column("prompt_tokens", ratio=1, justify="right")
    table.add_column("completion_tokens", ratio=1, justify="right")
    table.add_column("total_tokens", ratio=1, justify="right")
    table.add_column("cost_usd", ratio=1, justify="right")
    summaries = sorted(
        document.summary().values(), key=lambda item: item.total_cost_usd, reverse=True
    )
    for item in summaries:
        table.add_row(
            item.model,
            str(item.request_count),
            str(item.total_prompt_tokens),
            str(item.total_completion_tokens),
            str(item.total_tokens),
            f"{item.total_cost_usd:.6f}",
        )
    console.print(table)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
