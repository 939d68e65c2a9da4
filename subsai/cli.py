"""Command line interface for the SubsAI translator."""

from __future__ import annotations

import argparse
import asyncio
import glob
import pathlib
import sys
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from .configuration import load_settings
from .errors import SubsAIError, TranslationProviderConfigurationError
from .translator import FileStatus, FileSummary, RunContext, TranslationRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subsai",
        description="Translate .srt subtitle files with an OpenAI chat model.",
    )
    parser.add_argument(
        "pattern",
        help="Subtitle file or glob pattern (quote it to let SubsAI expand it).",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        help="Destination language (overrides TARGET_LANGUAGE).",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider identifier: openai, azure_openai or echo.",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Model identifier (overrides AI_MODEL).",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        help="Token budget per translation request (overrides MAX_TOKENS).",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Queue requests into an asynchronous batch job instead of calling the model directly.",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="With --batch, poll until every job finishes and write the results.",
    )
    parser.add_argument(
        "--ignore-existing-translation",
        action="store_true",
        help="Translate even when a target-language subtitle already exists.",
    )
    parser.add_argument(
        "--table",
        action="store_true",
        help="Print source and translation side by side for every group.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log retries, skipped files and complete provider exchanges.",
    )
    return parser


def configure_logging(debug: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format="<level>{level: <8}</level> {message}",
    )


def expand_paths(pattern: str) -> List[pathlib.Path]:
    matches = glob.glob(pattern, recursive=True)
    if not matches and pathlib.Path(pattern).is_file():
        matches = [pattern]
    return [
        pathlib.Path(match).expanduser().resolve()
        for match in sorted(matches)
        if match.lower().endswith(".srt")
    ]


def execute_translation(
    *,
    pattern: str,
    overrides: Dict[str, Any],
    batch: bool,
    wait: bool,
    ignore_existing: bool,
    table: bool,
) -> tuple[int, List[FileSummary], str | None]:
    """Execute a translation run and return the exit code, summaries, and message."""

    paths = expand_paths(pattern)
    if not paths:
        return 1, [], f"No files found for pattern {pattern}"

    try:
        settings = load_settings(**overrides)
        context = RunContext.create(settings, batch=batch)
    except TranslationProviderConfigurationError as exc:
        return 1, [], str(exc)

    runner = TranslationRunner(context, ignore_existing=ignore_existing, table=table)
    try:
        summaries = asyncio.run(runner.run(paths, wait=wait))
    except SubsAIError as exc:
        return 1, [], str(exc)
    except KeyboardInterrupt:
        context.flush()
        return 2, [], "Translation interrupted by user."

    failed = any(summary.status is FileStatus.FAILED for summary in summaries)
    return (1 if failed else 0), summaries, None


def print_summary(summaries: Iterable[FileSummary]) -> None:
    """Output a friendly report once processing completes."""

    summaries = list(summaries)
    counts = {status: 0 for status in FileStatus}
    for summary in summaries:
        counts[summary.status] += 1

    print("\nTranslation complete.")
    print(f"  Files:           {len(summaries)}")
    print(f"  Translated:      {counts[FileStatus.TRANSLATED]}")
    print(f"  Queued (batch):  {counts[FileStatus.QUEUED]}")
    print(f"  Skipped:         {counts[FileStatus.SKIPPED]}")
    print(f"  Failed:          {counts[FileStatus.FAILED]}")
    notes = [s for s in summaries if s.status is FileStatus.FAILED and s.message]
    if notes:
        print("  Notes:")
        for summary in notes:
            print(f"    - {summary.input_path.name}: {summary.message}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.wait and not args.batch:
        parser.error("--wait requires --batch")

    configure_logging(args.debug)

    overrides = {
        key: value
        for key, value in {
            "TARGET_LANGUAGE": args.target_language,
            "LLM_PROVIDER": args.provider,
            "AI_MODEL": args.model,
            "MAX_TOKENS": args.max_tokens,
        }.items()
        if value is not None
    }

    exit_code, summaries, message = execute_translation(
        pattern=args.pattern,
        overrides=overrides,
        batch=args.batch,
        wait=args.wait,
        ignore_existing=args.ignore_existing_translation,
        table=args.table,
    )

    if message:
        print(message)
    if summaries:
        print_summary(summaries)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
