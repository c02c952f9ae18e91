#!/usr/bin/env python3
"""
RFI Recommendation Extraction Tool

Extracts structured policy recommendations from RFI submission texts with an
OpenAI model. Progress is checkpointed after every group of documents, so an
interrupted run (crash, Ctrl+C, network outage) resumes where it stopped by
simply running the same command again.

Features:
- Parallel workers with one atomic checkpoint per group
- OpenAI Batch API mode (50% cheaper, results within 24h, re-attaches on restart)
- Finalize checkpoints into JSON + CSV at any time
- Status and cleanup of the checkpoint directory
"""

import argparse
import os
import shlex
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from rfi_extractor.config.colored_logging import ColoredLogger, setup_colored_logging
from rfi_extractor.config.settings import Settings
from rfi_extractor.errors import PipelineError, PlanningError, StorageError
from rfi_extractor.pipeline.extraction_pipeline import MODE_WORKERS, MODES, ExtractionPipeline
from rfi_extractor.sources.unit_loader import (
    DEFAULT_ID_COLUMN,
    DEFAULT_ORG_COLUMN,
    DEFAULT_TEXT_COLUMN,
    load_units,
)

DEFAULT_OUTPUT: str = "all_recommendations.json"

# Exit codes
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INCOMPLETE = 2
EXIT_INTERRUPTED = 130

__all__ = ["create_argument_parser", "build_settings", "main"]


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Extract policy recommendations from RFI submissions with resumable checkpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process all documents with 4 parallel workers, checkpointing every 10
  python extract_recommendations.py --input submissions_full_text.csv

  # Resume after an interruption: run the exact same command again
  python extract_recommendations.py --input submissions_full_text.csv

  # Use the Batch API (50% cheaper, results within 24h)
  python extract_recommendations.py --input submissions_full_text.csv --mode batch

  # Combine existing checkpoints into the final JSON + CSV
  python extract_recommendations.py --finalize-only --output all_recommendations.json

  # Show progress of the checkpoint directory
  python extract_recommendations.py --status --input submissions_full_text.csv

  # Limit processing for testing
  python extract_recommendations.py --input submissions_full_text.csv --limit 5
        """
    )

    # Input
    parser.add_argument("--input", type=str,
                        help="CSV / JSON / JSONL file with the submission texts")
    parser.add_argument("--id-column", type=str, default=DEFAULT_ID_COLUMN,
                        help=f"Column holding the document id (default: {DEFAULT_ID_COLUMN})")
    parser.add_argument("--org-column", type=str, default=DEFAULT_ORG_COLUMN,
                        help=f"Column holding the organization name (default: {DEFAULT_ORG_COLUMN})")
    parser.add_argument("--text-column", type=str, default=DEFAULT_TEXT_COLUMN,
                        help=f"Column holding the document text (default: {DEFAULT_TEXT_COLUMN})")
    parser.add_argument("--limit", type=int,
                        help="Only process the first N documents (for testing)")

    # Execution
    parser.add_argument("--mode", choices=MODES, default=MODE_WORKERS,
                        help="workers: immediate parallel calls; batch: OpenAI Batch API (default: workers)")
    parser.add_argument("--workers", type=int,
                        help="Number of parallel workers (default: MAX_PARALLEL_WORKERS or 4)")
    parser.add_argument("--group-size", type=int,
                        help="Documents per checkpoint group (default: GROUP_SIZE or 10)")
    parser.add_argument("--checkpoint-dir", type=str,
                        help="Checkpoint directory (default: CHECKPOINT_DIR or temp_progress)")
    parser.add_argument("--model", type=str,
                        help="OpenAI model (default: OPENAI_MODEL or gpt-4.1-mini)")

    # Output and maintenance
    parser.add_argument("--output", type=str, default=DEFAULT_OUTPUT,
                        help=f"Final JSON output; a CSV is written next to it (default: {DEFAULT_OUTPUT})")
    parser.add_argument("--finalize-only", action="store_true",
                        help="Combine existing checkpoints into the output files without calling the API")
    parser.add_argument("--status", action="store_true",
                        help="Show checkpoint statistics and exit")
    parser.add_argument("--cleanup", action="store_true",
                        help="Delete the checkpoint directory after a successful finalize (requires --yes)")
    parser.add_argument("--yes", action="store_true",
                        help="Confirm destructive operations such as --cleanup")

    # Logging
    parser.add_argument("--log-level", type=str, choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Console log level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--log-file", type=str,
                        help="Also write a plain-text log to this file")
    parser.add_argument("--no-color", action="store_true",
                        help="Disable colored console output")

    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment (and .env) first, then command line flags"""
    return Settings.from_env().with_overrides(
        MAX_PARALLEL_WORKERS=args.workers,
        GROUP_SIZE=args.group_size,
        CHECKPOINT_DIR=args.checkpoint_dir,
        OPENAI_MODEL=args.model,
        LOG_LEVEL=args.log_level,
        LOG_FILE=args.log_file,
        USE_COLORS=False if args.no_color else None,
    )


def resume_command(argv: List[str]) -> str:
    return shlex.join(["python", "extract_recommendations.py", *argv])


class StopHandler:
    """First Ctrl+C stops at the next group boundary; a second one forces exit"""

    def __init__(self, pipeline: ExtractionPipeline):
        self.pipeline = pipeline
        self.requested = False
        self._original_sigint = None

    def install(self) -> None:
        self._original_sigint = signal.signal(signal.SIGINT, self._signal_handler)

    def restore(self) -> None:
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)

    def _signal_handler(self, signum, frame):
        if self.requested:
            # Second Ctrl+C - force exit; published checkpoints are already durable
            print("\n\n🛑 Force shutdown requested...")
            os._exit(EXIT_INTERRUPTED)

        print("\n\n⚠️ Shutdown requested (Ctrl+C again to force)...")
        print("   Finishing current group, then saving progress...")
        self.requested = True
        self.pipeline.request_stop()


def print_status(info: dict) -> None:
    print("\n=== CHECKPOINT STATUS ===")
    print(f"Directory:            {info['checkpoint_dir']}")
    print(f"Saved groups:         {info['groups']}")
    print(f"Completed documents:  {info['completed_units']}")
    print(f"Recommendations:      {info['records']}")
    if "total_units" in info:
        print(f"Input documents:      {info['total_units']}")
        print(f"Remaining documents:  {info['remaining_units']}")
    if info["unreadable_groups"]:
        print(f"⚠️ Unreadable groups:  {info['unreadable_groups']}")
    if info["partial_files"]:
        print(f"Partial files:        {info['partial_files']} (removed on next run)")
    if info.get("batch_job"):
        print(f"In-flight batch job:  {info['batch_job']}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for recommendation extraction."""
    load_dotenv()
    argv = sys.argv[1:] if argv is None else argv
    args = create_argument_parser().parse_args(argv)

    logger = ColoredLogger("extract_recommendations")
    try:
        settings = build_settings(args)
    except PlanningError as e:
        setup_colored_logging()
        logger.error(f"Configuration error: {e}")
        return EXIT_FATAL

    setup_colored_logging(settings.LOG_LEVEL, settings.LOG_FILE, settings.USE_COLORS)
    pipeline = ExtractionPipeline(settings)

    try:
        units = None
        if args.input:
            units = load_units(args.input, args.id_column, args.org_column, args.text_column, limit=args.limit)

        if args.status:
            print_status(pipeline.status(units))
            return EXIT_OK

        if args.cleanup and not args.yes:
            logger.error("--cleanup deletes all checkpoints; re-run with --yes to confirm")
            return EXIT_FATAL

        if not args.finalize_only:
            if units is None:
                logger.error("--input is required unless --finalize-only or --status is given")
                return EXIT_FATAL

            stop_handler = StopHandler(pipeline)
            stop_handler.install()
            try:
                report = pipeline.run(units, mode=args.mode)
            finally:
                stop_handler.restore()

            if report.failed:
                logger.warning(f"{report.failed} documents failed this run and remain unprocessed: "
                               f"{', '.join(report.failed_unit_ids[:10])}"
                               f"{' ...' if report.failed > 10 else ''}")
            if report.state == "stopped":
                logger.warning(f"Stopped before completion. Resume with:\n    {resume_command(argv)}")
                return EXIT_INTERRUPTED

        results = pipeline.finalize(args.output)
        logger.success(f"Final results: {results.records_extracted} recommendations from "
                       f"{results.documents_processed} documents -> {args.output}")

        if args.cleanup:
            if not args.finalize_only and report.failed:
                logger.warning("Keeping checkpoints: some documents are still unprocessed")
            else:
                pipeline.cleanup()

        if not args.finalize_only and report.failed:
            logger.info(f"Re-run to retry the failed documents:\n    {resume_command(argv)}")
            return EXIT_INCOMPLETE
        return EXIT_OK

    except StorageError as e:
        logger.error(f"Storage failure: {e}")
        logger.error("Completed groups are safe on disk. Fix the storage problem "
                     "(disk space, permissions, checkpoint or output path) and resume with:\n"
                     f"    {resume_command(argv)}")
        return EXIT_FATAL
    except PlanningError as e:
        logger.error(f"Cannot start: {e}")
        logger.error(f"Fix the input or configuration, then run:\n    {resume_command(argv)}")
        return EXIT_FATAL
    except PipelineError as e:
        logger.error(f"Run aborted: {e}")
        logger.error(f"Progress is saved. Resume with:\n    {resume_command(argv)}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
