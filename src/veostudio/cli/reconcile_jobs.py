"""CLI command for reconciling processing video jobs once.

Usage:
    python -m veostudio.cli [OPTIONS]

Examples:
    # Reconcile up to 20 processing jobs (default)
    python -m veostudio.cli

    # Reconcile up to 100 processing jobs
    python -m veostudio.cli --limit 100

    # Verbose logging
    python -m veostudio.cli -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Sequence

import structlog

from veostudio.core import timezone  # noqa: F401
from veostudio.core.config import Settings, configure_logging
from veostudio.core.database import setup_db_session
from veostudio.core.dependencies import build_video_services
from veostudio.uow import create_uow_factory
from veostudio.workers.reconcile_worker import sweep_processing_jobs

logger = structlog.get_logger()


def parse_args(argv: Sequence[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile processing video jobs with their Veo operations",
        epilog="Stale jobs without an operation handle are marked failed",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of processing jobs to reconcile "
        "(default: RECONCILE_WORKER_BATCH_SIZE)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (some reconciliations errored)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    limit = args.limit if args.limit is not None else settings.reconcile_worker_batch_size
    logger.info("cli.started", limit=limit)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    _, reconciler = build_video_services(settings, uow_factory)

    try:
        result = await sweep_processing_jobs(uow_factory, reconciler, limit=limit)

        print("\n" + "=" * 60)
        print("Video Job Reconciliation Summary")
        print("=" * 60)
        print(f"Processing jobs scanned: {result.scanned}")
        print(f"Completed: {len(result.completed)}")
        print(f"Failed: {len(result.failed)}")
        print(f"Still processing: {result.still_processing}")
        print(f"Errors: {result.errors}")
        for job_id in result.failed[:5]:
            print(f"  - failed: {job_id}")
        if len(result.failed) > 5:
            print(f"  ... and {len(result.failed) - 5} more failed jobs")
        print("=" * 60 + "\n")

        if result.errors:
            logger.warning("cli.partial_success", errors=result.errors)
            return 2
        logger.info("cli.success", scanned=result.scanned)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconciliation interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
