"""
Command-line entry points for scheduled jobs.

Run the payment expiry sweeper once, e.g. from cron or a Kubernetes
CronJob::

    ridecycle-sweep
    ridecycle-sweep --batch-size 500 --max-iterations 10
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from ridecycle.core.config import get_settings
from ridecycle.core.logging import configure_logging, get_logger
from ridecycle.database.connection import (
    close_database_connections,
    get_session_factory,
)
from ridecycle.services.payments.sweeper import PaymentExpirySweeper, SweepResult

logger = get_logger(__name__)


async def run_sweeper(
    batch_size: Optional[int] = None,
    max_iterations: Optional[int] = None,
) -> SweepResult:
    """Run one expiry sweep against the configured database."""
    settings = get_settings()
    overrides = {}
    if batch_size is not None:
        overrides["sweeper_batch_size"] = batch_size
    if max_iterations is not None:
        overrides["sweeper_max_iterations"] = max_iterations
    if overrides:
        settings = settings.model_copy(update=overrides)

    sweeper = PaymentExpirySweeper(get_session_factory(), settings=settings)
    try:
        return await sweeper.sweep()
    finally:
        await close_database_connections()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ridecycle-sweep",
        description="Expire overdue pending bank transfer payments",
    )
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--max-iterations", type=int, default=None)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        result = asyncio.run(
            run_sweeper(
                batch_size=args.batch_size,
                max_iterations=args.max_iterations,
            )
        )
    except Exception as e:
        logger.error(
            "Payment expiry sweep aborted",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return 1

    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
