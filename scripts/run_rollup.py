"""Run the daily analytics rollup once.

Meant for cron or a Kubernetes CronJob when the in-process scheduler is
disabled. Exits non-zero when the run fails so the scheduler retries it;
the watermark makes the retry pick up the same days.

Usage:
    python -m scripts.run_rollup
"""

import asyncio
import sys
from pathlib import Path

import orjson

from watchtrack.analytics import DailyRollupService, RollupError, SummaryRepository
from watchtrack.config import get_settings
from watchtrack.core.context import JobContext
from watchtrack.core.database import init_async_cassandra, shutdown_async_cassandra
from watchtrack.core.logging import configure_structlog, get_logger
from watchtrack.lessons import LessonRepository
from watchtrack.progress import ProgressRepository


logger = get_logger(__name__)


async def run_rollup() -> int:
    """Run one rollup and print its result as JSON. Returns the exit code."""
    settings = get_settings()
    keyspace = settings.cassandra_keyspace

    session = await init_async_cassandra()
    try:
        progress = ProgressRepository(session, keyspace)
        rollup = DailyRollupService(
            progress=progress,
            lessons=LessonRepository(session, keyspace),
            summaries=SummaryRepository(
                session, keyspace, max_batch_rows=settings.rollup_max_batch_rows
            ),
        )

        with JobContext("rollup-cli") as request_id:
            try:
                result = await rollup.run()
            except RollupError as e:
                logger.error("rollup_cli_failed", error=e.message)
                return 1

        sys.stdout.write(
            orjson.dumps(
                {"ok": True, "request_id": request_id, "result": result.to_dict()}
            ).decode()
            + "\n"
        )
        return 0
    finally:
        await shutdown_async_cassandra()


if __name__ == "__main__":
    settings = get_settings()
    configure_structlog(settings, log_dir=Path(settings.log_dir))
    sys.exit(asyncio.run(run_rollup()))
