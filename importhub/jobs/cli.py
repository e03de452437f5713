"""Worker entry points.

    python -m importhub.jobs.cli [queue ...]   run an rq worker (default: imports)
    python -m importhub.jobs.cli cleanup       delete expired import jobs
"""

import logging
import sys

from rq import Worker

from importhub.common.db import SessionLocal
from importhub.imports.job_store import cleanup_expired_jobs
from importhub.jobs.queue import IMPORTS_QUEUE, get_redis_connection
from importhub.main import setup_logging

logger = logging.getLogger(__name__)


def run_worker(queues: list[str] | None = None):
    """Process connector runs until stopped."""
    queues = queues or [IMPORTS_QUEUE]
    logger.info("Starting import worker", extra={"queues": queues})
    Worker(queues, connection=get_redis_connection()).work()


def cleanup() -> int:
    with SessionLocal() as db:
        removed = cleanup_expired_jobs(db)
        db.commit()
    return removed


def main(argv: list[str]) -> None:
    setup_logging()
    if argv[:1] == ["cleanup"]:
        print(f"Removed {cleanup()} expired import jobs")
        return
    run_worker(argv or None)


if __name__ == "__main__":
    main(sys.argv[1:])
