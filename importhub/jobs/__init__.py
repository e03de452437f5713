"""Background job processing module."""

from importhub.jobs.queue import get_queue
from importhub.jobs.tasks import run_connector_import

__all__ = [
    "get_queue",
    "run_connector_import",
]
