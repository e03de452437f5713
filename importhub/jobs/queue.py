"""rq queues and the shared redis connection."""

from __future__ import annotations

import redis
from rq import Queue

from importhub.core.config import settings

# Connector runs; CSV jobs run inside the request
IMPORTS_QUEUE = "imports"


def get_redis_connection() -> redis.Redis:
    """Connection used by rq and by the redis execution-lock backend."""
    return redis.from_url(settings.redis_url)


def get_queue(name: str = IMPORTS_QUEUE) -> Queue:
    return Queue(name, connection=get_redis_connection())
