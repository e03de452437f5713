"""Per (tenant, entity type) execution locks.

Two backends, selected by ``settings.import_lock_backend``:

- ``redis``: redis-py ``Lock`` objects, shared by the API and rq workers
- ``local``: an in-process registry of ``threading.Lock`` objects, for
  single-process deployments and tests
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Protocol
from uuid import UUID

from redis.exceptions import LockError

from importhub.core.config import settings
from importhub.core.errors import ConflictError

logger = logging.getLogger(__name__)

# admins are rows in the users table
LOCK_ENTITY_ALIASES = {"admins": "users"}

_local_locks: dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


class _HeldLock(Protocol):
    def release(self) -> None: ...


def lock_key(tenant_id: UUID | str, entity_type: str) -> str:
    entity = LOCK_ENTITY_ALIASES.get(entity_type, entity_type)
    return f"importhub:import-lock:{tenant_id}:{entity}"


def _acquire_local(key: str) -> _HeldLock | None:
    with _registry_guard:
        lock = _local_locks.setdefault(key, threading.Lock())
    wait = settings.import_lock_wait_seconds
    acquired = lock.acquire(timeout=wait) if wait > 0 else lock.acquire(blocking=False)
    return lock if acquired else None


def _acquire_redis(key: str) -> _HeldLock | None:
    # Imported here so the local backend works without the queue module
    from importhub.jobs.queue import get_redis_connection

    lock = get_redis_connection().lock(
        key,
        timeout=settings.import_lock_timeout_seconds,
        blocking_timeout=settings.import_lock_wait_seconds,
    )
    return lock if lock.acquire() else None


def _release(key: str, lock: _HeldLock) -> None:
    try:
        lock.release()
    except (LockError, RuntimeError):
        # Expired redis lock, or a local lock already released
        logger.warning("Import lock was not held at release", extra={"lock_key": key})


@contextmanager
def execution_lock(tenant_id: UUID | str, *entity_types: str) -> Iterator[list[str]]:
    """
    Hold the execution locks for ``entity_types`` within one tenant.

    Keys are acquired in sorted order so callers that need several entity
    types cannot deadlock each other.

    Raises:
        ConflictError: A lock could not be acquired within
            ``settings.import_lock_wait_seconds``
    """
    keys = sorted({lock_key(tenant_id, entity_type) for entity_type in entity_types})
    acquire = _acquire_redis if settings.import_lock_backend == "redis" else _acquire_local
    held: list[tuple[str, _HeldLock]] = []

    try:
        for key in keys:
            lock = acquire(key)
            if lock is None:
                logger.warning(
                    "Import lock busy",
                    extra={"lock_key": key, "tenant_id": str(tenant_id)},
                )
                raise ConflictError(
                    "Another import for this data is already running",
                    details={"lock_key": key},
                )
            held.append((key, lock))
        yield keys
    finally:
        for key, lock in reversed(held):
            _release(key, lock)
