"""Tests for per (tenant, entity type) execution locks."""

from __future__ import annotations

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from importhub.core.config import settings
from importhub.core.errors import ConflictError
from importhub.imports.locks import execution_lock, lock_key


class TestLockKey:
    def test_admins_share_the_users_lock(self):
        tenant_id = uuid4()
        assert lock_key(tenant_id, "admins") == lock_key(tenant_id, "users")
        assert lock_key(tenant_id, "clients") == f"importhub:import-lock:{tenant_id}:clients"


class TestLocalLocks:
    """Tests for the in-process backend."""

    def test_second_holder_conflicts(self):
        """The same tenant and entity type cannot run twice at once."""
        tenant_id = uuid4()

        with execution_lock(tenant_id, "clients"):
            with pytest.raises(ConflictError):
                with execution_lock(tenant_id, "clients"):
                    pass

        # released on exit
        with execution_lock(tenant_id, "clients"):
            pass

    def test_other_entity_or_tenant_not_blocked(self):
        tenant_id = uuid4()

        with execution_lock(tenant_id, "clients"):
            with execution_lock(tenant_id, "projects"):
                pass
            with execution_lock(uuid4(), "clients"):
                pass

    def test_multi_key_acquired_in_sorted_order(self):
        tenant_id = uuid4()
        with execution_lock(tenant_id, "users", "clients", "admins") as keys:
            assert keys == sorted(keys)
            assert len(keys) == 2

    def test_partial_acquire_released_on_conflict(self):
        """Locks taken before a conflict are released again."""
        tenant_id = uuid4()

        with execution_lock(tenant_id, "tasks"):
            with pytest.raises(ConflictError):
                with execution_lock(tenant_id, "clients", "tasks"):
                    pass
            # "clients" was acquired first and must have been released
            with execution_lock(tenant_id, "clients"):
                pass

    def test_released_on_error(self):
        tenant_id = uuid4()

        with pytest.raises(RuntimeError):
            with execution_lock(tenant_id, "clients"):
                raise RuntimeError("boom")

        with execution_lock(tenant_id, "clients"):
            pass


class TestRedisLocks:
    """Tests for the Redis backend with a mocked connection."""

    def test_uses_redis_lock(self, monkeypatch):
        monkeypatch.setattr(settings, "import_lock_backend", "redis")
        redis_lock = MagicMock()
        redis_lock.acquire.return_value = True
        connection = MagicMock()
        connection.lock.return_value = redis_lock

        with patch("importhub.jobs.queue.get_redis_connection", return_value=connection):
            with execution_lock(uuid4(), "clients"):
                pass

        connection.lock.assert_called_once()
        assert connection.lock.call_args.kwargs["timeout"] == settings.import_lock_timeout_seconds
        redis_lock.release.assert_called_once()

    def test_busy_redis_lock(self, monkeypatch):
        monkeypatch.setattr(settings, "import_lock_backend", "redis")
        redis_lock = MagicMock()
        redis_lock.acquire.return_value = False
        connection = MagicMock()
        connection.lock.return_value = redis_lock

        with patch("importhub.jobs.queue.get_redis_connection", return_value=connection):
            with pytest.raises(ConflictError):
                with execution_lock(uuid4(), "clients"):
                    pass

        redis_lock.release.assert_not_called()
