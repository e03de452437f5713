"""Tests for the durable import job store."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from importhub.common.models.base import utcnow
from importhub.core.config import settings
from importhub.core.errors import ConflictError, ForbiddenError, NotFoundError
from importhub.imports import job_store
from importhub.imports.errors import ConfigError
from importhub.imports.models import ImportJobRecord


class TestCreateAndGet:
    """Tests for creating and loading jobs."""

    def test_create_job(self, db, tenant_id, user):
        job = job_store.create_job(db, tenant_id, user.id, "clients")

        assert job.status == "draft"
        assert job.entity_type == "clients"
        assert job.raw_rows == []
        assert job.progress == {"processed": 0, "total": 0}
        assert job.version == 1

    def test_unknown_entity_type(self, db, tenant_id):
        with pytest.raises(ConfigError):
            job_store.create_job(db, tenant_id, None, "invoices")

    def test_get_job_missing(self, db, tenant_id):
        with pytest.raises(NotFoundError):
            job_store.get_job(db, uuid4(), tenant_id)

    def test_get_job_other_tenant(self, db, tenant_id, other_tenant_id):
        """Another tenant's job is forbidden, never returned."""
        job = job_store.create_job(db, tenant_id, None, "clients")

        with pytest.raises(ForbiddenError):
            job_store.get_job(db, job.id, other_tenant_id)

    def test_jobs_listed_per_tenant(self, db, tenant_id, other_tenant_id):
        job_store.create_job(db, tenant_id, None, "clients")
        job_store.create_job(db, tenant_id, None, "users")
        job_store.create_job(db, other_tenant_id, None, "clients")

        jobs = job_store.get_jobs_for_tenant(db, tenant_id)
        assert len(jobs) == 2
        assert {j.tenant_id for j in jobs} == {tenant_id}


class TestUpdateJob:
    """Tests for patch merging."""

    def test_merge_semantics(self, db, tenant_id):
        """error_rows append, progress merges, other keys replace."""
        job = job_store.create_job(db, tenant_id, None, "clients")

        job_store.update_job(db, job.id, tenant_id, {"error_rows": [{"row": 2}], "status": "mapped"})
        job_store.update_job(
            db,
            job.id,
            tenant_id,
            {"error_rows": [{"row": 3}], "progress": {"processed": 5}},
        )

        job = job_store.get_job(db, job.id, tenant_id)
        assert job.error_rows == [{"row": 2}, {"row": 3}]
        assert job.progress == {"processed": 5, "total": 0}
        assert job.status == "mapped"
        assert job.version == 3

    def test_clear_error_rows(self, db, tenant_id):
        job = job_store.create_job(db, tenant_id, None, "clients")
        job_store.update_job(db, job.id, tenant_id, {"error_rows": [{"row": 2}]})

        job_store.clear_error_rows(db, job)
        assert job_store.get_job(db, job.id, tenant_id).error_rows == []

    def test_retries_then_conflict(self, db, tenant_id):
        """A persistent concurrent write ends in ConflictError."""
        job = job_store.create_job(db, tenant_id, None, "clients")

        with patch.object(db, "commit", side_effect=StaleDataError("changed")) as commit:
            with pytest.raises(ConflictError):
                job_store.update_job(db, job.id, tenant_id, {"status": "mapped"})

        assert commit.call_count == job_store.MAX_UPDATE_ATTEMPTS

    def test_retry_succeeds(self, db, tenant_id):
        """One stale write is retried on a fresh copy."""
        job = job_store.create_job(db, tenant_id, None, "clients")
        real_commit = db.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleDataError("changed")
            real_commit()

        with patch.object(db, "commit", side_effect=flaky_commit):
            updated = job_store.update_job(db, job.id, tenant_id, {"status": "mapped"})

        assert updated.status == "mapped"
        assert calls["n"] == 2

    def test_other_session_write_kept(self, db, session_factory, tenant_id):
        """A patch is merged onto the latest stored version of the job."""
        job_id = job_store.create_job(db, tenant_id, None, "clients").id
        db.commit()

        other = session_factory()
        try:
            other_job = other.get(ImportJobRecord, job_id)
            other_job.status = "mapped"
            other.commit()
        finally:
            other.close()

        updated = job_store.update_job(db, job_id, tenant_id, {"progress": {"total": 4}})
        assert updated.status == "mapped"
        assert updated.progress == {"processed": 0, "total": 4}
        assert updated.version == 3


class TestRetention:
    """Tests for TTL cleanup and the per-tenant cap."""

    def test_expired_jobs_removed(self, db, tenant_id):
        old = job_store.create_job(db, tenant_id, None, "clients")
        running = job_store.create_job(db, tenant_id, None, "clients")
        old.created_at = utcnow() - timedelta(days=2)
        running.created_at = utcnow() - timedelta(days=2)
        running.status = "running"
        db.commit()

        removed = job_store.cleanup_expired_jobs(db)
        db.commit()

        assert removed == 1
        assert db.get(ImportJobRecord, running.id) is not None

    def test_oldest_evicted_at_cap(self, db, tenant_id, monkeypatch):
        monkeypatch.setattr(settings, "import_max_jobs_per_tenant", 2)
        first = job_store.create_job(db, tenant_id, None, "clients")
        first_id = first.id
        first.created_at = utcnow() - timedelta(minutes=10)
        db.commit()
        job_store.create_job(db, tenant_id, None, "clients")
        job_store.create_job(db, tenant_id, None, "clients")

        jobs = job_store.get_jobs_for_tenant(db, tenant_id)
        assert len(jobs) == 2
        assert first_id not in {j.id for j in jobs}


class TestJobToDict:
    def test_raw_rows_not_exposed(self, db, tenant_id):
        job = job_store.create_job(db, tenant_id, None, "clients")
        job_store.update_job(db, job.id, tenant_id, {"raw_rows": [{"a": "1"}], "columns": ["a"]})

        data = job_store.job_to_dict(job)
        assert data["rowCount"] == 1
        assert "rawRows" not in data
        assert data["columns"] == ["a"]
