"""Durable, tenant-scoped storage for import jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from importhub.common.models.base import utcnow
from importhub.core.config import settings
from importhub.core.errors import ConflictError, ForbiddenError, NotFoundError
from importhub.imports.catalog import ensure_entity_type
from importhub.imports.models import ImportJobRecord

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 3

# Patch keys merged into the stored value instead of replacing it
APPEND_KEYS = {"error_rows"}
MERGE_KEYS = {"progress", "validation_summary", "execution_summary"}


def cleanup_expired_jobs(db: Session, now: Optional[datetime] = None) -> int:
    """Delete jobs older than the TTL. Running jobs are never removed."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.import_job_ttl_seconds)
    result = db.execute(
        delete(ImportJobRecord)
        .where(
            ImportJobRecord.created_at < cutoff,
            ImportJobRecord.status != "running",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Expired import jobs removed", extra={"count": result.rowcount})
    return result.rowcount or 0


def _evict_oldest(db: Session, tenant_id: UUID) -> None:
    limit = settings.import_max_jobs_per_tenant
    count = db.execute(
        select(func.count())
        .select_from(ImportJobRecord)
        .where(ImportJobRecord.tenant_id == tenant_id)
    ).scalar_one()
    excess = count - limit + 1
    if excess <= 0:
        return

    oldest = db.execute(
        select(ImportJobRecord.id)
        .where(
            ImportJobRecord.tenant_id == tenant_id,
            ImportJobRecord.status != "running",
        )
        .order_by(ImportJobRecord.created_at.asc())
        .limit(excess)
    ).scalars().all()
    if oldest:
        db.execute(
            delete(ImportJobRecord)
            .where(ImportJobRecord.id.in_(oldest))
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Evicted oldest import jobs",
            extra={"tenant_id": str(tenant_id), "count": len(oldest)},
        )


def create_job(
    db: Session,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    entity_type: str,
) -> ImportJobRecord:
    """
    Create a draft job.

    Expired jobs are cleaned up first, and the tenant's oldest jobs are
    evicted so the per-tenant cap holds after the insert.

    Raises:
        ConfigError: Unknown entity type
    """
    ensure_entity_type(entity_type)
    cleanup_expired_jobs(db)
    _evict_oldest(db, tenant_id)

    job = ImportJobRecord(
        tenant_id=tenant_id,
        created_by_user_id=actor_id,
        entity_type=entity_type,
        status="draft",
        columns=[],
        raw_rows=[],
        sample_rows=[],
        mapping=[],
        error_rows=[],
        progress={"processed": 0, "total": 0},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: UUID, tenant_id: UUID) -> ImportJobRecord:
    """
    Load a job owned by ``tenant_id``.

    Raises:
        NotFoundError: No such job
        ForbiddenError: The job belongs to another tenant
    """
    job = db.get(ImportJobRecord, job_id)
    if job is None:
        raise NotFoundError("Import job", str(job_id))
    if job.tenant_id != tenant_id:
        logger.warning(
            "Cross-tenant import job access denied",
            extra={"job_id": str(job_id), "tenant_id": str(tenant_id)},
        )
        raise ForbiddenError("Import job belongs to another tenant")
    return job


def get_jobs_for_tenant(db: Session, tenant_id: UUID, limit: int = 20) -> list[ImportJobRecord]:
    """Newest first."""
    return list(
        db.execute(
            select(ImportJobRecord)
            .where(ImportJobRecord.tenant_id == tenant_id)
            .order_by(ImportJobRecord.created_at.desc())
            .limit(limit)
        ).scalars()
    )


def _merge_patch(job: ImportJobRecord, patch: dict[str, Any]) -> None:
    # JSON columns are reassigned, never mutated, so the ORM sees the change
    for key, value in patch.items():
        if key in APPEND_KEYS:
            setattr(job, key, list(getattr(job, key) or []) + list(value or []))
        elif key in MERGE_KEYS and isinstance(value, dict):
            setattr(job, key, {**(getattr(job, key) or {}), **value})
        else:
            setattr(job, key, value)


def update_job(
    db: Session,
    job_id: UUID,
    tenant_id: UUID,
    patch: dict[str, Any],
) -> ImportJobRecord:
    """
    Merge ``patch`` into a job and commit.

    ``error_rows`` are appended, ``progress`` and the summaries are merged
    key by key, anything else is replaced. A concurrent write detected
    through the version column is retried on a fresh copy of the row.

    Raises:
        ConflictError: Still conflicting after MAX_UPDATE_ATTEMPTS
    """
    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        job = get_job(db, job_id, tenant_id)
        _merge_patch(job, patch)
        try:
            db.commit()
            return job
        except StaleDataError:
            db.rollback()
            logger.warning(
                "Import job changed concurrently, retrying",
                extra={"job_id": str(job_id), "attempt": attempt},
            )

    raise ConflictError(
        "Import job was modified concurrently",
        details={"job_id": str(job_id)},
    )


def clear_error_rows(db: Session, job: ImportJobRecord) -> ImportJobRecord:
    """Start a new pass with an empty error row list."""
    job.error_rows = []
    db.commit()
    return job


def job_to_dict(job: ImportJobRecord) -> dict[str, Any]:
    """Serialize a job for API responses (raw rows are not included)."""
    return {
        "id": str(job.id),
        "tenantId": str(job.tenant_id),
        "entityType": job.entity_type,
        "status": job.status,
        "fileName": job.file_name,
        "rowCount": job.row_count,
        "columns": job.columns or [],
        "sampleRows": job.sample_rows or [],
        "mapping": job.mapping or [],
        "validationSummary": job.validation_summary,
        "executionSummary": job.execution_summary,
        "progress": job.progress or {"processed": 0, "total": 0},
        "autoCreateMissing": job.auto_create_missing,
        "errorRowCount": len(job.error_rows or []),
        "createdByUserId": str(job.created_by_user_id) if job.created_by_user_id else None,
        "createdAt": job.created_at.isoformat() if job.created_at else None,
        "updatedAt": job.updated_at.isoformat() if job.updated_at else None,
    }
