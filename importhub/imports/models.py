"""Import domain models (durable import jobs)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    Boolean,
    Index,
    Integer,
    JSON,
    String,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from importhub.common.models.base import Base, utcnow


JOB_STATUSES = (
    "draft",
    "mapped",
    "validated",
    "running",
    "completed",
    "completed_with_errors",
    "failed",
)


class ImportJobRecord(Base):
    """One CSV import attempt, owned by the tenant that created it.

    Collections are stored as JSON. Writes go through
    importhub.imports.job_store, which merges patches and relies on
    ``version`` for optimistic concurrency.
    """

    __tablename__ = "import_jobs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    created_by_user_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True))
    entity_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # "clients", "projects", "tasks", "users", "admins", "time_entries"
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="draft"
    )
    file_name: Mapped[Optional[str]] = mapped_column(String(500))
    columns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    raw_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    sample_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    mapping: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    validation_summary: Mapped[Optional[dict]] = mapped_column(JSON)
    execution_summary: Mapped[Optional[dict]] = mapped_column(JSON)
    progress: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=lambda: {"processed": 0, "total": 0}
    )
    error_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    auto_create_missing: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_import_jobs_tenant_created", "tenant_id", "created_at"),
        Index("ix_import_jobs_status", "status"),
    )

    @property
    def row_count(self) -> int:
        return len(self.raw_rows or [])
