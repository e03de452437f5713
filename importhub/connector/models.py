"""Connector domain models: credentials, runs and the remote id map."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    Index,
    JSON,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from importhub.common.models.base import Base, utcnow


RUN_STATUSES = ("running", "completed", "completed_with_errors", "failed")
INTEGRATION_STATUSES = ("not_configured", "configured", "error")


class TenantIntegration(Base):
    """Access token for one provider, per tenant."""

    __tablename__ = "tenant_integrations"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="not_configured"
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (UniqueConstraint("tenant_id", "provider"),)


class ConnectorImportRun(Base):
    """One connector import; immutable once it reaches a terminal status."""

    __tablename__ = "connector_import_runs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    actor_user_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True))
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    source_workspace_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_project_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    target_workspace_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    options: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="running"
    )  # "running", "completed", "completed_with_errors", "failed"
    phase: Mapped[Optional[str]] = mapped_column(String(255))
    execution_summary: Mapped[Optional[dict]] = mapped_column(JSON)
    error_log: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    started_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_connector_import_runs_tenant_created", "tenant_id", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"


class IntegrationEntityMap(Base):
    """Remote entity id to local entity id, so re-runs update in place."""

    __tablename__ = "integration_entity_map"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # "client", "project", "section", "task", "subtask", "user"
    provider_entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    local_entity_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider", "entity_type", "provider_entity_id",
            name="uq_integration_entity_map_remote",
        ),
    )
