"""CSV export of tenant entities in the same shape the importer reads."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from importhub.common.models import Client, Project, Task, TimeEntry, User
from importhub.core.business_metrics import BusinessMetric
from importhub.core.metrics_service import MetricsService
from importhub.imports.catalog import CLIENT_FIELDS, TIME_ENTRY_FIELDS, USER_FIELDS
from importhub.imports.coercers import to_utc
from importhub.imports.parser import generate_csv

logger = logging.getLogger(__name__)

EXPORT_ENTITY_TYPES = {
    "clients": "clients",
    "users": "users",
    "time-entries": "time_entries",
}


def _headers(fields) -> list[str]:
    return [definition.key for definition in fields]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_utc(value).isoformat() if value is not None else None


def _bool(value: Optional[bool]) -> str:
    return "true" if value else "false"


def _names(db: Session, model, column, tenant_id: UUID) -> dict[UUID, str]:
    return {
        entity_id: name
        for entity_id, name in db.execute(
            select(model.id, column).where(model.tenant_id == tenant_id)
        )
    }


def export_clients(db: Session, tenant_id: UUID) -> tuple[str, int]:
    clients = db.execute(
        select(Client)
        .where(Client.tenant_id == tenant_id)
        .order_by(Client.company_name)
    ).scalars().all()
    names = {client.id: client.company_name for client in clients}

    rows: list[dict[str, Any]] = []
    for client in clients:
        rows.append(
            {
                "companyName": client.company_name,
                "displayName": client.display_name,
                "industry": client.industry,
                "website": client.website,
                "phone": client.phone,
                "email": client.email,
                "status": client.status,
                "notes": client.notes,
                "parentClientName": names.get(client.parent_client_id),
                "addressLine1": client.address_line1,
                "addressLine2": client.address_line2,
                "city": client.city,
                "state": client.state,
                "postalCode": client.postal_code,
                "country": client.country,
            }
        )
    return generate_csv(_headers(CLIENT_FIELDS), rows), len(rows)


def export_users(db: Session, tenant_id: UUID) -> tuple[str, int]:
    users = db.execute(
        select(User).where(User.tenant_id == tenant_id).order_by(User.email)
    ).scalars().all()

    rows = [
        {
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "name": user.name,
            "role": user.role,
            "isActive": _bool(user.is_active),
        }
        for user in users
    ]
    return generate_csv(_headers(USER_FIELDS), rows), len(rows)


def export_time_entries(db: Session, tenant_id: UUID) -> tuple[str, int]:
    users = {
        user.id: user
        for user in db.execute(select(User).where(User.tenant_id == tenant_id)).scalars()
    }
    clients = {
        client.id: client
        for client in db.execute(select(Client).where(Client.tenant_id == tenant_id)).scalars()
    }
    project_names = _names(db, Project, Project.name, tenant_id)
    task_titles = _names(db, Task, Task.title, tenant_id)

    entries = db.execute(
        select(TimeEntry)
        .where(TimeEntry.tenant_id == tenant_id)
        .order_by(TimeEntry.start_time)
    ).scalars().all()

    rows: list[dict[str, Any]] = []
    for entry in entries:
        user = users.get(entry.user_id)
        client = clients.get(entry.client_id)
        parent = clients.get(client.parent_client_id) if client and client.parent_client_id else None
        rows.append(
            {
                "userEmail": user.email if user else None,
                "startTime": _iso(entry.start_time),
                "endTime": _iso(entry.end_time),
                "durationHours": round(entry.duration_seconds / 3600, 2),
                "description": entry.description,
                "scope": entry.scope,
                "clientName": client.company_name if client else None,
                "projectName": project_names.get(entry.project_id),
                "taskTitle": task_titles.get(entry.task_id),
                "isManual": _bool(entry.is_manual),
                "firstName": user.first_name if user else None,
                "lastName": user.last_name if user else None,
                "role": user.role if user else None,
                "parentClientName": parent.company_name if parent else None,
            }
        )
    return generate_csv(_headers(TIME_ENTRY_FIELDS), rows), len(rows)


EXPORTERS = {
    "clients": export_clients,
    "users": export_users,
    "time_entries": export_time_entries,
}


def export_entities(db: Session, tenant_id: UUID, entity_type: str) -> str:
    """Render one entity type as CSV and emit the export metric."""
    csv_text, row_count = EXPORTERS[entity_type](db, tenant_id)
    logger.info(
        "Entity export generated",
        extra={"tenant_id": str(tenant_id), "entity_type": entity_type, "row_count": row_count},
    )
    MetricsService.emit_export_metric(
        BusinessMetric.EXPORT_GENERATED,
        tenant_id=tenant_id,
        entity_type=entity_type,
        row_count=row_count,
    )
    return csv_text
