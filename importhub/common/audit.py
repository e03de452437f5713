"""Audit trail for import jobs and connector runs."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from importhub.common.models import AuditLog

logger = logging.getLogger(__name__)


def create_audit_log(
    db: Session,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    after_json: Optional[dict] = None,
) -> AuditLog:
    """
    Record an action against a tenant.

    Only aggregate summaries go into ``after_json``; row data never does.
    The entry is flushed, not committed, so it lands or rolls back with
    the caller's transaction.

    Args:
        db: Database session
        tenant_id: Tenant the action belongs to
        actor_id: User performing the action, None for the system
        action: Action name (e.g., "import_job_executed")
        entity_type: Table of the entity acted upon (e.g., "import_jobs")
        entity_id: ID of the entity acted upon
        after_json: Summary of the outcome
    """
    entry = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        after_json=after_json,
    )
    db.add(entry)
    db.flush()

    logger.debug(
        "Audit entry recorded",
        extra={"action": action, "tenant_id": str(tenant_id), "entity_id": str(entity_id)},
    )
    return entry
