"""Background job tasks for connector imports."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from importhub.common.db import SessionLocal
from importhub.connector.models import ConnectorImportRun
from importhub.connector.service import fail_run, run_import
from importhub.core.errors import ConflictError
from importhub.imports.locks import execution_lock

logger = logging.getLogger(__name__)

# Everything a connector run may write
CONNECTOR_ENTITY_TYPES = ("clients", "projects", "tasks", "users")


def run_connector_import(run_id: str) -> str:
    """
    Execute one queued connector run.

    Holds the execution locks for clients, projects, tasks and users, so a
    CSV import of any of them cannot run at the same time for the tenant.

    Args:
        run_id: UUID of the connector import run

    Returns:
        The run's final status
    """
    db = SessionLocal()
    try:
        run = db.execute(
            select(ConnectorImportRun).where(ConnectorImportRun.id == UUID(run_id))
        ).scalar_one_or_none()

        if not run:
            logger.warning(f"Connector run {run_id} not found")
            return "missing"

        if run.is_terminal:
            logger.info(f"Connector run {run_id} already finished ({run.status})")
            return run.status

        try:
            with execution_lock(run.tenant_id, *CONNECTOR_ENTITY_TYPES):
                run = run_import(db, run)
        except ConflictError as e:
            logger.warning(f"Connector run {run_id} could not take the import lock")
            run = fail_run(db, run, e)

        return run.status
    finally:
        db.close()
