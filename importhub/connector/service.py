"""Connector service layer: credentials, dry runs and import runs."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from importhub.common.audit import create_audit_log
from importhub.common.models.base import utcnow
from importhub.connector.client import AsanaClient, RemoteClient
from importhub.connector.models import ConnectorImportRun, TenantIntegration
from importhub.connector.pipeline import ConnectorImporter
from importhub.connector.schemas import ConnectorImportOptions, ConnectorRunRequest
from importhub.core.business_metrics import BusinessMetric
from importhub.core.config import settings
from importhub.core.errors import ConflictError, ForbiddenError, NotFoundError
from importhub.core.metrics_service import MetricsService
from importhub.imports.errors import ConfigError, ExternalApiError
from importhub.imports.execution import get_primary_workspace_id

logger = logging.getLogger(__name__)


def get_client(access_token: str) -> RemoteClient:
    """Client for the configured provider."""
    return AsanaClient(access_token)


def _get_integration(db: Session, tenant_id: UUID) -> Optional[TenantIntegration]:
    return db.execute(
        select(TenantIntegration).where(
            TenantIntegration.tenant_id == tenant_id,
            TenantIntegration.provider == settings.connector_provider,
        )
    ).scalar_one_or_none()


def client_for_tenant(db: Session, tenant_id: UUID) -> RemoteClient:
    """
    Client built from the tenant's stored token.

    Raises:
        ConfigError: The tenant has not connected the provider
    """
    integration = _get_integration(db, tenant_id)
    if integration is None or not integration.access_token:
        raise ConfigError(
            f"{settings.connector_provider} is not connected. Add an access token first."
        )
    return get_client(integration.access_token)


def run_to_dict(run: ConnectorImportRun) -> dict[str, Any]:
    return {
        "id": str(run.id),
        "provider": run.provider,
        "sourceWorkspaceId": run.source_workspace_id,
        "sourceProjectIds": run.source_project_ids,
        "targetWorkspaceId": str(run.target_workspace_id),
        "options": run.options,
        "status": run.status,
        "phase": run.phase,
        "executionSummary": run.execution_summary,
        "errorLog": run.error_log or [],
        "actorUserId": str(run.actor_user_id) if run.actor_user_id else None,
        "startedAt": run.started_at.isoformat() if run.started_at else None,
        "completedAt": run.completed_at.isoformat() if run.completed_at else None,
        "createdAt": run.created_at.isoformat() if run.created_at else None,
    }


def _system_error_code(error: Exception) -> str:
    if isinstance(error, ExternalApiError):
        return "EXTERNAL_API_ERROR"
    if isinstance(error, ConfigError):
        return "CONFIG_ERROR"
    if isinstance(error, SQLAlchemyError):
        return "DATABASE_ERROR"
    if isinstance(error, ConflictError):
        return "LOCK_CONFLICT"
    return "INTERNAL_ERROR"


def fail_run(db: Session, run: ConnectorImportRun, error: Exception) -> ConnectorImportRun:
    """Mark a run failed with a single system entry in its error log."""
    db.rollback()
    run.status = "failed"
    run.phase = "Error"
    run.error_log = [
        {
            "entityType": "system",
            "remoteId": None,
            "name": "system",
            "errorCode": _system_error_code(error),
            "message": str(error),
        }
    ]
    run.completed_at = utcnow()
    db.commit()

    MetricsService.emit_connector_metric(
        BusinessMetric.CONNECTOR_RUN_FAILED,
        tenant_id=run.tenant_id,
        run_id=run.id,
        provider=run.provider,
        error_code=_system_error_code(error),
    )
    return run


def run_import(db: Session, run: ConnectorImportRun) -> ConnectorImportRun:
    """
    Execute a connector run to a terminal status.

    Unrecoverable errors (fatal remote errors, missing credentials,
    database failures) mark the run failed. Anything else unexpected is
    re-raised after the run is marked failed.
    """
    if run.is_terminal:
        return run

    started = time.monotonic()
    run.started_at = run.started_at or utcnow()
    db.commit()

    def on_phase(label: str) -> None:
        run.phase = label
        db.commit()

    try:
        client = client_for_tenant(db, run.tenant_id)
        importer = ConnectorImporter(
            db,
            run.tenant_id,
            run.target_workspace_id,
            run.actor_user_id,
            client,
            ConnectorImportOptions.model_validate(run.options or {}),
            run.source_workspace_id,
            run.source_project_ids or [],
            provider=run.provider,
        )
        result = importer.execute(on_phase)
    except (ExternalApiError, ConfigError, SQLAlchemyError) as e:
        logger.error(
            "Connector import failed",
            extra={"run_id": str(run.id), "tenant_id": str(run.tenant_id)},
            exc_info=True,
        )
        return fail_run(db, run, e)
    except Exception as e:
        logger.error("Unexpected connector import failure", extra={"run_id": str(run.id)}, exc_info=True)
        fail_run(db, run, e)
        raise

    errors = result["errors"]
    run.status = "completed_with_errors" if errors else "completed"
    run.phase = "Done"
    run.error_log = errors
    run.execution_summary = {
        "counts": result["counts"],
        "errorCount": len(errors),
        "durationMs": int((time.monotonic() - started) * 1000),
    }
    run.completed_at = utcnow()

    create_audit_log(
        db,
        run.tenant_id,
        run.actor_user_id,
        "connector_import_executed",
        "connector_import_runs",
        run.id,
        after_json={"status": run.status, "error_count": len(errors)},
    )
    db.commit()

    logger.info(
        "Connector import finished",
        extra={"run_id": str(run.id), "status": run.status, "error_count": len(errors)},
    )
    MetricsService.emit_connector_metric(
        BusinessMetric.CONNECTOR_RUN_COMPLETED,
        tenant_id=run.tenant_id,
        run_id=run.id,
        provider=run.provider,
        status=run.status,
        error_count=len(errors),
    )
    return run


class ConnectorService:
    """Service for the external project-management connector."""

    @staticmethod
    def connect(db: Session, tenant_id: UUID, user_id: UUID, access_token: str) -> dict[str, Any]:
        """
        Store a token after checking it against the provider.

        A rejected token is not stored; the integration is marked ``error``.
        """
        integration = _get_integration(db, tenant_id)
        if integration is None:
            integration = TenantIntegration(tenant_id=tenant_id, provider=settings.connector_provider)
            db.add(integration)

        try:
            remote_user = get_client(access_token).test_connection()
        except ExternalApiError as e:
            integration.status = "error"
            integration.last_error = str(e)
            db.commit()
            logger.warning("Connector token rejected", extra={"tenant_id": str(tenant_id), "error": str(e)})
            return {"ok": False, "error": str(e)}

        integration.access_token = access_token
        integration.status = "configured"
        integration.last_error = None
        db.flush()
        create_audit_log(
            db,
            tenant_id,
            user_id,
            "connector_connected",
            "tenant_integrations",
            integration.id,
            after_json={"provider": integration.provider},
        )
        db.commit()

        MetricsService.emit_connector_metric(
            BusinessMetric.CONNECTOR_CONNECTED,
            tenant_id=tenant_id,
            provider=integration.provider,
        )
        return {"ok": True, "user": remote_user}

    @staticmethod
    def status(db: Session, tenant_id: UUID) -> dict[str, Any]:
        integration = _get_integration(db, tenant_id)
        if integration is None:
            return {"connected": False, "status": "not_configured"}
        return {
            "connected": integration.status == "configured" and bool(integration.access_token),
            "status": integration.status,
        }

    @staticmethod
    def list_workspaces(db: Session, tenant_id: UUID) -> list[dict[str, Any]]:
        return client_for_tenant(db, tenant_id).get_workspaces()

    @staticmethod
    def list_projects(db: Session, tenant_id: UUID, workspace_id: str) -> list[dict[str, Any]]:
        return client_for_tenant(db, tenant_id).get_projects(workspace_id, include_archived=False)

    @staticmethod
    def _target_workspace(db: Session, tenant_id: UUID, request: ConnectorRunRequest) -> UUID:
        if request.target_workspace_id is not None:
            return request.target_workspace_id
        return get_primary_workspace_id(db, tenant_id)

    @staticmethod
    def validate(
        db: Session,
        tenant_id: UUID,
        user_id: UUID,
        request: ConnectorRunRequest,
    ) -> dict[str, Any]:
        """Dry run; nothing is written to the entity store."""
        importer = ConnectorImporter(
            db,
            tenant_id,
            ConnectorService._target_workspace(db, tenant_id, request),
            user_id,
            client_for_tenant(db, tenant_id),
            request.options,
            request.remote_workspace_id,
            request.remote_project_ids,
            provider=settings.connector_provider,
        )
        return importer.validate()

    @staticmethod
    def create_run(
        db: Session,
        tenant_id: UUID,
        user_id: UUID,
        request: ConnectorRunRequest,
    ) -> ConnectorImportRun:
        """Persist a run in ``running`` status; the caller dispatches it."""
        client_for_tenant(db, tenant_id)
        run = ConnectorImportRun(
            tenant_id=tenant_id,
            actor_user_id=user_id,
            provider=settings.connector_provider,
            source_workspace_id=request.remote_workspace_id,
            source_project_ids=list(request.remote_project_ids),
            target_workspace_id=ConnectorService._target_workspace(db, tenant_id, request),
            options=request.options.model_dump(mode="json"),
            status="running",
            phase="Queued",
        )
        db.add(run)
        db.commit()
        db.refresh(run)

        MetricsService.emit_connector_metric(
            BusinessMetric.CONNECTOR_RUN_STARTED,
            tenant_id=tenant_id,
            run_id=run.id,
            provider=run.provider,
            project_count=len(run.source_project_ids),
        )
        return run

    @staticmethod
    def list_runs(db: Session, tenant_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
        runs = db.execute(
            select(ConnectorImportRun)
            .where(ConnectorImportRun.tenant_id == tenant_id)
            .order_by(ConnectorImportRun.created_at.desc())
            .limit(limit)
        ).scalars().all()
        return [run_to_dict(run) for run in runs]

    @staticmethod
    def get_run(db: Session, run_id: UUID, tenant_id: UUID) -> ConnectorImportRun:
        run = db.get(ConnectorImportRun, run_id)
        if run is None:
            raise NotFoundError("Connector run", str(run_id))
        if run.tenant_id != tenant_id:
            raise ForbiddenError("Connector run belongs to another tenant")
        return run
