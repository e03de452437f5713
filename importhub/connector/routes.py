"""Connector API routes."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from importhub.auth.dependencies import get_current_tenant_id, get_current_user_id
from importhub.common.db import get_db
from importhub.connector import schemas
from importhub.connector.service import ConnectorService, run_to_dict
from importhub.imports.errors import ConfigError, ExternalApiError
from importhub.jobs.queue import IMPORTS_QUEUE, get_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connector", tags=["connector"])


def _upstream_error(e: ExternalApiError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/connect")
async def connect(
    request: schemas.ConnectRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Check and store an access token for the provider."""
    result = ConnectorService.connect(db, tenant_id, user_id, request.access_token)
    if not result["ok"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result["error"])
    return result


@router.get("/status")
async def connection_status(
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return ConnectorService.status(db, tenant_id)


@router.get("/workspaces")
async def list_workspaces(
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        return {"workspaces": ConnectorService.list_workspaces(db, tenant_id)}
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ExternalApiError as e:
        raise _upstream_error(e) from e


@router.get("/workspaces/{workspace_id}/projects")
async def list_projects(
    workspace_id: str,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        return {"projects": ConnectorService.list_projects(db, tenant_id, workspace_id)}
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ExternalApiError as e:
        raise _upstream_error(e) from e


@router.post("/validate")
async def validate_import(
    request: schemas.ConnectorRunRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Dry run a connector import."""
    try:
        return ConnectorService.validate(db, tenant_id, user_id, request)
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ExternalApiError as e:
        raise _upstream_error(e) from e


@router.post("/execute", status_code=status.HTTP_202_ACCEPTED)
async def execute_import(
    request: schemas.ConnectorRunRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Create a run and hand it to the imports worker."""
    try:
        run = ConnectorService.create_run(db, tenant_id, user_id, request)
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    get_queue(IMPORTS_QUEUE).enqueue("importhub.jobs.tasks.run_connector_import", str(run.id))
    logger.info("Connector run queued", extra={"run_id": str(run.id), "tenant_id": str(tenant_id)})
    return {"runId": str(run.id), "status": run.status}


@router.get("/runs")
async def list_runs(
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return {"runs": ConnectorService.list_runs(db, tenant_id)}


@router.get("/runs/{run_id}")
async def get_run(
    run_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return run_to_dict(ConnectorService.get_run(db, run_id, tenant_id))
