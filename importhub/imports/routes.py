"""Import and export API routes."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from importhub.auth.dependencies import get_current_tenant_id, get_current_user_id
from importhub.common.db import get_db
from importhub.core.business_metrics import BusinessMetric
from importhub.core.config import settings
from importhub.core.metrics_service import MetricsService
from importhub.imports import schemas
from importhub.imports.catalog import ensure_entity_type
from importhub.imports.errors import ConfigError, ParseError
from importhub.imports.exporters import EXPORT_ENTITY_TYPES, export_entities
from importhub.imports.job_store import job_to_dict
from importhub.imports.service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import", tags=["imports"])
export_router = APIRouter(prefix="/export", tags=["exports"])


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def create_job(
    request: schemas.CreateJobRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Create an empty import job for one entity type."""
    try:
        job = ImportService.create_job(db, tenant_id, user_id, request.entity_type)
    except ConfigError as e:
        raise _bad_request(e) from e
    return {"job": job_to_dict(job)}


@router.get("/jobs")
async def list_jobs(
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """List the tenant's most recent jobs."""
    return {"jobs": ImportService.list_jobs(db, tenant_id)}


@router.post("/jobs/{job_id}/upload")
async def upload_csv(
    job_id: UUID,
    request: schemas.UploadRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Attach CSV text to a job and return the suggested mapping."""
    max_bytes = settings.import_max_upload_bytes
    size = len(request.csv_text.encode("utf-8"))
    if size > max_bytes:
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_UPLOAD_REJECTED,
            tenant_id=tenant_id,
            user_id=user_id,
            reason="too_large",
        )
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File size exceeds maximum of {max_bytes / (1024 * 1024):.0f}MB",
        )

    try:
        return ImportService.upload(
            db,
            job_id,
            tenant_id,
            user_id,
            request.csv_text,
            request.file_name,
        )
    except ParseError as e:
        logger.warning("CSV upload rejected", extra={"job_id": str(job_id), "reason": str(e)})
        raise _bad_request(e) from e


@router.put("/jobs/{job_id}/mapping")
async def update_mapping(
    job_id: UUID,
    request: schemas.MappingRequest,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Replace the job's column mapping."""
    try:
        ImportService.update_mapping(
            db,
            job_id,
            tenant_id,
            [entry.to_mapping_dict() for entry in request.mapping],
        )
    except ConfigError as e:
        raise _bad_request(e) from e
    return {"ok": True}


@router.post("/jobs/{job_id}/validate")
async def validate_job(
    job_id: UUID,
    request: Optional[schemas.ValidateRequest] = None,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Dry run the job and store the validation summary."""
    auto_create = request.auto_create_missing if request else None
    try:
        return ImportService.validate(db, job_id, tenant_id, user_id, auto_create)
    except ConfigError as e:
        raise _bad_request(e) from e


@router.post("/jobs/{job_id}/run")
async def run_job(
    job_id: UUID,
    request: Optional[schemas.RunRequest] = None,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Execute a validated job and wait for it to finish."""
    auto_create = request.auto_create_missing if request else None
    try:
        return ImportService.run(db, job_id, tenant_id, user_id, auto_create)
    except ConfigError as e:
        raise _bad_request(e) from e


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    return ImportService.get_job(db, job_id, tenant_id)


@router.get("/jobs/{job_id}/errors.csv")
async def download_errors(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Download the job's error rows as CSV."""
    content = ImportService.errors_csv(db, job_id, tenant_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="import_errors_{job_id}.csv"'},
    )


@router.get("/fields/{entity_type}")
async def get_fields(
    entity_type: str,
    user_id: UUID = Depends(get_current_user_id),
):
    """Field catalog for one entity type."""
    try:
        ensure_entity_type(entity_type)
    except ConfigError as e:
        raise _bad_request(e) from e
    return ImportService.get_fields(entity_type)


@export_router.get("/{entity}")
async def export_csv(
    entity: str,
    user_id: UUID = Depends(get_current_user_id),
    tenant_id: UUID = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    """Export clients, users or time entries as importable CSV."""
    entity_type = EXPORT_ENTITY_TYPES.get(entity)
    if entity_type is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown export: {entity}",
        )

    content = export_entities(db, tenant_id, entity_type)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{entity}.csv"'},
    )
