"""Import service layer for CSV import jobs."""

from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from importhub.common.audit import create_audit_log
from importhub.core.business_metrics import BusinessMetric
from importhub.core.config import settings
from importhub.core.errors import ConflictError
from importhub.core.metrics_service import MetricsService
from importhub.imports import job_store
from importhub.imports.catalog import ENTITY_LABELS, get_fields, suggest_mappings
from importhub.imports.errors import ParseError
from importhub.imports.importer import CsvJobImporter
from importhub.imports.mapping import parse_mapping
from importhub.imports.models import ImportJobRecord
from importhub.imports.parser import generate_csv, parse_csv

logger = logging.getLogger(__name__)

ERROR_CSV_HEADERS = ["row", "primaryKey", "errorCode", "message"]


def _ensure_not_running(job: ImportJobRecord) -> None:
    if job.status == "running":
        raise ConflictError("Import job is running", details={"job_id": str(job.id)})


class ImportService:
    """Service for managing import jobs."""

    @staticmethod
    def create_job(
        db: Session,
        tenant_id: UUID,
        user_id: UUID,
        entity_type: str,
    ) -> ImportJobRecord:
        """
        Create a draft import job.

        Raises:
            ConfigError: Unknown entity type
        """
        job = job_store.create_job(db, tenant_id, user_id, entity_type)

        create_audit_log(
            db,
            tenant_id,
            user_id,
            "import_job_created",
            "import_jobs",
            job.id,
            after_json={"entity_type": entity_type},
        )
        db.commit()

        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_JOB_CREATED,
            tenant_id=tenant_id,
            user_id=user_id,
            entity_type=entity_type,
        )
        return job

    @staticmethod
    def list_jobs(db: Session, tenant_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
        return [job_store.job_to_dict(job) for job in job_store.get_jobs_for_tenant(db, tenant_id, limit)]

    @staticmethod
    def get_job(db: Session, job_id: UUID, tenant_id: UUID) -> dict[str, Any]:
        job = job_store.get_job(db, job_id, tenant_id)
        return {"job": job_store.job_to_dict(job), "progress": job.progress}

    @staticmethod
    def upload(
        db: Session,
        job_id: UUID,
        tenant_id: UUID,
        user_id: UUID,
        csv_text: str,
        file_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Parse CSV text into the job and suggest a mapping.

        Nothing is stored when the file fails to parse, has no data rows
        or has more rows than ``settings.import_max_rows``.

        Raises:
            ParseError: Unparseable, empty or oversized (by rows) file
            ConflictError: The job is running
        """
        job = job_store.get_job(db, job_id, tenant_id)
        _ensure_not_running(job)

        max_rows = settings.import_max_rows
        table = parse_csv(csv_text, max_rows=max_rows)
        if table.raw_row_count > max_rows:
            MetricsService.emit_import_metric(
                BusinessMetric.IMPORT_UPLOAD_REJECTED,
                tenant_id=tenant_id,
                user_id=user_id,
                entity_type=job.entity_type,
                reason="too_many_rows",
            )
            raise ParseError(
                f"Too many rows. Maximum is {max_rows}. File has {table.raw_row_count} rows."
            )
        if not table.rows:
            raise ParseError("CSV file is empty or has no data rows")

        fields = get_fields(job.entity_type)
        suggestions = suggest_mappings(table.headers, fields, job.entity_type)
        mapping = [s for s in suggestions if s["targetField"]]

        job_store.clear_error_rows(db, job)
        job_store.update_job(
            db,
            job.id,
            tenant_id,
            {
                "status": "draft",
                "file_name": file_name,
                "columns": table.headers,
                "raw_rows": table.rows,
                "sample_rows": table.rows[: settings.import_sample_rows],
                "mapping": mapping,
                "validation_summary": None,
                "execution_summary": None,
                "progress": {"processed": 0, "total": len(table.rows)},
            },
        )

        logger.info(
            "Import file uploaded",
            extra={
                "job_id": str(job.id),
                "entity_type": job.entity_type,
                "row_count": len(table.rows),
                "column_count": len(table.headers),
            },
        )
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_FILE_UPLOADED,
            tenant_id=tenant_id,
            user_id=user_id,
            entity_type=job.entity_type,
            rows_processed=len(table.rows),
        )

        return {
            "columns": table.headers,
            "sampleRows": job.sample_rows,
            "rowCount": len(table.rows),
            "suggestedMapping": suggestions,
            "fields": [definition.to_dict() for definition in fields],
        }

    @staticmethod
    def update_mapping(
        db: Session,
        job_id: UUID,
        tenant_id: UUID,
        raw_mapping: list[dict[str, Any]],
    ) -> ImportJobRecord:
        """
        Replace the mapping. Any change of mapping means the job must be
        validated again, so the status moves to ``mapped``.

        Raises:
            ConfigError: Structurally invalid mapping
            ConflictError: The job is running
        """
        job = job_store.get_job(db, job_id, tenant_id)
        _ensure_not_running(job)

        mappings = parse_mapping(raw_mapping, job.entity_type, job.columns or [])
        return job_store.update_job(
            db,
            job.id,
            tenant_id,
            {
                "mapping": [m.to_dict() for m in mappings],
                "status": "mapped",
            },
        )

    @staticmethod
    def validate(
        db: Session,
        job_id: UUID,
        tenant_id: UUID,
        user_id: UUID,
        auto_create_missing: Optional[bool] = None,
    ) -> dict[str, Any]:
        job = job_store.get_job(db, job_id, tenant_id)
        _ensure_not_running(job)
        if auto_create_missing is not None and auto_create_missing != job.auto_create_missing:
            job = job_store.update_job(
                db, job.id, tenant_id, {"auto_create_missing": auto_create_missing}
            )

        summary = CsvJobImporter(db, job, user_id).validate()
        limit = settings.import_preview_limit
        return {
            "summary": summary,
            "errorsPreview": summary["errors"][:limit],
            "warningsPreview": summary["warnings"][:limit],
        }

    @staticmethod
    def run(
        db: Session,
        job_id: UUID,
        tenant_id: UUID,
        user_id: UUID,
        auto_create_missing: Optional[bool] = None,
    ) -> dict[str, Any]:
        """
        Run a validated job synchronously under the execution lock.

        Without an explicit flag the job keeps the choice made at validation.

        Raises:
            ConfigError: The job is not validated
            ConflictError: The job or another import of the same entity
                type is running
        """
        job = job_store.get_job(db, job_id, tenant_id)
        _ensure_not_running(job)
        if auto_create_missing is not None and job.auto_create_missing != auto_create_missing:
            job = job_store.update_job(
                db, job.id, tenant_id, {"auto_create_missing": auto_create_missing}
            )

        summary = CsvJobImporter(db, job, user_id).execute()
        job = job_store.get_job(db, job_id, tenant_id)
        return {"summary": summary, "job": job_store.job_to_dict(job)}

    @staticmethod
    def errors_csv(db: Session, job_id: UUID, tenant_id: UUID) -> str:
        job = job_store.get_job(db, job_id, tenant_id)
        return generate_csv(ERROR_CSV_HEADERS, job.error_rows or [])

    @staticmethod
    def get_fields(entity_type: str) -> dict[str, Any]:
        return {
            "entityType": entity_type,
            "label": ENTITY_LABELS.get(entity_type, entity_type),
            "fields": [definition.to_dict() for definition in get_fields(entity_type)],
        }
