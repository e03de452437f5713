"""Commit pass for import jobs.

Each row is inserted in its own savepoint, so a failed insert costs only
that row. Rows are committed in batches, and the job's progress and error
rows are updated after every batch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from importhub.common.audit import create_audit_log
from importhub.common.models import (
    Client,
    Project,
    Task,
    TaskAssignee,
    TimeEntry,
    User,
    Workspace,
)
from importhub.common.models.base import USER_ROLES, utcnow
from importhub.core.business_metrics import BusinessMetric
from importhub.core.config import settings
from importhub.core.errors import ConflictError
from importhub.core.metrics_service import MetricsService
from importhub.imports import job_store
from importhub.imports.errors import ConfigError, ImportPipelineError, PersistenceError, RowError
from importhub.imports.mapping import ColumnMapping, apply_mapping
from importhub.imports.models import ImportJobRecord
from importhub.imports.rows import TimeEntryRow, build_row, primary_key_for
from importhub.imports.validation import (
    FOUND,
    Lookups,
    Reference,
    RowPlan,
    error_entry,
    load_lookups,
    natural_key,
    plan_row,
    prepare_mapping,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_COLOR = "#3B82F6"

# Referents are created clients first so a new project can point at a new client
REFERENT_ORDER = ("client", "user", "project")
REFERENT_COUNTERS = {"client": "clients", "user": "users", "project": "projects"}
# Uploaded or remapped since the last validation
UNVALIDATED_STATUSES = ("draft", "mapped")


def get_primary_workspace_id(db: Session, tenant_id: UUID) -> UUID:
    """The tenant's primary workspace, else its oldest one."""
    workspace_id = db.execute(
        select(Workspace.id)
        .where(Workspace.tenant_id == tenant_id)
        .order_by(Workspace.is_primary.desc(), Workspace.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if workspace_id is None:
        raise ConfigError("Tenant has no workspace to import into")
    return workspace_id


@dataclass
class ExecutionSummary:
    total_rows: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: int = 0
    auto_created: dict[str, int] = field(
        default_factory=lambda: {"clients": 0, "users": 0, "projects": 0}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "totalRows": self.total_rows,
            "durationMs": self.duration_ms,
            "autoCreated": dict(self.auto_created),
        }


class EntityWriter:
    """Inserts typed rows, and referents that do not exist yet, for one tenant."""

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        lookups: Lookups,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.workspace_id = workspace_id
        self.actor_id = actor_id
        self.lookups = lookups
        self.auto_created = {"clients": 0, "users": 0, "projects": 0}

    @staticmethod
    def _ref_id(plan: RowPlan, field_key: str) -> Optional[UUID]:
        ref = plan.references.get(field_key)
        return ref.id if ref else None

    def insert(self, plan: RowPlan) -> UUID:
        handler = getattr(self, f"_insert_{plan.entity_type}")
        return handler(plan)

    def create_referents(self, plan: RowPlan) -> None:
        """Create each missing referent in its own savepoint and make it visible."""
        for ref in sorted(plan.to_create, key=lambda r: REFERENT_ORDER.index(r.kind)):
            status, existing_id = self.lookups.find(ref.kind, ref.name)
            if status == FOUND:
                ref.id = existing_id
                continue
            with self.db.begin_nested():
                ref.id = self._create_referent(ref, plan)
            self.lookups.register(ref.kind, ref.name, ref.id)
            self.auto_created[REFERENT_COUNTERS[ref.kind]] += 1
            logger.info(
                "Auto-created missing referent",
                extra={"referent_kind": ref.kind, "referent_name": ref.name, "tenant_id": str(self.tenant_id)},
            )

    def _create_referent(self, ref: Reference, plan: RowPlan) -> UUID:
        row = plan.row
        entity_id = uuid4()

        if ref.kind == "client":
            parent_id = None
            if isinstance(row, TimeEntryRow) and row.parent_client_name:
                _, parent_id = self.lookups.find("client", row.parent_client_name)
            self.db.add(
                Client(
                    id=entity_id,
                    tenant_id=self.tenant_id,
                    workspace_id=self.workspace_id,
                    company_name=ref.name,
                    parent_client_id=parent_id,
                    status="active",
                )
            )
        elif ref.kind == "user":
            email = ref.name.lower()
            first_name = email.split("@")[0]
            last_name = ""
            role = "employee"
            if isinstance(row, TimeEntryRow) and ref.field == "userEmail":
                first_name = row.first_name or first_name
                last_name = row.last_name or ""
                role = row.role or role
            self.db.add(
                User(
                    id=entity_id,
                    tenant_id=self.tenant_id,
                    email=email,
                    name=f"{first_name} {last_name}".strip(),
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                    is_active=True,
                )
            )
        else:
            self.db.add(
                Project(
                    id=entity_id,
                    tenant_id=self.tenant_id,
                    workspace_id=self.workspace_id,
                    client_id=self._ref_id(plan, "clientName"),
                    name=ref.name,
                    status="active",
                    color=DEFAULT_PROJECT_COLOR,
                    created_by=self.actor_id,
                )
            )
        return entity_id

    def _insert_clients(self, plan: RowPlan) -> UUID:
        row = plan.row
        client = Client(
            id=uuid4(),
            tenant_id=self.tenant_id,
            workspace_id=self.workspace_id,
            parent_client_id=self._ref_id(plan, "parentClientName"),
            company_name=row.company_name,
            display_name=row.display_name,
            industry=row.industry,
            website=row.website,
            phone=row.phone,
            email=row.email,
            status=row.status or "active",
            notes=row.notes,
            address_line1=row.address_line1,
            address_line2=row.address_line2,
            city=row.city,
            state=row.state,
            postal_code=row.postal_code,
            country=row.country,
        )
        self.db.add(client)
        return client.id

    def _insert_projects(self, plan: RowPlan) -> UUID:
        row = plan.row
        project = Project(
            id=uuid4(),
            tenant_id=self.tenant_id,
            workspace_id=self.workspace_id,
            client_id=self._ref_id(plan, "clientName"),
            name=row.name,
            description=row.description,
            status=row.status or "active",
            color=row.color or DEFAULT_PROJECT_COLOR,
            budget_minutes=row.budget_minutes,
            created_by=self.actor_id,
        )
        self.db.add(project)
        return project.id

    def _insert_tasks(self, plan: RowPlan) -> UUID:
        row = plan.row
        task = Task(
            id=uuid4(),
            tenant_id=self.tenant_id,
            project_id=self._ref_id(plan, "projectName"),
            parent_task_id=self._ref_id(plan, "parentTaskTitle"),
            title=row.title,
            description=row.description,
            status=row.status or "todo",
            priority=row.priority or "medium",
            due_date=row.due_date,
            start_date=row.start_date,
            estimate_minutes=row.estimate_minutes,
            created_by=self.actor_id,
        )
        self.db.add(task)

        assignee_id = self._ref_id(plan, "assigneeEmail")
        if assignee_id is not None:
            self.db.flush()
            self.db.add(
                TaskAssignee(tenant_id=self.tenant_id, task_id=task.id, user_id=assignee_id)
            )
        return task.id

    def _insert_users(self, plan: RowPlan) -> UUID:
        row = plan.row
        role = row.role if row.role in USER_ROLES else row.default_role
        user = User(
            id=uuid4(),
            tenant_id=self.tenant_id,
            email=row.email.lower(),
            name=row.display_name,
            first_name=row.effective_first_name,
            last_name=row.effective_last_name,
            role=role,
            is_active=True if row.is_active is None else row.is_active,
        )
        self.db.add(user)
        return user.id

    def _insert_admins(self, plan: RowPlan) -> UUID:
        return self._insert_users(plan)

    def _insert_time_entries(self, plan: RowPlan) -> UUID:
        row = plan.row
        entry = TimeEntry(
            id=uuid4(),
            tenant_id=self.tenant_id,
            workspace_id=self.workspace_id,
            user_id=self._ref_id(plan, "userEmail"),
            client_id=self._ref_id(plan, "clientName"),
            project_id=self._ref_id(plan, "projectName"),
            task_id=self._ref_id(plan, "taskTitle"),
            description=row.description,
            scope=row.scope or "in_scope",
            start_time=row.start_time,
            end_time=row.effective_end_time,
            duration_seconds=row.duration_seconds,
            is_manual=True if row.is_manual is None else row.is_manual,
        )
        self.db.add(entry)
        return entry.id

    def register(self, plan: RowPlan, entity_id: UUID) -> None:
        """Make an inserted row visible to later rows of the run."""
        row = plan.row
        entity_type = plan.entity_type
        if entity_type == "clients":
            self.lookups.register("client", row.company_name, entity_id)
        elif entity_type == "projects":
            self.lookups.register("project", row.name, entity_id)
        elif entity_type in ("users", "admins"):
            self.lookups.register("user", row.email, entity_id)
        elif entity_type == "tasks":
            self.lookups.tasks[natural_key(entity_type, row, plan.references)] = entity_id
        else:
            self.lookups.time_entries.add(natural_key(entity_type, row, plan.references))


@dataclass
class _Batch:
    created: int = 0
    skipped: int = 0
    errors: int = 0
    error_rows: list[dict[str, Any]] = field(default_factory=list)


def _write_row(db: Session, writer: EntityWriter, plan: RowPlan) -> UUID:
    """Insert a planned row and its pending referents, each in a savepoint."""
    try:
        writer.create_referents(plan)
        with db.begin_nested():
            return writer.insert(plan)
    except SQLAlchemyError as exc:
        message = str(getattr(exc, "orig", None) or exc).splitlines()[0]
        raise PersistenceError(f"Failed to save row: {message}") from exc


def _execute_row(
    db: Session,
    job: ImportJobRecord,
    mappings: list[ColumnMapping],
    writer: EntityWriter,
    raw_row: dict[str, str],
    row_number: int,
) -> tuple[str, Optional[dict[str, Any]]]:
    candidate = apply_mapping(raw_row, mappings)
    primary_key = primary_key_for(job.entity_type, candidate)

    try:
        row, _ = build_row(job.entity_type, candidate)
        plan = plan_row(job.entity_type, row, writer.lookups, job.auto_create_missing)
    except RowError as exc:
        outcome = "skipped" if exc.outcome == "skip" else "error"
        return outcome, error_entry(row_number, primary_key, exc.error_code, exc.message, exc.field)

    try:
        entity_id = _write_row(db, writer, plan)
    except PersistenceError as exc:
        logger.warning(
            "Row insert failed",
            extra={
                "job_id": str(job.id),
                "row": row_number,
                "exception_type": type(exc.__cause__).__name__,
            },
        )
        return "error", error_entry(row_number, primary_key, exc.error_code, exc.message)

    writer.register(plan, entity_id)
    return "created", None


def execute_job(
    db: Session,
    job: ImportJobRecord,
    actor_id: Optional[UUID] = None,
) -> ExecutionSummary:
    """
    Insert every would-create row of a validated job.

    Row outcomes never stop the run. The job ends ``completed`` or
    ``completed_with_errors``; only an error outside row scope (bad
    configuration, lost database) ends it ``failed``, and then the
    summary counts the batches that were committed.

    Raises:
        ConflictError: The job is already running
        ConfigError: The job has not been validated since its last change.
            Finished jobs (including failed ones) may run again; rows
            already imported are skipped as duplicates.
    """
    if job.status == "running":
        raise ConflictError("Import job is already running", details={"job_id": str(job.id)})
    if job.status in UNVALIDATED_STATUSES:
        raise ConfigError("Import job must be validated before it can run")

    mappings = prepare_mapping(job)
    total = len(job.raw_rows)
    summary = ExecutionSummary(total_rows=total)
    started = time.monotonic()

    job_store.clear_error_rows(db, job)
    job_store.update_job(
        db,
        job.id,
        job.tenant_id,
        {
            "status": "running",
            "started_at": utcnow(),
            "completed_at": None,
            "progress": {"processed": 0, "total": total},
        },
    )
    MetricsService.emit_import_metric(
        BusinessMetric.IMPORT_STARTED,
        tenant_id=job.tenant_id,
        user_id=actor_id,
        entity_type=job.entity_type,
    )
    logger.info(
        "Import job started",
        extra={"job_id": str(job.id), "entity_type": job.entity_type, "total_rows": total},
    )

    batch = _Batch()
    try:
        workspace_id = get_primary_workspace_id(db, job.tenant_id)
        lookups = load_lookups(db, job.tenant_id)
        writer = EntityWriter(db, job.tenant_id, workspace_id, actor_id, lookups)
        batch_size = max(1, settings.import_batch_size)

        for index, raw_row in enumerate(job.raw_rows):
            outcome, entry = _execute_row(db, job, mappings, writer, raw_row, index + 2)
            if outcome == "created":
                batch.created += 1
            elif outcome == "skipped":
                batch.skipped += 1
            else:
                batch.errors += 1
            if entry is not None:
                batch.error_rows.append(entry)

            processed = index + 1
            if processed % batch_size == 0 or processed == total:
                db.commit()
                summary.created += batch.created
                summary.skipped += batch.skipped
                summary.errors += batch.errors
                summary.auto_created = dict(writer.auto_created)
                job_store.update_job(
                    db,
                    job.id,
                    job.tenant_id,
                    {
                        "progress": {"processed": processed, "total": total},
                        "error_rows": batch.error_rows,
                    },
                )
                batch = _Batch()
    except Exception as exc:
        db.rollback()
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.error(
            "Import job failed",
            extra={"job_id": str(job.id), "exception_type": type(exc).__name__},
            exc_info=True,
        )
        _finish(db, job, actor_id, summary, "failed")
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_FAILED,
            tenant_id=job.tenant_id,
            user_id=actor_id,
            entity_type=job.entity_type,
            error_type=type(exc).__name__,
        )
        if not isinstance(exc, (ImportPipelineError, SQLAlchemyError)):
            raise
        return summary

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    status = "completed_with_errors" if summary.errors else "completed"
    _finish(db, job, actor_id, summary, status)

    MetricsService.emit_import_metric(
        BusinessMetric.IMPORT_COMPLETED,
        tenant_id=job.tenant_id,
        user_id=actor_id,
        entity_type=job.entity_type,
        status=status,
    )
    MetricsService.emit_import_metric(
        BusinessMetric.IMPORT_ROWS_PROCESSED,
        tenant_id=job.tenant_id,
        user_id=actor_id,
        entity_type=job.entity_type,
        rows_processed=total,
    )
    if summary.errors:
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_ROWS_FAILED,
            tenant_id=job.tenant_id,
            user_id=actor_id,
            entity_type=job.entity_type,
            rows_processed=summary.errors,
        )
    logger.info(
        "Import job finished",
        extra={
            "job_id": str(job.id),
            "status": status,
            "created_count": summary.created,
            "skipped_count": summary.skipped,
            "error_count": summary.errors,
            "duration_ms": summary.duration_ms,
        },
    )
    return summary


def _finish(
    db: Session,
    job: ImportJobRecord,
    actor_id: Optional[UUID],
    summary: ExecutionSummary,
    status: str,
) -> None:
    job_store.update_job(
        db,
        job.id,
        job.tenant_id,
        {
            "status": status,
            "execution_summary": summary.to_dict(),
            "completed_at": utcnow(),
        },
    )
    create_audit_log(
        db,
        job.tenant_id,
        actor_id,
        "import_job_executed",
        "import_jobs",
        job.id,
        after_json={
            "entity_type": job.entity_type,
            "status": status,
            "created": summary.created,
            "skipped": summary.skipped,
            "errors": summary.errors,
            "total_rows": summary.total_rows,
            "auto_created": dict(summary.auto_created),
        },
    )
    db.commit()
