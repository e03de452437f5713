"""Dry-run classification of import job rows.

The lookup and planning helpers here are shared with the execution
engine, so a row is classified the same way when validating and when
running.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from importhub.common.audit import create_audit_log
from importhub.common.models import Client, Project, Task, TimeEntry, User
from importhub.core.business_metrics import BusinessMetric
from importhub.core.config import settings
from importhub.core.errors import ConflictError
from importhub.core.metrics_service import MetricsService
from importhub.imports import job_store
from importhub.imports.catalog import to_attribute
from importhub.imports.coercers import to_utc
from importhub.imports.errors import (
    ConfigError,
    DuplicateError,
    RowError,
    UnresolvedReferenceError,
)
from importhub.imports.mapping import apply_mapping, ensure_required_mapped, parse_mapping
from importhub.imports.models import ImportJobRecord
from importhub.imports.rows import (
    RowWarning,
    TypedRow,
    build_row,
    primary_key_for,
)

logger = logging.getLogger(__name__)

FOUND = "found"
PENDING = "pending"
MISSING = "missing"

REFERENCE_KINDS = ("client", "user", "project")

# Hard references: unresolved means skip unless missing referents are auto-created
HARD_REFERENCES: dict[str, tuple[tuple[str, str], ...]] = {
    "clients": (("parentClientName", "client"),),
    "projects": (("clientName", "client"),),
    "tasks": (("projectName", "project"), ("assigneeEmail", "user")),
    "users": (),
    "admins": (),
    "time_entries": (
        ("userEmail", "user"),
        ("clientName", "client"),
        ("projectName", "project"),
    ),
}

# Soft references: unresolved means a warning, never a skip
SOFT_REFERENCES: dict[str, tuple[str, str]] = {
    "tasks": ("parentTaskTitle", "PARENT_NOT_FOUND"),
    "time_entries": ("taskTitle", "UNRESOLVED_OPTIONAL_REFERENCE"),
}

# The kind of entity each entity type's rows create
ROW_KINDS = {
    "clients": "client",
    "projects": "project",
    "users": "user",
    "admins": "user",
}

KIND_LABELS = {"client": "Client", "user": "User", "project": "Project", "task": "Task"}


def start_key(value: datetime) -> str:
    """UTC wall-clock ISO string; SQLite hands back naive UTC values."""
    return to_utc(value).replace(tzinfo=None).isoformat()


def error_entry(
    row_number: int,
    primary_key: str,
    code: str,
    message: str,
    field_key: Optional[str] = None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "row": row_number,
        "primaryKey": primary_key,
        "errorCode": code,
        "message": message,
    }
    if field_key:
        entry["field"] = field_key
    return entry


@dataclass
class Lookups:
    """Tenant entities by natural key, plus names the current pass will create."""

    tenant_id: UUID
    users: dict[str, UUID] = field(default_factory=dict)
    clients: dict[str, UUID] = field(default_factory=dict)
    projects: dict[str, UUID] = field(default_factory=dict)
    tasks: dict[tuple[str, str], Optional[UUID]] = field(default_factory=dict)
    time_entries: set[tuple[str, str]] = field(default_factory=set)
    pending: dict[str, set[str]] = field(
        default_factory=lambda: {kind: set() for kind in REFERENCE_KINDS}
    )
    auto_pending: dict[str, set[str]] = field(
        default_factory=lambda: {kind: set() for kind in REFERENCE_KINDS}
    )

    def _table(self, kind: str) -> dict[str, UUID]:
        return {"client": self.clients, "user": self.users, "project": self.projects}[kind]

    def find(self, kind: str, name: str) -> tuple[str, Optional[UUID]]:
        key = name.strip().lower()
        table = self._table(kind)
        if key in table:
            return FOUND, table[key]
        if key in self.pending[kind]:
            return PENDING, None
        return MISSING, None

    def exists(self, kind: str, name: str) -> bool:
        return self.find(kind, name)[0] != MISSING

    def register(self, kind: str, name: str, entity_id: UUID) -> None:
        key = name.strip().lower()
        self._table(kind)[key] = entity_id
        self.pending[kind].discard(key)

    def mark_pending(self, kind: str, name: str, auto: bool = False) -> None:
        key = name.strip().lower()
        if key in self._table(kind):
            return
        self.pending[kind].add(key)
        if auto:
            self.auto_pending[kind].add(key)


def load_lookups(db: Session, tenant_id: UUID) -> Lookups:
    """Load tenant-scoped, case-insensitive lookups once per pass."""
    lookups = Lookups(tenant_id=tenant_id)

    for user_id, email in db.execute(
        select(User.id, User.email).where(User.tenant_id == tenant_id)
    ):
        lookups.users[email.lower()] = user_id

    for client_id, company_name in db.execute(
        select(Client.id, Client.company_name).where(Client.tenant_id == tenant_id)
    ):
        lookups.clients.setdefault(company_name.lower(), client_id)

    for project_id, name in db.execute(
        select(Project.id, Project.name).where(Project.tenant_id == tenant_id)
    ):
        lookups.projects.setdefault(name.lower(), project_id)

    for task_id, project_id, title in db.execute(
        select(Task.id, Task.project_id, Task.title).where(Task.tenant_id == tenant_id)
    ):
        key = (str(project_id) if project_id else "none", title.lower())
        lookups.tasks.setdefault(key, task_id)

    for user_id, start_time in db.execute(
        select(TimeEntry.user_id, TimeEntry.start_time).where(
            TimeEntry.tenant_id == tenant_id
        )
    ):
        lookups.time_entries.add((str(user_id), start_key(start_time)))

    return lookups


@dataclass
class Reference:
    kind: str
    name: str
    field: str
    id: Optional[UUID] = None


@dataclass
class RowPlan:
    """A row that passed reference and duplicate checks, ready to insert."""

    entity_type: str
    row: TypedRow
    references: dict[str, Reference] = field(default_factory=dict)
    to_create: list[Reference] = field(default_factory=list)
    warnings: list[RowWarning] = field(default_factory=list)
    natural_key: Any = None


class MissingDependencies:
    """Unresolved referents and the rows that point at them."""

    def __init__(self):
        self._rows: dict[tuple[str, str], list[int]] = {}
        self._names: dict[tuple[str, str], str] = {}

    def add(self, kind: str, name: str, row_number: int) -> None:
        key = (kind, name.strip().lower())
        self._names.setdefault(key, name.strip())
        rows = self._rows.setdefault(key, [])
        if row_number not in rows:
            rows.append(row_number)

    def to_list(self) -> list[dict[str, Any]]:
        return [
            {"type": kind, "name": self._names[(kind, key)], "referencedByRows": rows}
            for (kind, key), rows in self._rows.items()
        ]


def _reference_key(ref: Optional[Reference]) -> str:
    if ref is None:
        return "none"
    if ref.id is not None:
        return str(ref.id)
    return f"pending:{ref.name.strip().lower()}"


def natural_key(entity_type: str, row: TypedRow, references: dict[str, Reference]) -> Any:
    if entity_type == "clients":
        return row.company_name.strip().lower()
    if entity_type == "projects":
        return row.name.strip().lower()
    if entity_type in ("users", "admins"):
        return row.email.strip().lower()
    if entity_type == "tasks":
        return (_reference_key(references.get("projectName")), row.title.strip().lower())
    if entity_type == "time_entries":
        return (_reference_key(references.get("userEmail")), start_key(row.start_time))
    raise ConfigError(f"Unknown entity type: {entity_type}")


def _is_duplicate(entity_type: str, key: Any, lookups: Lookups) -> bool:
    kind = ROW_KINDS.get(entity_type)
    if kind is not None:
        return lookups.exists(kind, key)
    if entity_type == "tasks":
        return key in lookups.tasks
    return key in lookups.time_entries


def plan_row(
    entity_type: str,
    row: TypedRow,
    lookups: Lookups,
    auto_create: bool,
    dependencies: Optional[MissingDependencies] = None,
    row_number: int = 0,
) -> RowPlan:
    """
    Resolve a row's references and check it for duplicates.

    Raises:
        UnresolvedReferenceError: A hard reference is missing and
            ``auto_create`` is off
        DuplicateError: The row's natural key already exists or was seen
            earlier in the pass
    """
    plan = RowPlan(entity_type=entity_type, row=row)
    unresolved: list[Reference] = []

    for field_key, kind in HARD_REFERENCES[entity_type]:
        name = getattr(row, to_attribute(field_key))
        if not name:
            continue
        status, ref_id = lookups.find(kind, name)
        ref = Reference(kind=kind, name=name.strip(), field=field_key, id=ref_id)
        plan.references[field_key] = ref
        is_auto = name.strip().lower() in lookups.auto_pending[kind]
        if dependencies is not None and (status == MISSING or is_auto):
            dependencies.add(kind, name, row_number)
        if status == MISSING:
            unresolved.append(ref)

    if unresolved and not auto_create:
        first = unresolved[0]
        raise UnresolvedReferenceError(
            f"{KIND_LABELS[first.kind]} '{first.name}' not found",
            first.field,
            kind=first.kind,
            name=first.name,
        )

    for ref in unresolved:
        plan.to_create.append(ref)
        plan.warnings.append(
            RowWarning(
                ref.field,
                "WILL_CREATE_REFERENCE",
                f"{KIND_LABELS[ref.kind]} '{ref.name}' will be created",
            )
        )

    soft = SOFT_REFERENCES.get(entity_type)
    if soft is not None:
        field_key, warning_code = soft
        title = getattr(row, to_attribute(field_key))
        if title:
            task_key = (
                _reference_key(plan.references.get("projectName")),
                title.strip().lower(),
            )
            if task_key in lookups.tasks:
                plan.references[field_key] = Reference(
                    "task", title.strip(), field_key, lookups.tasks[task_key]
                )
            else:
                plan.warnings.append(
                    RowWarning(field_key, warning_code, f"Task '{title.strip()}' not found")
                )

    plan.natural_key = natural_key(entity_type, row, plan.references)
    if _is_duplicate(entity_type, plan.natural_key, lookups):
        raise DuplicateError("Record already exists", None)

    return plan


def mark_planned(lookups: Lookups, plan: RowPlan) -> None:
    """Make a validated row and its auto-created referents visible to later rows."""
    for ref in plan.to_create:
        lookups.mark_pending(ref.kind, ref.name, auto=True)

    kind = ROW_KINDS.get(plan.entity_type)
    if kind is not None:
        lookups.mark_pending(kind, plan.natural_key)
    elif plan.entity_type == "tasks":
        lookups.tasks.setdefault(plan.natural_key, None)
    else:
        lookups.time_entries.add(plan.natural_key)


@dataclass
class ValidationSummary:
    total_rows: int = 0
    would_create: int = 0
    would_skip: int = 0
    would_fail: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    missing_dependencies: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, preview_limit: Optional[int] = None) -> dict[str, Any]:
        errors = self.errors if preview_limit is None else self.errors[:preview_limit]
        warnings = self.warnings if preview_limit is None else self.warnings[:preview_limit]
        return {
            "wouldCreate": self.would_create,
            "wouldSkip": self.would_skip,
            "wouldFail": self.would_fail,
            "totalRows": self.total_rows,
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
            "errors": errors,
            "warnings": warnings,
            "missingDependencies": self.missing_dependencies,
        }


def prepare_mapping(job: ImportJobRecord):
    """Parse the stored mapping and require every required field to be mapped."""
    if not job.raw_rows:
        raise ConfigError("No data uploaded yet")
    mappings = parse_mapping(job.mapping or [], job.entity_type, job.columns or [])
    ensure_required_mapped(mappings, job.entity_type)
    return mappings


def validate_job(
    db: Session,
    job: ImportJobRecord,
    actor_id: Optional[UUID] = None,
) -> ValidationSummary:
    """
    Classify every row as would-create, would-skip or would-fail.

    Reads the entity store but never writes to it. The summary is stored
    on the job (with capped error and warning lists), the full error rows
    replace the job's previous ones, and the job moves to ``validated``.

    Raises:
        ConflictError: The job is running
        ConfigError: No rows, or the mapping is invalid or incomplete
    """
    if job.status == "running":
        raise ConflictError("Import job is running", details={"job_id": str(job.id)})

    mappings = prepare_mapping(job)
    job_store.clear_error_rows(db, job)

    lookups = load_lookups(db, job.tenant_id)
    dependencies = MissingDependencies()
    summary = ValidationSummary(total_rows=len(job.raw_rows))

    for index, raw_row in enumerate(job.raw_rows):
        row_number = index + 2
        candidate = apply_mapping(raw_row, mappings)
        primary_key = primary_key_for(job.entity_type, candidate)
        warnings: list[RowWarning] = []

        try:
            row, warnings = build_row(job.entity_type, candidate)
            plan = plan_row(
                job.entity_type,
                row,
                lookups,
                job.auto_create_missing,
                dependencies,
                row_number,
            )
            warnings = warnings + plan.warnings
        except RowError as exc:
            summary.errors.append(
                error_entry(row_number, primary_key, exc.error_code, exc.message, exc.field)
            )
            if exc.outcome == "skip":
                summary.would_skip += 1
            else:
                summary.would_fail += 1
        else:
            mark_planned(lookups, plan)
            summary.would_create += 1

        for warning in warnings:
            summary.warnings.append(
                error_entry(row_number, primary_key, warning.code, warning.message, warning.field)
            )

    summary.missing_dependencies = dependencies.to_list()

    job_store.update_job(
        db,
        job.id,
        job.tenant_id,
        {
            "status": "validated",
            "validation_summary": summary.to_dict(settings.import_preview_limit),
            "error_rows": summary.errors,
        },
    )
    create_audit_log(
        db,
        job.tenant_id,
        actor_id,
        "import_job_validated",
        "import_jobs",
        job.id,
        after_json={
            "entity_type": job.entity_type,
            "would_create": summary.would_create,
            "would_skip": summary.would_skip,
            "would_fail": summary.would_fail,
            "total_rows": summary.total_rows,
        },
    )
    db.commit()

    logger.info(
        "Import job validated",
        extra={
            "job_id": str(job.id),
            "tenant_id": str(job.tenant_id),
            "entity_type": job.entity_type,
            "would_create": summary.would_create,
            "would_skip": summary.would_skip,
            "would_fail": summary.would_fail,
        },
    )
    MetricsService.emit_import_metric(
        BusinessMetric.IMPORT_VALIDATED,
        tenant_id=job.tenant_id,
        user_id=actor_id,
        entity_type=job.entity_type,
        rows_processed=summary.total_rows,
    )
    if summary.warnings:
        MetricsService.emit_data_quality_metric(
            BusinessMetric.ROWS_WITH_WARNINGS,
            tenant_id=job.tenant_id,
            entity_type=job.entity_type,
            value=len({w["row"] for w in summary.warnings}),
        )

    return summary
