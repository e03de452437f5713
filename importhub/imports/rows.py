"""Typed row variants built from mapped candidates.

``build_row`` is the boundary between untyped CSV values and the rest of
the pipeline: everything past it works with these dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Optional, Union

from importhub.imports.catalog import get_fields, to_attribute
from importhub.imports.coercers import WARNING_CODES, coerce_value
from importhub.imports.errors import (
    InvalidValueError,
    MissingRequiredFieldError,
    TypeCoercionError,
)


@dataclass
class ClientRow:
    company_name: str
    display_name: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    parent_client_name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


@dataclass
class ProjectRow:
    name: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    color: Optional[str] = None
    budget_minutes: Optional[int] = None


@dataclass
class TaskRow:
    title: str
    project_name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_email: Optional[str] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimate_minutes: Optional[int] = None
    parent_task_title: Optional[str] = None


@dataclass
class UserRow:
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    default_role: str = "employee"

    @property
    def effective_first_name(self) -> str:
        return self.first_name or self.email.split("@")[0]

    @property
    def effective_last_name(self) -> str:
        return self.last_name or ""

    @property
    def display_name(self) -> str:
        return self.name or f"{self.effective_first_name} {self.effective_last_name}".strip()


@dataclass
class TimeEntryRow:
    user_email: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_hours: Optional[float] = None
    description: Optional[str] = None
    scope: Optional[str] = None
    client_name: Optional[str] = None
    project_name: Optional[str] = None
    task_title: Optional[str] = None
    is_manual: Optional[bool] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    parent_client_name: Optional[str] = None

    @property
    def duration_seconds(self) -> int:
        if self.end_time is not None:
            return int(round((self.end_time - self.start_time).total_seconds()))
        if self.duration_hours is not None:
            return int(round(self.duration_hours * 3600))
        return 0

    @property
    def effective_end_time(self) -> Optional[datetime]:
        if self.end_time is not None:
            return self.end_time
        if self.duration_hours is not None:
            return self.start_time + timedelta(seconds=self.duration_seconds)
        return None


TypedRow = Union[ClientRow, ProjectRow, TaskRow, UserRow, TimeEntryRow]

ROW_TYPES = {
    "clients": ClientRow,
    "projects": ProjectRow,
    "tasks": TaskRow,
    "users": UserRow,
    "admins": UserRow,
    "time_entries": TimeEntryRow,
}

INTEGER_FIELDS = {"budgetMinutes", "estimateMinutes"}


@dataclass
class RowWarning:
    field: str
    code: str
    message: str


def primary_key_for(entity_type: str, candidate: dict[str, str]) -> str:
    """Identifying value for error reports, taken from the mapped (uncoerced) candidate."""
    if entity_type == "clients":
        return candidate.get("companyName") or ""
    if entity_type == "projects":
        return candidate.get("name") or ""
    if entity_type == "tasks":
        return candidate.get("title") or ""
    if entity_type in ("users", "admins"):
        return candidate.get("email") or ""
    if entity_type == "time_entries":
        return f"{candidate.get('userEmail') or ''}@{candidate.get('startTime') or ''}"
    return ""


def _check_values(entity_type: str, row: TypedRow) -> None:
    if isinstance(row, TimeEntryRow):
        if row.end_time is not None and row.end_time <= row.start_time:
            raise InvalidValueError("End time must be after start time", "endTime")
        if row.duration_hours is not None and row.duration_hours < 0:
            raise InvalidValueError("Duration cannot be negative", "durationHours")
    elif isinstance(row, ProjectRow):
        if row.budget_minutes is not None and row.budget_minutes < 0:
            raise InvalidValueError("Budget cannot be negative", "budgetMinutes")
    elif isinstance(row, TaskRow):
        if row.estimate_minutes is not None and row.estimate_minutes < 0:
            raise InvalidValueError("Estimate cannot be negative", "estimateMinutes")


def build_row(entity_type: str, candidate: dict[str, str]) -> tuple[TypedRow, list[RowWarning]]:
    """
    Coerce a mapped candidate into its typed row variant.

    Returns the row and any value-level warnings (unknown enum values,
    phone numbers that could not be normalized).

    Raises:
        TypeCoercionError: A value cannot be read as its field type
        MissingRequiredFieldError: A required field is absent or blank
        InvalidValueError: Values coerce but are not acceptable together
    """
    definitions = get_fields(entity_type)
    values: dict[str, object] = {}
    warnings: list[RowWarning] = []

    for definition in definitions:
        if definition.key not in candidate:
            continue
        hints = {"enum_values": definition.enum_values} if definition.enum_values else None
        result = coerce_value(candidate[definition.key], definition.type, hints)
        if not result.success:
            raise TypeCoercionError(f"{definition.label}: {result.error}", definition.key)
        for message in result.warnings:
            warnings.append(
                RowWarning(definition.key, WARNING_CODES.get(definition.type, "WARNING"), message)
            )

        value = result.coerced_value
        if value is not None and definition.key in INTEGER_FIELDS:
            value = int(round(value))
        values[to_attribute(definition.key)] = value

    for definition in definitions:
        if definition.required and values.get(to_attribute(definition.key)) is None:
            raise MissingRequiredFieldError(f"{definition.label} is required", definition.key)

    row_type = ROW_TYPES[entity_type]
    allowed = {f.name for f in fields(row_type)}
    kwargs = {name: value for name, value in values.items() if name in allowed}
    if entity_type == "admins":
        kwargs["default_role"] = "admin"
    row = row_type(**kwargs)

    _check_values(entity_type, row)
    return row, warnings
