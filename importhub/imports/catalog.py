"""Canonical field catalog per entity type and header-to-field suggestions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from importhub.common.models.base import (
    CLIENT_STATUSES,
    PROJECT_STATUSES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TIME_ENTRY_SCOPES,
    USER_ROLES,
)
from importhub.core.business_metrics import BusinessMetric
from importhub.core.metrics_service import MetricsService
from importhub.imports.errors import ConfigError

logger = logging.getLogger(__name__)


ENTITY_TYPES = ("clients", "projects", "tasks", "users", "admins", "time_entries")

FIELD_TYPES = ("string", "number", "datetime", "enum", "boolean", "email", "phone")

TRANSFORMS = ("trim", "lowercase", "parseDate", "parseNumber", "parseBoolean", "enumMap")

ENTITY_LABELS = {
    "clients": "Clients",
    "projects": "Projects",
    "tasks": "Tasks",
    "users": "Employees",
    "admins": "Admins",
    "time_entries": "Time Entries",
}


@dataclass(frozen=True)
class FieldDefinition:
    key: str
    label: str
    type: str
    required: bool = False
    aliases: tuple[str, ...] = ()
    enum_values: Optional[tuple[str, ...]] = None
    is_resolver: bool = False
    examples: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        data = {
            "key": self.key,
            "label": self.label,
            "type": self.type,
            "required": self.required,
            "aliases": list(self.aliases),
            "examples": list(self.examples),
            "isResolver": self.is_resolver,
        }
        if self.enum_values is not None:
            data["enumValues"] = list(self.enum_values)
        return data


F = FieldDefinition

CLIENT_FIELDS = (
    F("companyName", "Company Name", "string", True,
      ("company_name", "company", "name", "client_name", "client"), examples=("Acme Corp",)),
    F("displayName", "Display Name", "string",
      aliases=("display_name", "display", "short_name"), examples=("Acme",)),
    F("industry", "Industry", "string", aliases=("sector", "vertical"), examples=("Technology",)),
    F("website", "Website", "string", aliases=("url", "site", "web"), examples=("https://acme.com",)),
    F("phone", "Phone", "phone",
      aliases=("telephone", "tel", "phone_number"), examples=("+1-555-0100",)),
    F("email", "Email", "email",
      aliases=("contact_email", "company_email"), examples=("info@acme.com",)),
    F("status", "Status", "enum", aliases=("client_status",),
      enum_values=CLIENT_STATUSES, examples=("active",)),
    F("notes", "Notes", "string", aliases=("note", "comments", "comment"), examples=("Key client",)),
    F("parentClientName", "Parent Client", "string",
      aliases=("parent_client", "parent_company", "parent", "division_of", "client_group"),
      is_resolver=True, examples=("Parent Corp",)),
    F("addressLine1", "Address Line 1", "string",
      aliases=("address_line_1", "address", "street"), examples=("123 Main St",)),
    F("addressLine2", "Address Line 2", "string",
      aliases=("address_line_2", "suite", "apt"), examples=("Suite 100",)),
    F("city", "City", "string", aliases=("town",), examples=("New York",)),
    F("state", "State", "string", aliases=("province", "region"), examples=("NY",)),
    F("postalCode", "Postal Code", "string",
      aliases=("zip", "zip_code", "zipcode"), examples=("10001",)),
    F("country", "Country", "string", aliases=("nation",), examples=("US",)),
)

PROJECT_FIELDS = (
    F("name", "Project Name", "string", True,
      ("project_name", "project", "title"), examples=("Website Redesign",)),
    F("clientName", "Client Name", "string",
      aliases=("client", "company", "company_name"), is_resolver=True, examples=("Acme Corp",)),
    F("description", "Description", "string",
      aliases=("desc", "details", "summary"), examples=("Full website redesign project",)),
    F("status", "Status", "enum", aliases=("project_status",),
      enum_values=PROJECT_STATUSES, examples=("active",)),
    F("color", "Color", "string", aliases=("project_color",), examples=("#3B82F6",)),
    F("budgetMinutes", "Budget (minutes)", "number", aliases=("budget",), examples=("4800",)),
)

TASK_FIELDS = (
    F("title", "Task Title", "string", True,
      ("task_title", "task", "name", "task_name"), examples=("Design homepage mockup",)),
    F("projectName", "Project Name", "string",
      aliases=("project", "project_title"), is_resolver=True, examples=("Website Redesign",)),
    F("description", "Description", "string",
      aliases=("desc", "details", "notes"), examples=("Create initial mockup designs",)),
    F("status", "Status", "enum", aliases=("task_status",),
      enum_values=TASK_STATUSES, examples=("todo",)),
    F("priority", "Priority", "enum", aliases=("task_priority", "prio"),
      enum_values=TASK_PRIORITIES, examples=("medium",)),
    F("assigneeEmail", "Assignee Email", "email",
      aliases=("assignee", "assigned_to", "owner"), is_resolver=True, examples=("john@company.com",)),
    F("dueDate", "Due Date", "datetime", aliases=("deadline", "due"), examples=("2026-03-15",)),
    F("startDate", "Start Date", "datetime", aliases=("start",), examples=("2026-03-01",)),
    F("estimateMinutes", "Estimate (minutes)", "number",
      aliases=("estimate", "time_estimate"), examples=("120",)),
    F("parentTaskTitle", "Parent Task Title", "string",
      aliases=("parent_task", "parent", "subtask_of"), is_resolver=True, examples=("Design Phase",)),
)

USER_FIELDS = (
    F("email", "Email", "email", True,
      ("user_email", "employee_email"), examples=("john@company.com",)),
    F("firstName", "First Name", "string", aliases=("first", "given_name"), examples=("John",)),
    F("lastName", "Last Name", "string",
      aliases=("last", "family_name", "surname"), examples=("Doe",)),
    F("name", "Full Name", "string", aliases=("full_name", "display_name"), examples=("John Doe",)),
    F("role", "Role", "enum", aliases=("user_role", "employee_role"),
      enum_values=USER_ROLES, examples=("employee",)),
    F("isActive", "Is Active", "boolean",
      aliases=("active", "status", "enabled"), examples=("true",)),
)

ADMIN_FIELDS = (
    F("email", "Email", "email", True,
      ("admin_email", "user_email"), examples=("admin@company.com",)),
    F("firstName", "First Name", "string", aliases=("first", "given_name"), examples=("Jane",)),
    F("lastName", "Last Name", "string",
      aliases=("last", "family_name", "surname"), examples=("Smith",)),
    F("name", "Full Name", "string", aliases=("full_name", "display_name"), examples=("Jane Smith",)),
)

TIME_ENTRY_FIELDS = (
    F("userEmail", "User Email", "email", True,
      ("email", "user", "employee_email"), is_resolver=True, examples=("john@company.com",)),
    F("startTime", "Start Time", "datetime", True,
      ("start", "date", "start_date", "entry_date"), examples=("2026-01-28T09:00:00Z",)),
    F("endTime", "End Time", "datetime", aliases=("end", "end_date"),
      examples=("2026-01-28T17:00:00Z",)),
    F("durationHours", "Duration (hours)", "number",
      aliases=("hours", "billable_hours", "duration"), examples=("8",)),
    F("description", "Description", "string",
      aliases=("desc", "notes", "work_description"), examples=("Client meeting",)),
    F("scope", "Scope", "enum", aliases=("billable_scope", "entry_scope", "billable"),
      enum_values=TIME_ENTRY_SCOPES, examples=("in_scope",)),
    F("clientName", "Client Name", "string",
      aliases=("client", "company", "company_name"), is_resolver=True, examples=("Acme Corp",)),
    F("projectName", "Project Name", "string", aliases=("project",),
      is_resolver=True, examples=("Website Redesign",)),
    F("taskTitle", "Task Title", "string", aliases=("task", "task_name"),
      is_resolver=True, examples=("Design homepage",)),
    F("isManual", "Is Manual", "boolean", aliases=("manual",), examples=("true",)),
    F("firstName", "First Name", "string", aliases=("first", "given_name"), examples=("John",)),
    F("lastName", "Last Name", "string",
      aliases=("last", "family_name", "surname"), examples=("Doe",)),
    F("role", "Role", "enum", aliases=("user_role", "employee_role"),
      enum_values=USER_ROLES, examples=("employee",)),
    F("parentClientName", "Parent Client", "string",
      aliases=("parent_client", "parent_company", "parent", "division_of", "client_group"),
      is_resolver=True, examples=("Parent Corp",)),
)

del F

ENTITY_FIELD_MAP: dict[str, tuple[FieldDefinition, ...]] = {
    "clients": CLIENT_FIELDS,
    "projects": PROJECT_FIELDS,
    "tasks": TASK_FIELDS,
    "users": USER_FIELDS,
    "admins": ADMIN_FIELDS,
    "time_entries": TIME_ENTRY_FIELDS,
}

DEFAULT_TRANSFORMS = {
    "email": "lowercase",
    "datetime": "parseDate",
    "number": "parseNumber",
    "boolean": "parseBoolean",
}


def ensure_entity_type(entity_type: str) -> str:
    if entity_type not in ENTITY_FIELD_MAP:
        raise ConfigError(
            f"Invalid entity type. Must be one of: {', '.join(ENTITY_TYPES)}"
        )
    return entity_type


def get_fields(entity_type: str) -> tuple[FieldDefinition, ...]:
    """Return the ordered field list for an entity type."""
    return ENTITY_FIELD_MAP[ensure_entity_type(entity_type)]


def get_field(entity_type: str, key: str) -> Optional[FieldDefinition]:
    for definition in get_fields(entity_type):
        if definition.key == key:
            return definition
    return None


def to_attribute(key: str) -> str:
    """camelCase field key to snake_case attribute name (addressLine1 -> address_line1)."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def normalize_header(header: str) -> str:
    """Lowercase and drop everything that is not a letter or digit."""
    return re.sub(r"[^a-z0-9]", "", str(header).lower())


def default_transform(field_type: str) -> str:
    return DEFAULT_TRANSFORMS.get(field_type, "trim")


def _field_names(definition: FieldDefinition) -> set[str]:
    names = {definition.key, definition.label, *definition.aliases}
    return {normalize_header(name) for name in names}


def suggest_mappings(
    headers: list[str],
    fields: tuple[FieldDefinition, ...] | list[FieldDefinition],
    entity_type: Optional[str] = None,
) -> list[dict]:
    """
    Suggest a target field for each header by exact normalized match.

    Every header appears once in the result in input order; headers with
    no exact match on a field key, label or alias get ``targetField: None``.
    A field is claimed by the first header that matches it.

    When two fields both match one header, the field listed first wins
    and the collision is logged and emitted as a data quality metric.
    """
    names_by_field = [(definition, _field_names(definition)) for definition in fields]
    claimed: set[str] = set()
    suggestions: list[dict] = []

    for header in headers:
        normalized = normalize_header(header)
        matches = [
            definition
            for definition, names in names_by_field
            if normalized and normalized in names
        ]
        if len(matches) > 1:
            logger.warning(
                "Header matches more than one field",
                extra={
                    "header": header,
                    "entity_type": entity_type,
                    "fields": [m.key for m in matches],
                },
            )
            MetricsService.emit_data_quality_metric(
                BusinessMetric.MAPPING_ALIAS_CONFLICT,
                entity_type=entity_type,
                header=header,
            )

        # The first-registered match decides; a claimed field leaves the header unmapped
        target: Optional[FieldDefinition] = matches[0] if matches else None
        if target is not None and target.key in claimed:
            target = None

        if target is None:
            suggestions.append(
                {"sourceColumn": header, "targetField": None, "transform": None}
            )
            continue

        claimed.add(target.key)
        suggestions.append(
            {
                "sourceColumn": header,
                "targetField": target.key,
                "transform": default_transform(target.type),
            }
        )

    return suggestions
