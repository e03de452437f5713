"""Base classes and enums shared across all models."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Enum, MetaData
from sqlalchemy.orm import DeclarativeBase


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    metadata = metadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Value sets shared by the entity store and the import field catalog
CLIENT_STATUSES = ("active", "inactive", "lead", "prospect", "past", "on_hold")
PROJECT_STATUSES = ("active", "completed", "on_hold", "archived")
TASK_STATUSES = ("todo", "in_progress", "review", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
USER_ROLES = ("employee", "admin", "manager", "contractor")
TIME_ENTRY_SCOPES = ("in_scope", "out_of_scope", "internal")

# Enums
ClientStatus = Enum(*CLIENT_STATUSES, name="client_status")
ProjectStatus = Enum(*PROJECT_STATUSES, name="project_status")
TaskStatus = Enum(*TASK_STATUSES, name="task_status")
TaskPriority = Enum(*TASK_PRIORITIES, name="task_priority")
UserRole = Enum(*USER_ROLES, name="user_role")
TimeEntryScope = Enum(*TIME_ENTRY_SCOPES, name="time_entry_scope")
