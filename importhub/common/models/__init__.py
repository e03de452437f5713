"""Models package - exports all models.

Models are organized into:
- base: Base class, metadata and enums
- crm: entity store (workspaces, users, clients, projects, tasks, time entries, audit log)

Import jobs live in importhub.imports.models and connector tables in
importhub.connector.models; both share this package's Base.
"""

from __future__ import annotations

from importhub.common.models.base import (
    Base,
    metadata,
    NAMING_CONVENTION,
    ClientStatus,
    ProjectStatus,
    TaskStatus,
    TaskPriority,
    UserRole,
    TimeEntryScope,
)

from importhub.common.models.crm import (
    Workspace,
    User,
    Client,
    Project,
    Section,
    Task,
    Subtask,
    TaskAssignee,
    TimeEntry,
    AuditLog,
)

__all__ = [
    # Base
    "Base",
    "metadata",
    "NAMING_CONVENTION",
    # Enums
    "ClientStatus",
    "ProjectStatus",
    "TaskStatus",
    "TaskPriority",
    "UserRole",
    "TimeEntryScope",
    # Entity store
    "Workspace",
    "User",
    "Client",
    "Project",
    "Section",
    "Task",
    "Subtask",
    "TaskAssignee",
    "TimeEntry",
    "AuditLog",
]
