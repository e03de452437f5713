"""Connector import pipeline: remote workspace hierarchy into the entity store.

Remote ids are remembered in the integration entity map, so running the
same import twice updates the entities created by the first run instead
of creating new ones.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from dateutil import parser as date_parser
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from importhub.common.models import (
    Client,
    Project,
    Section,
    Subtask,
    Task,
    TaskAssignee,
    User,
)
from importhub.connector.client import RemoteClient
from importhub.connector.models import IntegrationEntityMap
from importhub.connector.schemas import ConnectorImportOptions
from importhub.imports.coercers import to_utc
from importhub.imports.errors import ExternalApiError
from importhub.imports.importer import Importer, PhaseCallback

logger = logging.getLogger(__name__)

ENTITY_KINDS = ("users", "clients", "projects", "sections", "tasks", "subtasks")

# Singular names used in the entity map and the error log
MAP_TYPES = {
    "users": "user",
    "clients": "client",
    "projects": "project",
    "sections": "section",
    "tasks": "task",
    "subtasks": "subtask",
}


def empty_counts() -> dict[str, dict[str, int]]:
    return {kind: {"create": 0, "update": 0, "skip": 0, "error": 0} for kind in ENTITY_KINDS}


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_utc(date_parser.isoparse(value))
    except (ValueError, OverflowError):
        return None


def _task_status(remote_task: dict[str, Any]) -> str:
    return "done" if remote_task.get("completed") else "todo"


def _email(remote: Optional[dict[str, Any]]) -> str:
    return ((remote or {}).get("email") or "").strip().lower()


def _custom_field_value(entity: dict[str, Any], field_name: str) -> Optional[str]:
    wanted = field_name.strip().lower()
    for custom_field in entity.get("custom_fields") or []:
        if (custom_field.get("name") or "").strip().lower() != wanted:
            continue
        value = custom_field.get("display_value") or custom_field.get("text_value")
        if value and str(value).strip():
            return str(value).strip()
    return None


@dataclass
class RemoteProject:
    """One remote project with its sections, top-level tasks and subtasks."""

    data: dict[str, Any]
    sections: list[dict[str, Any]] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)
    subtasks: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def gid(self) -> str:
        return self.data["gid"]

    @property
    def name(self) -> str:
        return self.data.get("name") or self.data["gid"]

    @property
    def subtask_count(self) -> int:
        return sum(len(children) for children in self.subtasks.values())


class EntityMapStore:
    """Lookups and upserts against the integration entity map for one tenant."""

    def __init__(self, db: Session, tenant_id: UUID, provider: str):
        self.db = db
        self.tenant_id = tenant_id
        self.provider = provider

    def _row(self, entity_type: str, remote_id: str) -> Optional[IntegrationEntityMap]:
        return self.db.execute(
            select(IntegrationEntityMap).where(
                IntegrationEntityMap.tenant_id == self.tenant_id,
                IntegrationEntityMap.provider == self.provider,
                IntegrationEntityMap.entity_type == entity_type,
                IntegrationEntityMap.provider_entity_id == remote_id,
            )
        ).scalar_one_or_none()

    def lookup(self, entity_type: str, remote_id: str) -> Optional[UUID]:
        row = self._row(entity_type, remote_id)
        return row.local_entity_id if row else None

    def upsert(
        self,
        entity_type: str,
        remote_id: str,
        local_id: UUID,
        metadata: Optional[dict] = None,
    ) -> None:
        row = self._row(entity_type, remote_id)
        if row is None:
            row = IntegrationEntityMap(
                tenant_id=self.tenant_id,
                provider=self.provider,
                entity_type=entity_type,
                provider_entity_id=remote_id,
                local_entity_id=local_id,
            )
            self.db.add(row)
        row.local_entity_id = local_id
        row.metadata_json = metadata
        self.db.flush()


class ConnectorImporter(Importer):
    """
    Imports selected remote projects into one local workspace.

    ``validate`` only reads. ``execute`` runs four stages, calling
    ``on_phase`` before each: resolve clients, import projects and
    sections, import tasks and subtasks, and (when auto-creating users)
    create users and attach the assignees deferred until then. Each entity
    is written in its own savepoint; failures are counted and logged in
    ``errors`` without stopping the run. A fatal ExternalApiError
    propagates to the caller.
    """

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        workspace_id: UUID,
        actor_id: Optional[UUID],
        client: RemoteClient,
        options: ConnectorImportOptions,
        remote_workspace_id: str,
        remote_project_ids: list[str],
        provider: str = "asana",
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.workspace_id = workspace_id
        self.actor_id = actor_id
        self.client = client
        self.options = options
        self.remote_workspace_id = remote_workspace_id
        self.remote_project_ids = list(remote_project_ids)
        self.provider = provider
        self.entity_map = EntityMapStore(db, tenant_id, provider)

        self.counts = empty_counts()
        self.errors: list[dict[str, Any]] = []
        self.user_ids: dict[str, UUID] = {}
        self.email_to_user: dict[str, UUID] = {}
        self.remote_emails: dict[str, str] = {}
        self.client_cache: dict[str, Optional[UUID]] = {}
        self.project_clients: dict[str, Optional[UUID]] = {}
        self.skipped_projects: set[str] = set()
        self.local_projects: dict[str, UUID] = {}
        self.local_sections: dict[str, UUID] = {}
        self.deferred: list[tuple[str, UUID, dict[str, Any]]] = []

    # -- shared helpers ---------------------------------------------------

    def _error(
        self,
        kind: str,
        remote_id: Optional[str],
        name: Optional[str],
        code: str,
        message: str,
    ) -> None:
        self.errors.append(
            {
                "entityType": MAP_TYPES.get(kind, kind),
                "remoteId": remote_id,
                "name": name,
                "errorCode": code,
                "message": message,
            }
        )

    def _attempt(self, kind: str, remote: dict[str, Any], write: Callable[[], UUID]) -> Optional[UUID]:
        """Run ``write`` in a savepoint; a database error counts against ``kind``."""
        try:
            with self.db.begin_nested():
                return write()
        except SQLAlchemyError as e:
            logger.warning(
                "Connector entity write failed",
                extra={"kind": kind, "remote_id": remote.get("gid"), "error": str(e)},
            )
            self.counts[kind]["error"] += 1
            self._error(
                kind,
                remote.get("gid"),
                remote.get("name"),
                "PERSISTENCE_ERROR",
                f"Failed to save {MAP_TYPES[kind]}: {e}",
            )
            return None

    def _existing(self, model, entity_type: str, remote_id: str):
        """The local entity a remote id is mapped to, if it still exists."""
        local_id = self.entity_map.lookup(entity_type, remote_id)
        return self.db.get(model, local_id) if local_id else None

    def _phase(self, on_phase: Optional[PhaseCallback], label: str) -> None:
        logger.info("Connector import phase", extra={"phase": label, "tenant_id": str(self.tenant_id)})
        if on_phase:
            on_phase(label)

    def _load_users(self, remote_users: list[dict[str, Any]]) -> None:
        for user_id, email in self.db.execute(
            select(User.id, User.email).where(User.tenant_id == self.tenant_id)
        ):
            if email:
                self.email_to_user[email.lower()] = user_id
        self.remote_emails = {u["gid"]: _email(u) for u in remote_users if _email(u)}

    def _fetch_projects(self) -> list[RemoteProject]:
        available = {
            project["gid"]: project
            for project in self.client.get_projects(self.remote_workspace_id, include_archived=True)
        }
        projects: list[RemoteProject] = []

        for gid in self.remote_project_ids:
            data = available.get(gid)
            if data is None:
                self.counts["projects"]["error"] += 1
                self._error("projects", gid, gid, "PROJECT_NOT_FOUND", "Project not found in remote workspace")
                continue
            try:
                projects.append(self._fetch_project(data))
            except ExternalApiError as e:
                if e.fatal:
                    raise
                self.counts["projects"]["error"] += 1
                self._error("projects", gid, data.get("name"), "REMOTE_FETCH_FAILED", str(e))

        return projects

    def _fetch_project(self, data: dict[str, Any]) -> RemoteProject:
        project = RemoteProject(data=data)
        project.sections = self.client.get_sections(project.gid)

        children: dict[str, dict[str, dict[str, Any]]] = {}
        for task in self.client.get_tasks_for_project(project.gid):
            parent = task.get("parent")
            if parent:
                children.setdefault(parent["gid"], {})[task["gid"]] = task
            else:
                project.tasks.append(task)

        for task in project.tasks:
            if (task.get("num_subtasks") or 0) <= 0:
                continue
            try:
                for subtask in self.client.get_subtasks(task["gid"]):
                    children.setdefault(task["gid"], {}).setdefault(subtask["gid"], subtask)
            except ExternalApiError as e:
                if e.fatal:
                    raise
                self._error("subtasks", task["gid"], f"subtasks of {task.get('name')}", "REMOTE_FETCH_FAILED", str(e))

        top_level = {task["gid"] for task in project.tasks}
        project.subtasks = {
            parent_gid: list(subtasks.values())
            for parent_gid, subtasks in children.items()
            if parent_gid in top_level
        }
        return project

    def _client_name_for(self, project: RemoteProject) -> tuple[Optional[str], Optional[UUID], bool]:
        """
        Client name or id for a project under the configured strategy.

        Returns ``(name, client_id, unmapped)``; ``unmapped`` is True only for
        the per-project strategy when the project has no entry.
        """
        strategy = self.options.client_mapping_strategy

        if strategy == "single":
            return self.options.single_client_name, self.options.single_client_id, False

        if strategy == "team":
            team = project.data.get("team") or {}
            return team.get("name"), None, False

        if strategy == "per_project":
            entry = self.options.project_client_map.get(project.gid)
            if entry is None:
                return None, None, True
            return entry.client_name, entry.client_id, False

        field_name = self.options.client_custom_field_name
        if not field_name:
            return None, None, False
        value = _custom_field_value(project.data, field_name)
        if value is None:
            values = Counter(
                v for v in (_custom_field_value(task, field_name) for task in project.tasks) if v
            )
            value = values.most_common(1)[0][0] if values else None
        return value, None, False

    def _find_client(self, name: str) -> Optional[UUID]:
        client_id = self.db.execute(
            select(Client.id)
            .where(
                Client.tenant_id == self.tenant_id,
                func.lower(Client.company_name) == name.strip().lower(),
            )
            .order_by(Client.created_at)
            .limit(1)
        ).scalar_one_or_none()
        if client_id is None:
            mapped = self._existing(Client, "client", name)
            client_id = mapped.id if mapped is not None else None
        return client_id

    def _known_client(self, client_id: UUID) -> bool:
        client = self.db.get(Client, client_id)
        return client is not None and client.tenant_id == self.tenant_id

    def _missing_client(self, name: str) -> None:
        self.counts["clients"]["error"] += 1
        self._error("clients", None, name, "CLIENT_NOT_FOUND", "Client not found and auto-create disabled")

    def _skip_project(self, project: RemoteProject) -> None:
        self.skipped_projects.add(project.gid)
        self.counts["projects"]["skip"] += 1
        self.counts["sections"]["skip"] += len(project.sections)
        self.counts["tasks"]["skip"] += len(project.tasks)
        self.counts["subtasks"]["skip"] += project.subtask_count

    def _unmapped_project(self, project: RemoteProject) -> None:
        self._skip_project(project)
        self._error(
            "projects",
            project.gid,
            project.name,
            "UNMAPPED_CLIENT",
            "No client mapping for project; project skipped",
        )

    def _resolve_assignee(self, kind: str, remote_task: dict[str, Any]) -> Optional[UUID]:
        """
        Local user for a task's assignee, or None.

        An unresolved assignee is deferred when users are auto-created and
        an email is known, left unassigned under ``fallbackUnassigned``,
        and otherwise logged as an error.
        """
        assignee = remote_task.get("assignee")
        if not assignee:
            return None
        local_id = self.user_ids.get(assignee["gid"])
        if local_id:
            return local_id

        email = _email(assignee) or self.remote_emails.get(assignee["gid"], "")
        if email and email in self.email_to_user:
            return self.email_to_user[email]
        if (self.options.auto_create_users and email) or self.options.fallback_unassigned:
            return None

        self._error(
            kind,
            remote_task["gid"],
            remote_task.get("name"),
            "UNMAPPED_ASSIGNEE",
            f"No local user for assignee {assignee.get('name') or assignee['gid']}; left unassigned",
        )
        return None

    # -- validate ----------------------------------------------------------

    def validate(self) -> dict[str, Any]:
        """Dry run: counts per entity kind, errors and an auto-create preview."""
        preview: dict[str, list[str]] = {"clients": [], "users": []}
        remote_users = self.client.get_workspace_users(self.remote_workspace_id)
        self._load_users(remote_users)

        for remote_user in remote_users:
            email = _email(remote_user)
            mapped = self.entity_map.lookup("user", remote_user["gid"])
            if mapped:
                self.user_ids[remote_user["gid"]] = mapped
                self.counts["users"]["skip"] += 1
            elif email and email in self.email_to_user:
                self.user_ids[remote_user["gid"]] = self.email_to_user[email]
                self.counts["users"]["update"] += 1
            elif self.options.auto_create_users and email:
                self.counts["users"]["create"] += 1
                preview["users"].append(email)
            else:
                self.counts["users"]["skip"] += 1

        for project in self._fetch_projects():
            name, client_id, unmapped = self._client_name_for(project)
            if unmapped:
                self._unmapped_project(project)
                continue

            if client_id is not None:
                if not self._known_client(client_id):
                    self.counts["clients"]["error"] += 1
                    self._error("clients", None, str(client_id), "CLIENT_NOT_FOUND", "Configured client does not exist")
            elif name and name.strip().lower() not in self.client_cache:
                self.client_cache[name.strip().lower()] = None
                if self._find_client(name) is None:
                    if self.options.auto_create_clients:
                        self.counts["clients"]["create"] += 1
                        preview["clients"].append(name.strip())
                    else:
                        self._missing_client(name)

            if self.entity_map.lookup("project", project.gid):
                self.counts["projects"]["update"] += 1
            elif self.options.auto_create_projects:
                self.counts["projects"]["create"] += 1
            else:
                self._skip_project(project)
                continue

            for section in project.sections:
                kind = "update" if self.entity_map.lookup("section", section["gid"]) else "create"
                self.counts["sections"][kind] += 1

            for task in project.tasks:
                task_kind = self._planned_kind("task", task["gid"])
                self.counts["tasks"][task_kind] += 1
                if task_kind != "skip":
                    self._resolve_assignee("tasks", task)
                for subtask in project.subtasks.get(task["gid"], []):
                    sub_kind = "skip" if task_kind == "skip" else self._planned_kind("subtask", subtask["gid"])
                    self.counts["subtasks"][sub_kind] += 1

        return {
            "counts": self.counts,
            "errors": self.errors,
            "autoCreatePreview": preview,
        }

    def _planned_kind(self, entity_type: str, remote_id: str) -> str:
        if self.entity_map.lookup(entity_type, remote_id):
            return "update"
        return "create" if self.options.auto_create_tasks else "skip"

    # -- execute -----------------------------------------------------------

    def execute(self, on_phase: Optional[PhaseCallback] = None) -> dict[str, Any]:
        self._phase(on_phase, "Fetching remote data")
        remote_users = self.client.get_workspace_users(self.remote_workspace_id)
        self._load_users(remote_users)
        self._link_users(remote_users)
        projects = self._fetch_projects()
        self.db.commit()

        self._phase(on_phase, "Resolving clients")
        for project in projects:
            self._resolve_project_client(project)
        self.db.commit()

        self._phase(on_phase, "Importing projects")
        for project in projects:
            if project.gid not in self.skipped_projects:
                self._import_project(project)
        self.db.commit()

        self._phase(on_phase, "Importing tasks")
        for project in projects:
            local_project_id = self.local_projects.get(project.gid)
            if local_project_id is not None:
                self._import_tasks(project, local_project_id)
                self.db.commit()

        if self.options.auto_create_users:
            self._phase(on_phase, "Importing users")
            self._create_users(remote_users)
            self._attach_deferred()
            self.db.commit()
        else:
            self.counts["users"]["skip"] += sum(
                1 for u in remote_users if u["gid"] not in self.user_ids
            )

        return {"counts": self.counts, "errors": self.errors}

    def _link_users(self, remote_users: list[dict[str, Any]]) -> None:
        """Resolve remote users through the entity map or a matching email."""
        for remote_user in remote_users:
            existing = self._existing(User, "user", remote_user["gid"])
            if existing is not None:
                self.user_ids[remote_user["gid"]] = existing.id
                self.counts["users"]["skip"] += 1
                continue

            email = _email(remote_user)
            local_id = self.email_to_user.get(email) if email else None
            if local_id is None:
                continue

            def link(remote_user=remote_user, local_id=local_id) -> UUID:
                self.entity_map.upsert(
                    "user", remote_user["gid"], local_id,
                    {"name": remote_user.get("name"), "email": remote_user.get("email")},
                )
                return local_id

            # a failed link is counted as an error; the user is still known by email
            if self._attempt("users", remote_user, link):
                self.counts["users"]["update"] += 1
            self.user_ids[remote_user["gid"]] = local_id

    def _resolve_project_client(self, project: RemoteProject) -> None:
        name, client_id, unmapped = self._client_name_for(project)
        if unmapped:
            self._unmapped_project(project)
            return

        if client_id is not None:
            if self._known_client(client_id):
                self.project_clients[project.gid] = client_id
            else:
                self.counts["clients"]["error"] += 1
                self._error("clients", None, str(client_id), "CLIENT_NOT_FOUND", "Configured client does not exist")
                self.project_clients[project.gid] = None
            return

        self.project_clients[project.gid] = self._resolve_client_name(name) if name else None

    def _resolve_client_name(self, name: str) -> Optional[UUID]:
        key = name.strip().lower()
        if key in self.client_cache:
            return self.client_cache[key]

        client_id = self._find_client(name)
        if client_id is None and self.options.auto_create_clients:
            def create() -> UUID:
                client = Client(
                    tenant_id=self.tenant_id,
                    workspace_id=self.workspace_id,
                    company_name=name.strip(),
                    status="active",
                )
                self.db.add(client)
                self.db.flush()
                self.entity_map.upsert("client", name, client.id, {"name": name})
                return client.id

            client_id = self._attempt("clients", {"gid": None, "name": name}, create)
            if client_id is not None:
                self.counts["clients"]["create"] += 1
        elif client_id is None:
            self._missing_client(name)

        self.client_cache[key] = client_id
        return client_id

    def _import_project(self, project: RemoteProject) -> None:
        existing = self._existing(Project, "project", project.gid)
        if existing is None and not self.options.auto_create_projects:
            self._skip_project(project)
            return
        client_id = self.project_clients.get(project.gid)
        description = project.data.get("notes") or None

        def write() -> UUID:
            if existing is not None:
                existing.name = project.name
                existing.description = description
                existing.client_id = client_id
                local = existing
            else:
                local = Project(
                    tenant_id=self.tenant_id,
                    workspace_id=self.workspace_id,
                    client_id=client_id,
                    name=project.name,
                    description=description,
                    status="completed" if project.data.get("archived") else "active",
                    created_by=self.actor_id,
                )
                self.db.add(local)
            self.db.flush()
            self.entity_map.upsert("project", project.gid, local.id, {"name": project.name})
            return local.id

        local_project_id = self._attempt("projects", project.data, write)
        if local_project_id is None:
            self.skipped_projects.add(project.gid)
            return
        self.counts["projects"]["update" if existing is not None else "create"] += 1
        self.local_projects[project.gid] = local_project_id

        for index, section in enumerate(project.sections):
            self._import_section(section, local_project_id, index)

    def _import_section(self, section: dict[str, Any], project_id: UUID, index: int) -> None:
        existing = self._existing(Section, "section", section["gid"])
        name = section.get("name") or section["gid"]

        def write() -> UUID:
            if existing is not None:
                existing.name = name
                existing.order_index = index
                local = existing
            else:
                local = Section(project_id=project_id, name=name, order_index=index)
                self.db.add(local)
            self.db.flush()
            self.entity_map.upsert("section", section["gid"], local.id, {"name": name})
            return local.id

        local_id = self._attempt("sections", section, write)
        if local_id is not None:
            self.counts["sections"]["update" if existing is not None else "create"] += 1
            self.local_sections[section["gid"]] = local_id

    def _import_tasks(self, project: RemoteProject, project_id: UUID) -> None:
        for index, remote_task in enumerate(project.tasks):
            task_id = self._import_task(remote_task, project_id, index)
            children = project.subtasks.get(remote_task["gid"], [])
            if task_id is None:
                self.counts["subtasks"]["skip"] += len(children)
                continue
            for sub_index, remote_subtask in enumerate(children):
                self._import_subtask(remote_subtask, task_id, sub_index)

    def _section_for(self, remote_task: dict[str, Any]) -> Optional[UUID]:
        for membership in remote_task.get("memberships") or []:
            section = membership.get("section") or {}
            if section.get("gid") in self.local_sections:
                return self.local_sections[section["gid"]]
        return None

    def _defer(self, kind: str, local_id: UUID, remote_task: dict[str, Any], assignee_id: Optional[UUID]) -> None:
        assignee = remote_task.get("assignee")
        if assignee and assignee_id is None and self.options.auto_create_users:
            self.deferred.append((kind, local_id, assignee))

    def _import_task(self, remote_task: dict[str, Any], project_id: UUID, index: int) -> Optional[UUID]:
        existing = self._existing(Task, "task", remote_task["gid"])
        if existing is None and not self.options.auto_create_tasks:
            self.counts["tasks"]["skip"] += 1
            return None
        assignee_id = self._resolve_assignee("tasks", remote_task)
        values = {
            "title": remote_task.get("name") or remote_task["gid"],
            "description": remote_task.get("notes") or None,
            "status": _task_status(remote_task),
            "section_id": self._section_for(remote_task),
            "start_date": _parse_date(remote_task.get("start_on")),
            "due_date": _parse_date(remote_task.get("due_on")),
        }

        def write() -> UUID:
            if existing is not None:
                for key, value in values.items():
                    setattr(existing, key, value)
                local = existing
            else:
                local = Task(
                    tenant_id=self.tenant_id,
                    project_id=project_id,
                    priority="medium",
                    order_index=index,
                    created_by=self.actor_id,
                    **values,
                )
                self.db.add(local)
            self.db.flush()
            self.entity_map.upsert("task", remote_task["gid"], local.id, {"name": remote_task.get("name")})
            if assignee_id is not None:
                self._assign(local.id, assignee_id)
            return local.id

        local_id = self._attempt("tasks", remote_task, write)
        if local_id is not None:
            self.counts["tasks"]["update" if existing is not None else "create"] += 1
            self._defer("task", local_id, remote_task, assignee_id)
        return local_id

    def _import_subtask(self, remote_subtask: dict[str, Any], task_id: UUID, index: int) -> None:
        existing = self._existing(Subtask, "subtask", remote_subtask["gid"])
        if existing is None and not self.options.auto_create_tasks:
            self.counts["subtasks"]["skip"] += 1
            return
        assignee_id = self._resolve_assignee("subtasks", remote_subtask)
        due = _parse_date(remote_subtask.get("due_on"))
        values = {
            "title": remote_subtask.get("name") or remote_subtask["gid"],
            "status": _task_status(remote_subtask),
            "completed": bool(remote_subtask.get("completed")),
            "due_date": due.date() if due else None,
            "assignee_id": assignee_id,
        }

        def write() -> UUID:
            if existing is not None:
                for key, value in values.items():
                    setattr(existing, key, value)
                local = existing
            else:
                local = Subtask(task_id=task_id, priority="medium", order_index=index, **values)
                self.db.add(local)
            self.db.flush()
            self.entity_map.upsert("subtask", remote_subtask["gid"], local.id, {"name": remote_subtask.get("name")})
            return local.id

        local_id = self._attempt("subtasks", remote_subtask, write)
        if local_id is not None:
            self.counts["subtasks"]["update" if existing is not None else "create"] += 1
            self._defer("subtask", local_id, remote_subtask, assignee_id)

    def _assign(self, task_id: UUID, user_id: UUID) -> None:
        exists = self.db.execute(
            select(TaskAssignee.id).where(
                TaskAssignee.task_id == task_id, TaskAssignee.user_id == user_id
            )
        ).first()
        if exists is None:
            self.db.add(TaskAssignee(tenant_id=self.tenant_id, task_id=task_id, user_id=user_id))
            self.db.flush()

    def _create_users(self, remote_users: list[dict[str, Any]]) -> None:
        for remote_user in remote_users:
            if remote_user["gid"] in self.user_ids:
                continue
            email = _email(remote_user)
            if not email:
                self.counts["users"]["skip"] += 1
                continue
            name = remote_user.get("name") or email

            def create(remote_user=remote_user, email=email, name=name) -> UUID:
                first, _, last = name.partition(" ")
                user = User(
                    tenant_id=self.tenant_id,
                    email=email,
                    name=name,
                    first_name=first or None,
                    last_name=last or None,
                    role="employee",
                    is_active=True,
                )
                self.db.add(user)
                self.db.flush()
                self.entity_map.upsert(
                    "user", remote_user["gid"], user.id,
                    {"name": remote_user.get("name"), "email": remote_user.get("email")},
                )
                return user.id

            user_id = self._attempt("users", remote_user, create)
            if user_id is not None:
                self.counts["users"]["create"] += 1
                self.user_ids[remote_user["gid"]] = user_id
                self.email_to_user[email] = user_id

    def _attach_deferred(self) -> None:
        for kind, local_id, assignee in self.deferred:
            user_id = self.user_ids.get(assignee["gid"])
            if user_id is None:
                email = _email(assignee) or self.remote_emails.get(assignee["gid"], "")
                user_id = self.email_to_user.get(email) if email else None
            if user_id is None:
                if not self.options.fallback_unassigned:
                    self._error(
                        f"{kind}s",
                        assignee["gid"],
                        assignee.get("name"),
                        "UNMAPPED_ASSIGNEE",
                        "Assignee could not be created; left unassigned",
                    )
                continue

            def attach(kind=kind, local_id=local_id, user_id=user_id) -> UUID:
                if kind == "task":
                    self._assign(local_id, user_id)
                else:
                    subtask = self.db.get(Subtask, local_id)
                    subtask.assignee_id = user_id
                    self.db.flush()
                return local_id

            self._attempt(f"{kind}s", {"gid": assignee["gid"], "name": assignee.get("name")}, attach)
