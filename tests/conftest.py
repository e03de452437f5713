from __future__ import annotations

from typing import Any, Generator, Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from importhub.main import app
from importhub.auth.utils import create_access_token
from importhub.common.db import get_db
from importhub.common.models import Base, User, Workspace
from importhub.core.config import settings

# Register the import job and connector tables on Base.metadata
import importhub.connector.models  # noqa: F401
import importhub.imports.models  # noqa: F401


def _sqlite_engine():
    """In-memory SQLite engine with working SAVEPOINTs.

    pysqlite's own transaction handling breaks begin_nested(); the driver
    is put in autocommit mode and SQLAlchemy emits BEGIN itself.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="function")
def engine():
    """Create a fresh database for each test."""
    engine = _sqlite_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def local_locks(monkeypatch):
    """Execution locks without Redis."""
    monkeypatch.setattr(settings, "import_lock_backend", "local")
    monkeypatch.setattr(settings, "import_lock_wait_seconds", 0)


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def workspace(db: Session, tenant_id: UUID) -> Workspace:
    workspace = Workspace(tenant_id=tenant_id, name="Main", is_primary=True)
    db.add(workspace)
    db.commit()
    db.refresh(workspace)
    return workspace


@pytest.fixture
def user(db: Session, tenant_id: UUID) -> User:
    user = User(
        tenant_id=tenant_id,
        email="owner@example.com",
        name="Olive Owner",
        first_name="Olive",
        last_name="Owner",
        role="admin",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_headers(user: User, tenant_id: UUID) -> dict[str, str]:
    token = create_access_token({"user_id": str(user.id), "tenant_id": str(tenant_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_tenant_headers(other_tenant_id: UUID) -> dict[str, str]:
    token = create_access_token({"user_id": str(uuid4()), "tenant_id": str(other_tenant_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db: Session, workspace: Workspace) -> Generator[TestClient, None, None]:
    """Create a test client with dependency overrides."""

    def get_test_db():
        yield db

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


class FakeRemoteClient:
    """In-memory stand-in for the remote project-management API."""

    def __init__(
        self,
        users: Optional[list[dict[str, Any]]] = None,
        projects: Optional[list[dict[str, Any]]] = None,
        sections: Optional[dict[str, list[dict[str, Any]]]] = None,
        tasks: Optional[dict[str, list[dict[str, Any]]]] = None,
        subtasks: Optional[dict[str, list[dict[str, Any]]]] = None,
    ):
        self.users = users or []
        self.projects = projects or []
        self.sections = sections or {}
        self.tasks = tasks or {}
        self.subtasks = subtasks or {}
        self.fail_with: Optional[Exception] = None
        self.calls: list[str] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def test_connection(self) -> dict[str, Any]:
        self._call("test_connection")
        return {"gid": "me", "name": "Remote Owner", "email": "owner@example.com"}

    def get_workspaces(self) -> list[dict[str, Any]]:
        self._call("get_workspaces")
        return [{"gid": "ws-1", "name": "Remote Workspace"}]

    def get_projects(self, workspace_id: str, include_archived: bool = False) -> list[dict[str, Any]]:
        self._call("get_projects")
        if include_archived:
            return list(self.projects)
        return [p for p in self.projects if not p.get("archived")]

    def get_sections(self, project_id: str) -> list[dict[str, Any]]:
        self._call("get_sections")
        return list(self.sections.get(project_id, []))

    def get_tasks_for_project(self, project_id: str) -> list[dict[str, Any]]:
        self._call("get_tasks_for_project")
        return list(self.tasks.get(project_id, []))

    def get_subtasks(self, task_id: str) -> list[dict[str, Any]]:
        self._call("get_subtasks")
        return list(self.subtasks.get(task_id, []))

    def get_workspace_users(self, workspace_id: str) -> list[dict[str, Any]]:
        self._call("get_workspace_users")
        return list(self.users)


@pytest.fixture
def remote() -> FakeRemoteClient:
    """A small remote workspace: two projects, one section, tasks and a subtask."""
    return FakeRemoteClient(
        users=[
            {"gid": "u-1", "name": "Olive Owner", "email": "owner@example.com"},
            {"gid": "u-2", "name": "Sam Remote", "email": "sam@example.com"},
        ],
        projects=[
            {"gid": "p-1", "name": "Website", "notes": "Site rebuild", "archived": False,
             "team": {"gid": "t-1", "name": "Acme Corp"}},
            {"gid": "p-2", "name": "Mobile App", "notes": "", "archived": False,
             "team": {"gid": "t-2", "name": "Beta LLC"}},
        ],
        sections={
            "p-1": [{"gid": "s-1", "name": "Backlog"}],
            "p-2": [],
        },
        tasks={
            "p-1": [
                {"gid": "t-100", "name": "Design homepage", "completed": False,
                 "due_on": "2026-03-15", "num_subtasks": 1,
                 "assignee": {"gid": "u-1", "name": "Olive Owner"},
                 "memberships": [{"project": {"gid": "p-1"}, "section": {"gid": "s-1"}}]},
                {"gid": "t-101", "name": "Launch", "completed": True, "num_subtasks": 0,
                 "assignee": None, "memberships": []},
            ],
            "p-2": [
                {"gid": "t-200", "name": "Prototype", "completed": False, "num_subtasks": 0,
                 "assignee": {"gid": "u-2", "name": "Sam Remote"}, "memberships": []},
            ],
        },
        subtasks={
            "t-100": [
                {"gid": "st-1", "name": "Pick fonts", "completed": True, "due_on": "2026-03-10",
                 "assignee": None},
            ],
        },
    )
