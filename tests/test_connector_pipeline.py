"""Tests for the connector import pipeline."""

from __future__ import annotations

from datetime import datetime

import pytest

from importhub.common.models import Client, Project, Section, Subtask, Task, TaskAssignee, User
from importhub.connector.models import ConnectorImportRun, IntegrationEntityMap, TenantIntegration
from importhub.connector.pipeline import ConnectorImporter
from importhub.connector.schemas import ConnectorImportOptions
from importhub.connector.service import run_import
from importhub.imports.errors import ExternalApiError


def _importer(db, tenant_id, workspace, user, remote, project_ids=("p-1", "p-2"), **options):
    return ConnectorImporter(
        db,
        tenant_id,
        workspace.id,
        user.id,
        remote,
        ConnectorImportOptions.model_validate(options),
        "ws-1",
        list(project_ids),
    )


@pytest.fixture
def connected(db, tenant_id, monkeypatch, remote):
    """A stored token whose client is the in-memory remote."""
    db.add(TenantIntegration(tenant_id=tenant_id, provider="asana", access_token="tok", status="configured"))
    db.commit()
    monkeypatch.setattr("importhub.connector.service.get_client", lambda access_token: remote)
    return remote


def _run(db, tenant_id, workspace, user, **options):
    run = ConnectorImportRun(
        tenant_id=tenant_id,
        actor_user_id=user.id,
        provider="asana",
        source_workspace_id="ws-1",
        source_project_ids=["p-1", "p-2"],
        target_workspace_id=workspace.id,
        options=options,
        status="running",
    )
    db.add(run)
    db.commit()
    return run


class TestExecutePerProject:
    """Per-project client mapping."""

    def test_unmapped_project_skipped(self, db, tenant_id, workspace, user, remote):
        importer = _importer(
            db,
            tenant_id,
            workspace,
            user,
            remote,
            projectClientMap={"p-1": {"clientName": "Acme Corp"}},
            autoCreateClients=True,
        )

        result = importer.execute()
        counts = result["counts"]

        assert counts["users"] == {"create": 0, "update": 1, "skip": 1, "error": 0}
        assert counts["clients"]["create"] == 1
        assert counts["projects"] == {"create": 1, "update": 0, "skip": 1, "error": 0}
        assert counts["sections"]["create"] == 1
        assert counts["tasks"] == {"create": 2, "update": 0, "skip": 1, "error": 0}
        assert counts["subtasks"]["create"] == 1
        assert [(e["entityType"], e["remoteId"], e["errorCode"]) for e in result["errors"]] == [
            ("project", "p-2", "UNMAPPED_CLIENT")
        ]

    def test_hierarchy_written(self, db, tenant_id, workspace, user, remote):
        _importer(
            db, tenant_id, workspace, user, remote, project_ids=["p-1"],
            projectClientMap={"p-1": {"clientName": "Acme Corp"}}, autoCreateClients=True,
        ).execute()

        project = db.query(Project).one()
        assert project.name == "Website"
        assert project.description == "Site rebuild"
        assert project.client_id == db.query(Client).one().id

        section = db.query(Section).one()
        tasks = {t.title: t for t in db.query(Task)}
        assert tasks["Design homepage"].section_id == section.id
        assert tasks["Design homepage"].due_date.replace(tzinfo=None) == datetime(2026, 3, 15)
        assert tasks["Launch"].status == "done"
        assert db.query(TaskAssignee).one().user_id == user.id

        subtask = db.query(Subtask).one()
        assert subtask.task_id == tasks["Design homepage"].id
        assert subtask.completed is True

    def test_second_run_updates_in_place(self, db, tenant_id, workspace, user, remote):
        """Remote ids in the entity map make a re-run an update."""
        options = {"projectClientMap": {"p-1": {"clientName": "Acme Corp"}}, "autoCreateClients": True}
        _importer(db, tenant_id, workspace, user, remote, project_ids=["p-1"], **options).execute()
        remote.projects[0]["name"] = "Website v2"

        counts = _importer(
            db, tenant_id, workspace, user, remote, project_ids=["p-1"], **options
        ).execute()["counts"]

        assert counts["projects"]["update"] == 1
        assert counts["tasks"] == {"create": 0, "update": 2, "skip": 0, "error": 0}
        assert counts["subtasks"]["update"] == 1
        assert counts["clients"]["create"] == 0
        assert db.query(Project).one().name == "Website v2"
        assert db.query(Task).count() == 2
        assert db.query(Subtask).count() == 1
        assert db.query(Client).count() == 1
        assert db.query(TaskAssignee).count() == 1

    def test_missing_project(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote, project_ids=["p-404"]
        ).execute()

        assert result["counts"]["projects"]["error"] == 1
        assert result["errors"][0]["errorCode"] == "PROJECT_NOT_FOUND"


class TestExecuteStrategies:
    def test_team_strategy_creates_clients(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote,
            clientMappingStrategy="team", autoCreateClients=True,
        ).execute()

        assert result["errors"] == []
        assert result["counts"]["clients"]["create"] == 2
        assert {c.company_name for c in db.query(Client)} == {"Acme Corp", "Beta LLC"}

    def test_team_strategy_without_auto_create(self, db, tenant_id, workspace, user, remote):
        """Missing clients are errors; projects are still imported without one."""
        result = _importer(
            db, tenant_id, workspace, user, remote, clientMappingStrategy="team"
        ).execute()

        assert result["counts"]["clients"]["error"] == 2
        assert {e["errorCode"] for e in result["errors"]} == {"CLIENT_NOT_FOUND"}
        assert {p.client_id for p in db.query(Project)} == {None}

    def test_existing_client_matched_case_insensitive(self, db, tenant_id, workspace, user, remote):
        existing = Client(tenant_id=tenant_id, workspace_id=workspace.id, company_name="ACME CORP")
        db.add(existing)
        db.commit()

        _importer(
            db, tenant_id, workspace, user, remote, project_ids=["p-1"], clientMappingStrategy="team"
        ).execute()

        assert db.query(Project).one().client_id == existing.id

    def test_single_client(self, db, tenant_id, workspace, user, remote):
        target = Client(tenant_id=tenant_id, workspace_id=workspace.id, company_name="Only Client")
        db.add(target)
        db.commit()

        _importer(
            db, tenant_id, workspace, user, remote,
            clientMappingStrategy="single", singleClientId=str(target.id),
        ).execute()

        assert {p.client_id for p in db.query(Project)} == {target.id}

    def test_custom_field_strategy(self, db, tenant_id, workspace, user, remote):
        remote.projects[0]["custom_fields"] = [{"name": "Client", "display_value": "Gamma Inc"}]

        _importer(
            db, tenant_id, workspace, user, remote, project_ids=["p-1"],
            clientMappingStrategy="custom_field", clientCustomFieldName="client", autoCreateClients=True,
        ).execute()

        assert db.query(Client).one().company_name == "Gamma Inc"


class TestAssignees:
    def test_users_created_last_and_attached(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote,
            clientMappingStrategy="team", autoCreateClients=True, autoCreateUsers=True,
        ).execute()

        assert result["counts"]["users"]["create"] == 1
        sam = db.query(User).filter(User.email == "sam@example.com").one()
        assert (sam.first_name, sam.last_name) == ("Sam", "Remote")
        prototype = db.query(Task).filter(Task.title == "Prototype").one()
        assert db.query(TaskAssignee).filter(TaskAssignee.task_id == prototype.id).one().user_id == sam.id

    def test_unmapped_assignee_without_fallback(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote,
            clientMappingStrategy="team", autoCreateClients=True, fallbackUnassigned=False,
        ).execute()

        assert [(e["entityType"], e["remoteId"], e["errorCode"]) for e in result["errors"]] == [
            ("task", "t-200", "UNMAPPED_ASSIGNEE")
        ]
        assert result["counts"]["tasks"]["create"] == 3

    def test_fallback_leaves_task_unassigned(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote, clientMappingStrategy="team", autoCreateClients=True
        ).execute()

        assert result["errors"] == []
        assert db.query(TaskAssignee).count() == 1


class TestValidate:
    def test_preview_writes_nothing(self, db, tenant_id, workspace, user, remote):
        result = _importer(
            db, tenant_id, workspace, user, remote,
            clientMappingStrategy="team", autoCreateClients=True, autoCreateUsers=True,
        ).validate()

        assert result["autoCreatePreview"] == {
            "clients": ["Acme Corp", "Beta LLC"],
            "users": ["sam@example.com"],
        }
        counts = result["counts"]
        assert counts["users"] == {"create": 1, "update": 1, "skip": 0, "error": 0}
        assert counts["projects"]["create"] == 2
        assert counts["tasks"]["create"] == 3
        assert counts["subtasks"]["create"] == 1
        assert db.query(Client).count() == 0
        assert db.query(IntegrationEntityMap).count() == 0

    def test_unmapped_project_in_preview(self, db, tenant_id, workspace, user, remote):
        result = _importer(db, tenant_id, workspace, user, remote).validate()

        assert result["counts"]["projects"]["skip"] == 2
        assert {e["errorCode"] for e in result["errors"]} == {"UNMAPPED_CLIENT"}


class TestRunImport:
    """Runs driven through the service layer."""

    def test_completed_with_errors(self, db, tenant_id, workspace, user, connected):
        run = _run(
            db, tenant_id, workspace, user,
            projectClientMap={"p-1": {"clientName": "Acme Corp"}}, autoCreateClients=True,
        )

        run = run_import(db, run)

        assert run.status == "completed_with_errors"
        assert run.phase == "Done"
        assert run.execution_summary["errorCount"] == 1
        assert run.error_log[0]["errorCode"] == "UNMAPPED_CLIENT"
        assert run.completed_at is not None

    def test_fatal_remote_error_fails_run(self, db, tenant_id, workspace, user, connected):
        connected.fail_with = ExternalApiError("Remote API rejected credentials (401)", 401, fatal=True)
        run = _run(db, tenant_id, workspace, user, clientMappingStrategy="team")

        run = run_import(db, run)

        assert run.status == "failed"
        assert run.error_log == [
            {
                "entityType": "system",
                "remoteId": None,
                "name": "system",
                "errorCode": "EXTERNAL_API_ERROR",
                "message": "Remote API rejected credentials (401)",
            }
        ]

    def test_not_connected(self, db, tenant_id, workspace, user):
        run = _run(db, tenant_id, workspace, user)

        run = run_import(db, run)

        assert run.status == "failed"
        assert run.error_log[0]["errorCode"] == "CONFIG_ERROR"

    def test_terminal_run_untouched(self, db, tenant_id, workspace, user, connected):
        run = _run(db, tenant_id, workspace, user)
        run.status = "completed"
        db.commit()

        assert run_import(db, run).status == "completed"
        assert connected.calls == []
