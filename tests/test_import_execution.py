"""Tests for the execution engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from importhub.common.models import AuditLog, Client, Project, Task, TaskAssignee, TimeEntry, User
from importhub.core.config import settings
from importhub.core.errors import ConflictError
from importhub.imports import job_store
from importhub.imports.errors import ConfigError, PersistenceError
from importhub.imports.execution import EntityWriter, _write_row, get_primary_workspace_id
from importhub.imports.importer import CsvJobImporter
from importhub.imports.locks import execution_lock
from importhub.imports.service import ImportService


def _validated(db, tenant_id, user, entity_type, csv_text, auto_create=None):
    job = ImportService.create_job(db, tenant_id, user.id, entity_type)
    ImportService.upload(db, job.id, tenant_id, user.id, csv_text, "data.csv")
    ImportService.validate(db, job.id, tenant_id, user.id, auto_create)
    return job.id


class TestRunClients:
    """Running client imports."""

    def test_in_batch_duplicate(self, db, tenant_id, user, workspace):
        """Acme Corp twice: one created, one skipped."""
        job_id = _validated(
            db, tenant_id, user, "clients", "companyName,industry\nAcme Corp,Tech\nAcme Corp,Tech"
        )

        result = ImportService.run(db, job_id, tenant_id, user.id)
        summary = result["summary"]

        assert (summary["created"], summary["skipped"], summary["errors"]) == (1, 1, 0)
        assert result["job"]["status"] == "completed"
        assert result["job"]["progress"] == {"processed": 2, "total": 2}

        clients = db.query(Client).all()
        assert [(c.company_name, c.industry, c.workspace_id) for c in clients] == [
            ("Acme Corp", "Tech", workspace.id)
        ]

    def test_second_run_is_idempotent(self, db, tenant_id, user, workspace):
        """Importing the same file again creates nothing new."""
        csv_text = "companyName\nAcme Corp\nBeta LLC"
        ImportService.run(db, _validated(db, tenant_id, user, "clients", csv_text), tenant_id, user.id)

        second = _validated(db, tenant_id, user, "clients", csv_text)
        summary = ImportService.run(db, second, tenant_id, user.id)["summary"]

        assert (summary["created"], summary["skipped"]) == (0, 2)
        assert db.query(Client).count() == 2

    def test_rerun_same_job(self, db, tenant_id, user, workspace):
        """A finished job may run again; everything it imported is skipped."""
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nAcme Corp\nBeta LLC")
        ImportService.run(db, job_id, tenant_id, user.id)

        result = ImportService.run(db, job_id, tenant_id, user.id)

        assert (result["summary"]["created"], result["summary"]["skipped"]) == (0, 2)
        assert result["job"]["status"] == "completed"
        assert db.query(Client).count() == 2

    def test_logs_at_info(self, db, tenant_id, user, workspace, caplog):
        """Run with INFO logging enabled, as deployed."""
        job_id = _validated(
            db, tenant_id, user, "projects", "name,clientName\nWebsite,Acme Corp", auto_create=True
        )

        with caplog.at_level(logging.INFO):
            result = ImportService.run(db, job_id, tenant_id, user.id)

        assert result["job"]["status"] == "completed"
        records = {record.getMessage(): record for record in caplog.records}
        assert records["Auto-created missing referent"].referent_name == "Acme Corp"
        assert records["Import job finished"].created_count == 1

    def test_persistence_error_isolated_to_row(self, db, tenant_id, user, workspace, monkeypatch):
        """A failed insert costs only its own row."""
        original = EntityWriter._insert_clients

        def flaky_insert(self, plan):
            if plan.row.company_name == "Beta LLC":
                raise IntegrityError("INSERT INTO clients", {}, Exception("duplicate key value"))
            return original(self, plan)

        monkeypatch.setattr(EntityWriter, "_insert_clients", flaky_insert)
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nAcme\nBeta LLC\nGamma")

        result = ImportService.run(db, job_id, tenant_id, user.id)

        assert (result["summary"]["created"], result["summary"]["errors"]) == (2, 1)
        assert result["job"]["status"] == "completed_with_errors"
        assert {c.company_name for c in db.query(Client)} == {"Acme", "Gamma"}

        job = job_store.get_job(db, job_id, tenant_id)
        assert job.error_rows == [
            {
                "row": 3,
                "primaryKey": "Beta LLC",
                "errorCode": "PERSISTENCE_ERROR",
                "message": "Failed to save row: duplicate key value",
            }
        ]

    def test_batches_commit_progress(self, db, tenant_id, user, workspace, monkeypatch):
        monkeypatch.setattr(settings, "import_batch_size", 2)
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nA\nB\nC\nD\nE")

        result = ImportService.run(db, job_id, tenant_id, user.id)

        assert result["summary"]["created"] == 5
        assert result["job"]["progress"] == {"processed": 5, "total": 5}

    def test_audit_log_written(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nAcme")
        ImportService.run(db, job_id, tenant_id, user.id)

        entry = db.query(AuditLog).filter(AuditLog.action == "import_job_executed").one()
        assert entry.entity_id == job_id
        assert entry.after_json["created"] == 1
        assert entry.actor_id == user.id


class TestRunAutoCreate:
    """Auto-creating missing referents."""

    def test_projects_create_missing_client_once(self, db, tenant_id, user, workspace):
        job_id = _validated(
            db,
            tenant_id,
            user,
            "projects",
            "name,clientName\nWebsite,Acme Corp\nApp,acme corp",
            auto_create=True,
        )

        summary = ImportService.run(db, job_id, tenant_id, user.id, auto_create_missing=True)["summary"]

        assert summary["created"] == 2
        assert summary["autoCreated"] == {"clients": 1, "users": 0, "projects": 0}
        client = db.query(Client).one()
        assert client.company_name == "Acme Corp"
        assert {p.client_id for p in db.query(Project)} == {client.id}

    def test_without_auto_create_rows_skipped(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "projects", "name,clientName\nWebsite,Acme Corp")

        summary = ImportService.run(db, job_id, tenant_id, user.id)["summary"]

        assert (summary["created"], summary["skipped"]) == (0, 1)
        assert db.query(Client).count() == 0

    def test_time_entry_creates_user_from_row(self, db, tenant_id, user, workspace):
        job_id = _validated(
            db,
            tenant_id,
            user,
            "time_entries",
            "userEmail,startTime,endTime,firstName,lastName,clientName\n"
            "new.person@example.com,2026-01-28T09:00:00Z,2026-01-28T10:30:00Z,New,Person,Acme\n",
            auto_create=True,
        )

        summary = ImportService.run(db, job_id, tenant_id, user.id, auto_create_missing=True)["summary"]

        assert summary["autoCreated"] == {"clients": 1, "users": 1, "projects": 0}
        created = db.query(User).filter(User.email == "new.person@example.com").one()
        assert (created.first_name, created.last_name, created.role) == ("New", "Person", "employee")
        entry = db.query(TimeEntry).one()
        assert entry.user_id == created.id
        assert entry.duration_seconds == 5400


class TestRunOtherEntities:
    def test_tasks_with_assignee(self, db, tenant_id, user, workspace):
        db.add(Project(tenant_id=tenant_id, workspace_id=workspace.id, name="Website"))
        db.commit()
        job_id = _validated(
            db,
            tenant_id,
            user,
            "tasks",
            "title,projectName,assigneeEmail,priority,dueDate\n"
            "Design,Website,owner@example.com,High,2026-03-15\n",
        )

        ImportService.run(db, job_id, tenant_id, user.id)

        task = db.query(Task).one()
        assert task.priority == "high"
        assert task.due_date.replace(tzinfo=None) == datetime(2026, 3, 15)
        assert db.query(TaskAssignee).one().user_id == user.id

    def test_admins_get_admin_role(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "admins", "email,firstName\nboss@example.com,Bea")

        ImportService.run(db, job_id, tenant_id, user.id)

        admin = db.query(User).filter(User.email == "boss@example.com").one()
        assert admin.role == "admin"
        assert admin.first_name == "Bea"

    def test_time_entries_deduplicated_against_store(self, db, tenant_id, user, workspace):
        db.add(
            TimeEntry(
                tenant_id=tenant_id,
                workspace_id=workspace.id,
                user_id=user.id,
                start_time=datetime(2026, 1, 28, 9, tzinfo=timezone.utc),
                duration_seconds=3600,
            )
        )
        db.commit()
        job_id = _validated(
            db,
            tenant_id,
            user,
            "time_entries",
            "userEmail,startTime,durationHours\nowner@example.com,2026-01-28T09:00:00Z,1\n",
        )

        summary = ImportService.run(db, job_id, tenant_id, user.id)["summary"]
        assert (summary["created"], summary["skipped"]) == (0, 1)


class TestRunPreconditions:
    def test_not_validated(self, db, tenant_id, user, workspace):
        job = ImportService.create_job(db, tenant_id, user.id, "clients")
        ImportService.upload(db, job.id, tenant_id, user.id, "companyName\nAcme", None)

        with pytest.raises(ConfigError, match="must be validated"):
            ImportService.run(db, job.id, tenant_id, user.id)

    def test_mapping_change_requires_revalidation(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "clients", "companyName,industry\nAcme,Tech")
        ImportService.update_mapping(
            db, job_id, tenant_id, [{"sourceColumn": "companyName", "targetField": "companyName"}]
        )

        with pytest.raises(ConfigError):
            ImportService.run(db, job_id, tenant_id, user.id)

    def test_lock_held_by_another_import(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nAcme")

        with execution_lock(tenant_id, "clients"):
            with pytest.raises(ConflictError):
                ImportService.run(db, job_id, tenant_id, user.id)

        assert job_store.get_job(db, job_id, tenant_id).status == "validated"

    def test_database_failure_marks_job_failed(self, db, tenant_id, user, workspace, monkeypatch):
        """An error outside row scope ends the job failed."""
        job_id = _validated(db, tenant_id, user, "clients", "companyName\nAcme")

        def broken_lookups(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr("importhub.imports.execution.load_lookups", broken_lookups)
        summary = ImportService.run(db, job_id, tenant_id, user.id)["summary"]

        job = job_store.get_job(db, job_id, tenant_id)
        assert job.status == "failed"
        assert summary["created"] == 0
        assert job.completed_at is not None

    def test_no_workspace(self, db, tenant_id):
        with pytest.raises(ConfigError):
            get_primary_workspace_id(db, tenant_id)

    def test_auto_create_waits_for_referent_imports(self, db, tenant_id, user, workspace):
        """Auto-created clients are serialized against a running clients import."""
        job_id = _validated(
            db, tenant_id, user, "projects", "name,clientName\nWebsite,Acme Corp", auto_create=True
        )

        with execution_lock(tenant_id, "clients"):
            with pytest.raises(ConflictError):
                ImportService.run(db, job_id, tenant_id, user.id)

        assert db.query(Client).count() == 0
        assert db.query(Project).count() == 0
        assert job_store.get_job(db, job_id, tenant_id).status == "validated"

    def test_referent_locks_only_with_auto_create(self, db, tenant_id, user, workspace):
        job_id = _validated(db, tenant_id, user, "projects", "name,clientName\nWebsite,Acme Corp")

        with execution_lock(tenant_id, "clients"):
            summary = ImportService.run(db, job_id, tenant_id, user.id)["summary"]

        assert (summary["created"], summary["skipped"]) == (0, 1)

    def test_locked_entity_types(self, db, tenant_id, user, workspace):
        job_id = _validated(
            db,
            tenant_id,
            user,
            "time_entries",
            "userEmail,startTime,durationHours\nowner@example.com,2026-01-28T09:00:00Z,1\n",
            auto_create=True,
        )
        job = job_store.get_job(db, job_id, tenant_id)

        assert sorted(CsvJobImporter(db, job).locked_entity_types()) == [
            "clients",
            "projects",
            "time_entries",
            "users",
        ]


class TestWriteRow:
    def test_database_error_becomes_persistence_error(self, db):
        writer = MagicMock()
        writer.insert.side_effect = IntegrityError(
            "INSERT INTO clients", {}, Exception("duplicate key value\nDETAIL: Key exists")
        )

        with pytest.raises(PersistenceError, match="^Failed to save row: duplicate key value$") as info:
            _write_row(db, writer, MagicMock())

        assert info.value.error_code == "PERSISTENCE_ERROR"
        assert isinstance(info.value.__cause__, IntegrityError)
        writer.create_referents.assert_called_once()
