"""importhub schema: entity store, import jobs and connector tables

Revision ID: 20261001120000
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261001120000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
JSON = postgresql.JSON(astext_type=sa.Text())

client_status = postgresql.ENUM("active", "inactive", "lead", "prospect", "past", "on_hold", name="client_status", create_type=False)
project_status = postgresql.ENUM("active", "completed", "on_hold", "archived", name="project_status", create_type=False)
task_status = postgresql.ENUM("todo", "in_progress", "review", "done", name="task_status", create_type=False)
task_priority = postgresql.ENUM("low", "medium", "high", "urgent", name="task_priority", create_type=False)
user_role = postgresql.ENUM("employee", "admin", "manager", "contractor", name="user_role", create_type=False)
time_entry_scope = postgresql.ENUM("in_scope", "out_of_scope", "internal", name="time_entry_scope", create_type=False)

ENUM_TYPES = (client_status, project_status, task_status, task_priority, user_role, time_entry_scope)


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create entity store, import and connector tables."""
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "workspaces",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_workspaces")),
    )
    op.create_index(op.f("ix_workspaces_tenant_id"), "workspaces", ["tenant_id"])

    op.create_table(
        "users",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="employee"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("tenant_id", "email", name=op.f("uq_users_tenant_id")),
    )
    op.create_index(op.f("ix_users_tenant_id"), "users", ["tenant_id"])

    op.create_table(
        "clients",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("parent_client_id", UUID, nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("industry", sa.String(length=120), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("status", client_status, nullable=False, server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("address_line1", sa.String(length=255), nullable=True),
        sa.Column("address_line2", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=120), nullable=True),
        sa.Column("postal_code", sa.String(length=40), nullable=True),
        sa.Column("country", sa.String(length=120), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_clients")),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"],
            name=op.f("fk_clients_workspace_id_workspaces"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["parent_client_id"], ["clients.id"],
            name=op.f("fk_clients_parent_client_id_clients"), ondelete="SET NULL",
        ),
    )
    op.create_index(op.f("ix_clients_tenant_id"), "clients", ["tenant_id"])
    op.create_index("ix_clients_tenant_company", "clients", ["tenant_id", "company_name"])

    op.create_table(
        "projects",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("client_id", UUID, nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", project_status, nullable=False, server_default="active"),
        sa.Column("color", sa.String(length=20), nullable=False, server_default="#3B82F6"),
        sa.Column("budget_minutes", sa.Integer(), nullable=True),
        sa.Column("created_by", UUID, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_projects")),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"],
            name=op.f("fk_projects_workspace_id_workspaces"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["client_id"], ["clients.id"],
            name=op.f("fk_projects_client_id_clients"), ondelete="SET NULL",
        ),
    )
    op.create_index(op.f("ix_projects_tenant_id"), "projects", ["tenant_id"])
    op.create_index("ix_projects_tenant_name", "projects", ["tenant_id", "name"])

    op.create_table(
        "sections",
        sa.Column("id", UUID, nullable=False),
        sa.Column("project_id", UUID, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_sections")),
        sa.ForeignKeyConstraint(
            ["project_id"], ["projects.id"],
            name=op.f("fk_sections_project_id_projects"), ondelete="CASCADE",
        ),
    )
    op.create_index(op.f("ix_sections_project_id"), "sections", ["project_id"])

    op.create_table(
        "tasks",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("project_id", UUID, nullable=True),
        sa.Column("section_id", UUID, nullable=True),
        sa.Column("parent_task_id", UUID, nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", task_status, nullable=False, server_default="todo"),
        sa.Column("priority", task_priority, nullable=False, server_default="medium"),
        _timestamp("start_date"),
        _timestamp("due_date"),
        sa.Column("estimate_minutes", sa.Integer(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", UUID, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tasks")),
        sa.ForeignKeyConstraint(
            ["project_id"], ["projects.id"],
            name=op.f("fk_tasks_project_id_projects"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["section_id"], ["sections.id"],
            name=op.f("fk_tasks_section_id_sections"), ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["parent_task_id"], ["tasks.id"],
            name=op.f("fk_tasks_parent_task_id_tasks"), ondelete="SET NULL",
        ),
    )
    op.create_index(op.f("ix_tasks_tenant_id"), "tasks", ["tenant_id"])
    op.create_index(op.f("ix_tasks_project_id"), "tasks", ["project_id"])

    op.create_table(
        "subtasks",
        sa.Column("id", UUID, nullable=False),
        sa.Column("task_id", UUID, nullable=False),
        sa.Column("assignee_id", UUID, nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", task_status, nullable=False, server_default="todo"),
        sa.Column("priority", task_priority, nullable=False, server_default="medium"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_subtasks")),
        sa.ForeignKeyConstraint(
            ["task_id"], ["tasks.id"],
            name=op.f("fk_subtasks_task_id_tasks"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["assignee_id"], ["users.id"],
            name=op.f("fk_subtasks_assignee_id_users"), ondelete="SET NULL",
        ),
    )
    op.create_index(op.f("ix_subtasks_task_id"), "subtasks", ["task_id"])

    op.create_table(
        "task_assignees",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("task_id", UUID, nullable=False),
        sa.Column("user_id", UUID, nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_task_assignees")),
        sa.UniqueConstraint("task_id", "user_id", name=op.f("uq_task_assignees_task_id")),
        sa.ForeignKeyConstraint(
            ["task_id"], ["tasks.id"],
            name=op.f("fk_task_assignees_task_id_tasks"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name=op.f("fk_task_assignees_user_id_users"), ondelete="CASCADE",
        ),
    )

    op.create_table(
        "time_entries",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("client_id", UUID, nullable=True),
        sa.Column("project_id", UUID, nullable=True),
        sa.Column("task_id", UUID, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("scope", time_entry_scope, nullable=False, server_default="in_scope"),
        _timestamp("start_time", nullable=False),
        _timestamp("end_time"),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_time_entries")),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"],
            name=op.f("fk_time_entries_workspace_id_workspaces"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name=op.f("fk_time_entries_user_id_users"), ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["client_id"], ["clients.id"],
            name=op.f("fk_time_entries_client_id_clients"), ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["project_id"], ["projects.id"],
            name=op.f("fk_time_entries_project_id_projects"), ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["task_id"], ["tasks.id"],
            name=op.f("fk_time_entries_task_id_tasks"), ondelete="SET NULL",
        ),
    )
    op.create_index(op.f("ix_time_entries_tenant_id"), "time_entries", ["tenant_id"])
    op.create_index(
        "ix_time_entries_tenant_user_start", "time_entries", ["tenant_id", "user_id", "start_time"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("actor_id", UUID, nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", UUID, nullable=True),
        sa.Column("after_json", JSON, nullable=True),
        _timestamp("occurred_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_logs")),
    )
    op.create_index(op.f("ix_audit_logs_tenant_id"), "audit_logs", ["tenant_id"])

    op.create_table(
        "import_jobs",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("created_by_user_id", UUID, nullable=True),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="draft"),
        sa.Column("file_name", sa.String(length=500), nullable=True),
        sa.Column("columns", JSON, nullable=False),
        sa.Column("raw_rows", JSON, nullable=False),
        sa.Column("sample_rows", JSON, nullable=False),
        sa.Column("mapping", JSON, nullable=False),
        sa.Column("validation_summary", JSON, nullable=True),
        sa.Column("execution_summary", JSON, nullable=True),
        sa.Column("progress", JSON, nullable=False),
        sa.Column("error_rows", JSON, nullable=False),
        sa.Column("auto_create_missing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_import_jobs")),
    )
    op.create_index(op.f("ix_import_jobs_tenant_id"), "import_jobs", ["tenant_id"])
    op.create_index("ix_import_jobs_tenant_created", "import_jobs", ["tenant_id", "created_at"])
    op.create_index("ix_import_jobs_status", "import_jobs", ["status"])

    op.create_table(
        "tenant_integrations",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="not_configured"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tenant_integrations")),
        sa.UniqueConstraint("tenant_id", "provider", name=op.f("uq_tenant_integrations_tenant_id")),
    )

    op.create_table(
        "connector_import_runs",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("actor_user_id", UUID, nullable=True),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("source_workspace_id", sa.String(length=100), nullable=False),
        sa.Column("source_project_ids", JSON, nullable=False),
        sa.Column("target_workspace_id", UUID, nullable=False),
        sa.Column("options", JSON, nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="running"),
        sa.Column("phase", sa.String(length=255), nullable=True),
        sa.Column("execution_summary", JSON, nullable=True),
        sa.Column("error_log", JSON, nullable=False),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_connector_import_runs")),
    )
    op.create_index(op.f("ix_connector_import_runs_tenant_id"), "connector_import_runs", ["tenant_id"])
    op.create_index(
        "ix_connector_import_runs_tenant_created", "connector_import_runs", ["tenant_id", "created_at"]
    )

    op.create_table(
        "integration_entity_map",
        sa.Column("id", UUID, nullable=False),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("provider_entity_id", sa.String(length=255), nullable=False),
        sa.Column("local_entity_id", UUID, nullable=False),
        sa.Column("metadata", JSON, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_integration_entity_map")),
        sa.UniqueConstraint(
            "tenant_id", "provider", "entity_type", "provider_entity_id",
            name="uq_integration_entity_map_remote",
        ),
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table("integration_entity_map")
    op.drop_index("ix_connector_import_runs_tenant_created", table_name="connector_import_runs")
    op.drop_index(op.f("ix_connector_import_runs_tenant_id"), table_name="connector_import_runs")
    op.drop_table("connector_import_runs")
    op.drop_table("tenant_integrations")
    op.drop_index("ix_import_jobs_status", table_name="import_jobs")
    op.drop_index("ix_import_jobs_tenant_created", table_name="import_jobs")
    op.drop_index(op.f("ix_import_jobs_tenant_id"), table_name="import_jobs")
    op.drop_table("import_jobs")
    op.drop_index(op.f("ix_audit_logs_tenant_id"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_time_entries_tenant_user_start", table_name="time_entries")
    op.drop_index(op.f("ix_time_entries_tenant_id"), table_name="time_entries")
    op.drop_table("time_entries")
    op.drop_table("task_assignees")
    op.drop_index(op.f("ix_subtasks_task_id"), table_name="subtasks")
    op.drop_table("subtasks")
    op.drop_index(op.f("ix_tasks_project_id"), table_name="tasks")
    op.drop_index(op.f("ix_tasks_tenant_id"), table_name="tasks")
    op.drop_table("tasks")
    op.drop_index(op.f("ix_sections_project_id"), table_name="sections")
    op.drop_table("sections")
    op.drop_index("ix_projects_tenant_name", table_name="projects")
    op.drop_index(op.f("ix_projects_tenant_id"), table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_clients_tenant_company", table_name="clients")
    op.drop_index(op.f("ix_clients_tenant_id"), table_name="clients")
    op.drop_table("clients")
    op.drop_index(op.f("ix_users_tenant_id"), table_name="users")
    op.drop_table("users")
    op.drop_index(op.f("ix_workspaces_tenant_id"), table_name="workspaces")
    op.drop_table("workspaces")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
