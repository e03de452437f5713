"""Pydantic schemas for the connector module."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ProjectClientEntry(BaseModel):
    """Explicit client for one remote project."""

    client_id: Optional[UUID] = Field(default=None, alias="clientId")
    client_name: Optional[str] = Field(default=None, alias="clientName")

    model_config = {"populate_by_name": True}


class ConnectorImportOptions(BaseModel):
    """How remote entities are matched to and created in the entity store."""

    auto_create_clients: bool = Field(default=False, alias="autoCreateClients")
    auto_create_projects: bool = Field(default=True, alias="autoCreateProjects")
    auto_create_tasks: bool = Field(default=True, alias="autoCreateTasks")
    auto_create_users: bool = Field(default=False, alias="autoCreateUsers")
    fallback_unassigned: bool = Field(default=True, alias="fallbackUnassigned")
    client_mapping_strategy: Literal["single", "team", "per_project", "custom_field"] = Field(
        default="per_project", alias="clientMappingStrategy"
    )
    single_client_id: Optional[UUID] = Field(default=None, alias="singleClientId")
    single_client_name: Optional[str] = Field(default=None, alias="singleClientName")
    client_custom_field_name: Optional[str] = Field(default=None, alias="clientCustomFieldName")
    project_client_map: dict[str, ProjectClientEntry] = Field(
        default_factory=dict, alias="projectClientMap"
    )

    model_config = {"populate_by_name": True}


class ConnectRequest(BaseModel):
    access_token: str = Field(..., alias="accessToken", min_length=1)

    model_config = {"populate_by_name": True}


class ConnectorRunRequest(BaseModel):
    """Body shared by validate and execute."""

    remote_workspace_id: str = Field(..., alias="remoteWorkspaceId")
    remote_project_ids: list[str] = Field(..., alias="remoteProjectIds", min_length=1)
    target_workspace_id: Optional[UUID] = Field(default=None, alias="targetWorkspaceId")
    options: ConnectorImportOptions = Field(default_factory=ConnectorImportOptions)

    model_config = {"populate_by_name": True}
