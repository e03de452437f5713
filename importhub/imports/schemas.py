"""Pydantic schemas for Import module."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class CreateJobRequest(BaseModel):
    """Request to create an import job."""

    entity_type: str = Field(
        ...,
        alias="entityType",
        description="Entity type: clients, projects, tasks, users, admins, time_entries",
    )

    model_config = {"populate_by_name": True}


class UploadRequest(BaseModel):
    """CSV contents for a job."""

    csv_text: str = Field(..., alias="csvText")
    file_name: Optional[str] = Field(default=None, alias="fileName")

    model_config = {"populate_by_name": True}


class ColumnMappingEntry(BaseModel):
    """One source column to target field mapping."""

    source_column: Optional[str] = Field(default=None, alias="sourceColumn")
    target_field: Optional[str] = Field(default=None, alias="targetField")
    transform: Optional[
        Literal["trim", "lowercase", "parseDate", "parseNumber", "parseBoolean", "enumMap"]
    ] = None
    static_value: Optional[str] = Field(default=None, alias="staticValue")
    enum_map: Optional[dict[str, str]] = Field(default=None, alias="enumMap")

    model_config = {"populate_by_name": True}

    def to_mapping_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class MappingRequest(BaseModel):
    """Replace a job's column mapping."""

    mapping: list[ColumnMappingEntry]


class ValidateRequest(BaseModel):
    """Optional body for validate; the flag is stored on the job."""

    auto_create_missing: Optional[bool] = Field(default=None, alias="autoCreateMissing")

    model_config = {"populate_by_name": True}


class RunRequest(BaseModel):
    """Request to run a validated job."""

    auto_create_missing: Optional[bool] = Field(default=None, alias="autoCreateMissing")

    model_config = {"populate_by_name": True}
