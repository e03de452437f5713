"""One validate/execute contract for every import source."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from importhub.imports.execution import REFERENT_COUNTERS, execute_job
from importhub.imports.locks import execution_lock
from importhub.imports.models import ImportJobRecord
from importhub.imports.validation import HARD_REFERENCES, validate_job

PhaseCallback = Callable[[str], None]


class Importer(ABC):
    """Abstract base class for import sources."""

    @abstractmethod
    def validate(self) -> dict[str, Any]:
        """Dry run: classify everything without writing to the entity store."""

    @abstractmethod
    def execute(self, on_phase: Optional[PhaseCallback] = None) -> dict[str, Any]:
        """Commit the import, calling ``on_phase`` before each stage."""


class CsvJobImporter(Importer):
    """Runs an uploaded CSV import job."""

    def __init__(self, db: Session, job: ImportJobRecord, actor_id: Optional[UUID] = None):
        self.db = db
        self.job = job
        self.actor_id = actor_id

    def validate(self) -> dict[str, Any]:
        summary = validate_job(self.db, self.job, self.actor_id)
        return summary.to_dict()

    def locked_entity_types(self) -> list[str]:
        """The job's entity type, plus every referent kind it may auto-create."""
        entity_types = [self.job.entity_type]
        if self.job.auto_create_missing:
            entity_types += [
                REFERENT_COUNTERS[kind] for _, kind in HARD_REFERENCES[self.job.entity_type]
            ]
        return entity_types

    def execute(self, on_phase: Optional[PhaseCallback] = None) -> dict[str, Any]:
        if on_phase:
            on_phase("Importing rows")
        with execution_lock(self.job.tenant_id, *self.locked_entity_types()):
            summary = execute_job(self.db, self.job, self.actor_id)
        if on_phase:
            on_phase("Done")
        return summary.to_dict()
