"""Import error taxonomy.

Step-fatal errors (ParseError, ConfigError) stop the current upload,
validate or run call. RowError subclasses are scoped to one row: the
engines catch them per row, classify the row and record an error row,
then move on.
"""

from __future__ import annotations

from typing import Optional


class ImportPipelineError(Exception):
    """Base class for errors raised by the import pipeline."""


class ParseError(ImportPipelineError):
    """Malformed tabular input."""


class ConfigError(ImportPipelineError):
    """Invalid or missing mapping, entity type or job state."""


class RowError(ImportPipelineError):
    """An error confined to a single row.

    ``outcome`` is how the row is classified: "fail" rows can never be
    imported as given, "skip" rows are valid but not imported.
    """

    error_code = "ROW_ERROR"
    outcome = "fail"

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class TypeCoercionError(RowError):
    error_code = "TYPE_COERCION"


class MissingRequiredFieldError(RowError):
    error_code = "MISSING_REQUIRED"


class InvalidValueError(RowError):
    """Values that coerce but break a rule, e.g. an end time before the start time."""

    error_code = "INVALID_VALUE"


class UnresolvedReferenceError(RowError):
    error_code = "UNRESOLVED_REFERENCE"
    outcome = "skip"

    def __init__(self, message: str, field: Optional[str] = None, kind: str = "", name: str = ""):
        super().__init__(message, field)
        self.kind = kind
        self.name = name


class DuplicateError(RowError):
    error_code = "DUPLICATE"
    outcome = "skip"


class PersistenceError(RowError):
    """The insert for a row failed at execution time."""

    error_code = "PERSISTENCE_ERROR"


class ExternalApiError(ImportPipelineError):
    """A connector call failed.

    ``fatal`` errors (revoked or invalid credentials) abort the whole run;
    the rest are recorded against the entity being imported.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, fatal: bool = False):
        self.message = message
        self.status_code = status_code
        self.fatal = fatal
        super().__init__(message)
