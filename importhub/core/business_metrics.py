"""Business metric names.

Use these constants instead of string literals so dashboards keep working
when call sites move around.
"""

from enum import Enum


class MetricCategory(str, Enum):
    """Categories for grouping business metrics."""

    IMPORT = "import"
    CONNECTOR = "connector"
    EXPORT = "export"
    DATA_QUALITY = "data_quality"


class BusinessMetric:
    """Catalog of business metric names."""

    # CSV import jobs
    IMPORT_JOB_CREATED = "ImportJobCreated"
    IMPORT_FILE_UPLOADED = "ImportFileUploaded"
    IMPORT_UPLOAD_REJECTED = "ImportUploadRejected"
    IMPORT_VALIDATED = "ImportValidated"
    IMPORT_STARTED = "ImportStarted"
    IMPORT_COMPLETED = "ImportCompleted"
    IMPORT_FAILED = "ImportFailed"
    IMPORT_ROWS_PROCESSED = "ImportRowsProcessed"
    IMPORT_ROWS_FAILED = "ImportRowsFailed"

    # Connector runs
    CONNECTOR_CONNECTED = "ConnectorConnected"
    CONNECTOR_RUN_STARTED = "ConnectorRunStarted"
    CONNECTOR_RUN_COMPLETED = "ConnectorRunCompleted"
    CONNECTOR_RUN_FAILED = "ConnectorRunFailed"

    # Exports
    EXPORT_GENERATED = "ExportGenerated"

    # Data quality
    MAPPING_ALIAS_CONFLICT = "MappingAliasConflict"
    ROWS_WITH_WARNINGS = "RowsWithWarnings"
