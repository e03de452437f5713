"""Helpers for emitting business metrics with consistent metadata."""

from typing import Optional
from uuid import UUID

from importhub.core.business_metrics import MetricCategory
from importhub.core.metrics import emit_business_metric


class MetricsService:
    """Centralized service for emitting business metrics."""

    @staticmethod
    def emit_import_metric(
        metric_name: str,
        tenant_id: UUID,
        user_id: Optional[UUID],
        entity_type: Optional[str] = None,
        rows_processed: Optional[int] = None,
        **extra_metadata,
    ) -> None:
        """Emit a CSV import metric.

        Args:
            metric_name: Name from BusinessMetric
            tenant_id: Tenant ID
            user_id: Acting user
            entity_type: Target entity type of the job
            rows_processed: Row count; becomes the metric value when given
            **extra_metadata: Additional metadata to include
        """
        metadata = {
            "tenant_id": str(tenant_id),
            "user_id": str(user_id) if user_id else None,
        }
        if entity_type:
            metadata["entity_type"] = entity_type
        if rows_processed is not None:
            metadata["rows_processed"] = rows_processed
        metadata.update(extra_metadata)

        emit_business_metric(
            metric_name=metric_name,
            value=rows_processed if rows_processed is not None else 1,
            category=MetricCategory.IMPORT.value,
            **metadata,
        )

    @staticmethod
    def emit_connector_metric(
        metric_name: str,
        tenant_id: UUID,
        run_id: Optional[UUID] = None,
        provider: Optional[str] = None,
        **extra_metadata,
    ) -> None:
        """Emit a connector run metric."""
        metadata = {"tenant_id": str(tenant_id)}
        if run_id:
            metadata["run_id"] = str(run_id)
        if provider:
            metadata["provider"] = provider
        metadata.update(extra_metadata)

        emit_business_metric(
            metric_name=metric_name,
            value=1,
            category=MetricCategory.CONNECTOR.value,
            **metadata,
        )

    @staticmethod
    def emit_export_metric(
        metric_name: str,
        tenant_id: UUID,
        entity_type: str,
        row_count: int,
    ) -> None:
        emit_business_metric(
            metric_name=metric_name,
            value=row_count,
            category=MetricCategory.EXPORT.value,
            tenant_id=str(tenant_id),
            entity_type=entity_type,
        )

    @staticmethod
    def emit_data_quality_metric(
        metric_name: str,
        tenant_id: Optional[UUID] = None,
        entity_type: Optional[str] = None,
        value: float = 1,
        **extra_metadata,
    ) -> None:
        """Emit a data quality metric (alias conflicts, warning counts)."""
        metadata = {}
        if tenant_id:
            metadata["tenant_id"] = str(tenant_id)
        if entity_type:
            metadata["entity_type"] = entity_type
        metadata.update(extra_metadata)

        emit_business_metric(
            metric_name=metric_name,
            value=value,
            category=MetricCategory.DATA_QUALITY.value,
            **metadata,
        )
