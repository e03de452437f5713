"""CloudWatch Embedded Metric Format (EMF) emitters.

Each metric is one JSON log line. CloudWatch extracts the values from the
log stream, so nothing here talks to AWS.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

from importhub.core.config import settings

logger = logging.getLogger(__name__)

# Path segments that are ids: UUIDs, numbers and remote gids
_ID_SEGMENT = re.compile(
    r"/(?:[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}|\d+)(?=/|$)",
    re.IGNORECASE,
)

# (value, unit) per metric name
MetricValues = dict[str, tuple[float, str]]


class EMFMetrics:
    """Writes EMF documents for one namespace."""

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or settings.metrics_namespace or settings.service_name

    def document(
        self,
        values: MetricValues,
        dimensions: Optional[dict[str, str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        dimensions = dimensions or {}
        directive = {
            "Namespace": self.namespace,
            "Dimensions": [list(dimensions)] if dimensions else [],
            "Metrics": [{"Name": name, "Unit": unit} for name, (_, unit) in values.items()],
        }
        doc: dict[str, Any] = {
            "_aws": {"Timestamp": int(time.time() * 1000), "CloudWatchMetrics": [directive]},
            **(metadata or {}),
            **dimensions,
        }
        doc.update({name: value for name, (value, _) in values.items()})
        return doc

    def emit(
        self,
        values: MetricValues,
        dimensions: Optional[dict[str, str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        # Checked per call so tests and workers can switch it off at runtime
        if not settings.enable_metrics:
            return
        logger.info(json.dumps(self.document(values, dimensions, metadata), default=str))


_emitter: Optional[EMFMetrics] = None


def get_metrics() -> EMFMetrics:
    global _emitter
    if _emitter is None:
        _emitter = EMFMetrics()
    return _emitter


def route_template(path: str) -> str:
    """``/api/v1/import/jobs/<uuid>/run`` -> ``/api/v1/import/jobs/{id}/run``."""
    return _ID_SEGMENT.sub("/{id}", path)


def emit_http_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    **metadata: Any,
) -> None:
    get_metrics().emit(
        {"RequestCount": (1, "Count"), "RequestDuration": (duration_ms, "Milliseconds")},
        dimensions={"Method": method, "Path": route_template(path), "StatusCode": str(status_code)},
        metadata={"request_path": path, **metadata},
    )


def emit_error(
    error_code: str,
    status_code: int,
    path: str,
    method: str,
    **metadata: Any,
) -> None:
    """Count one handled error, split into client and server errors."""
    severity = "server_error" if status_code >= 500 else "client_error"
    get_metrics().emit(
        {"ErrorCount": (1, "Count")},
        dimensions={
            "ErrorCode": error_code,
            "StatusCode": str(status_code),
            "Severity": severity,
            "Path": route_template(path),
        },
        metadata={"request_path": path, "method": method, **metadata},
    )


def emit_business_metric(
    metric_name: str,
    value: float,
    unit: str = "Count",
    category: Optional[str] = None,
    **metadata: Any,
) -> None:
    """Emit an import or connector metric.

    ``entity_type`` and ``provider`` in the metadata become dimensions
    alongside the category, so counts can be split per entity type.
    """
    dimensions = {"Category": category} if category else {}
    for key, dimension in (("entity_type", "EntityType"), ("provider", "Provider")):
        if metadata.get(key):
            dimensions[dimension] = str(metadata[key])
    get_metrics().emit({metric_name: (value, unit)}, dimensions=dimensions, metadata=metadata)
