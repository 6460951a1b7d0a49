"""Analytics utilities: snapshot diffing and drift detection."""

from .diff import DiffResult, FieldChange, KeySpaceMismatchError, SeverityMap, diff_snapshots, field_comparator
from .drift import (
    detect_ai_service_drift,
    detect_inventory_drift,
    detect_port_anomalies,
    host_snapshot,
    port_delta,
    service_snapshot,
)

__all__ = [
    "DiffResult",
    "FieldChange",
    "KeySpaceMismatchError",
    "SeverityMap",
    "detect_ai_service_drift",
    "detect_inventory_drift",
    "detect_port_anomalies",
    "diff_snapshots",
    "field_comparator",
    "host_snapshot",
    "port_delta",
    "service_snapshot",
]
