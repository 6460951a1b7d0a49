"""Drift detectors built on the snapshot diff engine.

Each detector only picks a key, a comparator and a severity policy:

- device inventory keyed by address (MAC, vendor, hostname changes),
- per-host open port anomalies keyed by address,
- AI service inventory keyed by ``host:port``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from lanscout.models import ChangeEvent, ChangeKind, HostRecord, ServiceFingerprint, Severity, Snapshot

from .diff import DiffResult, FieldChange, SeverityMap, diff_snapshots

ADDRESS_KEY_SPACE = "address"
SERVICE_KEY_SPACE = "host:port"

HIGH_RISK_PORTS = frozenset(
    {21, 22, 23, 25, 53, 135, 139, 445, 1433, 1434, 3306, 3389, 5432, 5900, 6379, 8080, 8888, 27017}
)

INVENTORY_SEVERITY = SeverityMap(
    appeared=Severity.MEDIUM,
    disappeared=Severity.LOW,
    changed=Severity.INFO,
    fields={"mac": Severity.HIGH, "vendor": Severity.MEDIUM, "hostname": Severity.INFO},
)


def host_snapshot(hosts: Iterable[HostRecord], *, taken_at: datetime | None = None) -> Snapshot:
    """Snapshot of online hosts keyed by address."""
    return Snapshot.from_items(
        (host for host in hosts if host.is_online),
        key=lambda host: host.address,
        key_space=ADDRESS_KEY_SPACE,
        taken_at=taken_at,
    )


def service_snapshot(fingerprints: Iterable[ServiceFingerprint], *, taken_at: datetime | None = None) -> Snapshot:
    """Snapshot of online services keyed by ``host:port``."""
    return Snapshot.from_items(
        (item for item in fingerprints if item.is_online),
        key=lambda item: item.key,
        key_space=SERVICE_KEY_SPACE,
        taken_at=taken_at,
    )


def _identity_changes(old: HostRecord, new: HostRecord) -> list[FieldChange]:
    # A value learned for the first time (or missing this cycle) is not drift.
    changes: list[FieldChange] = []
    for name in ("mac", "vendor", "hostname"):
        before, after = getattr(old, name), getattr(new, name)
        if before and after and before != after:
            changes.append(FieldChange(field=name, previous=before, new=after))
    return changes


def _describe_host(kind: ChangeKind, key: str, change: FieldChange | None) -> str:
    if kind is ChangeKind.APPEARED:
        return f"New device {key} joined the network"
    if kind is ChangeKind.DISAPPEARED:
        return f"Device {key} went offline"
    if change is None:
        return f"{key} changed"
    if change.field == "mac":
        return f"MAC address of {key} changed from {change.previous} to {change.new} (possible spoofing)"
    return f"{change.field.capitalize()} of {key} changed from {change.previous} to {change.new}"


def detect_inventory_drift(
    previous: Snapshot | None,
    current: Snapshot,
    *,
    now: datetime | None = None,
) -> DiffResult:
    return diff_snapshots(
        previous,
        current,
        compare=_identity_changes,
        severity=INVENTORY_SEVERITY,
        now=now,
        describe=_describe_host,
    )


def _port_changes(old: HostRecord, new: HostRecord) -> list[FieldChange]:
    before, after = old.open_port_numbers, new.open_port_numbers
    changes: list[FieldChange] = []
    if after - before:
        changes.append(FieldChange(field="ports_opened", previous=sorted(before), new=sorted(after)))
    if before - after:
        changes.append(FieldChange(field="ports_closed", previous=sorted(before), new=sorted(after)))
    return changes


def _delta(field: str | None, previous: Any, new: Any) -> list[int]:
    before, after = set(previous or ()), set(new or ())
    return sorted(after - before if field == "ports_opened" else before - after)


def port_delta(event: ChangeEvent) -> list[int]:
    """Ports that opened (``ports_opened``) or closed (``ports_closed``) in one event."""
    return _delta(event.attribute, event.previous, event.new)


def _port_severity(kind: ChangeKind, key: str, change: FieldChange | None) -> Severity | None:
    if kind is not ChangeKind.ATTRIBUTE_CHANGED or change is None:
        return None
    if change.field == "ports_opened":
        opened = _delta(change.field, change.previous, change.new)
        return Severity.HIGH if HIGH_RISK_PORTS.intersection(opened) else Severity.MEDIUM
    return Severity.LOW


def _describe_ports(kind: ChangeKind, key: str, change: FieldChange | None) -> str:
    if kind is not ChangeKind.ATTRIBUTE_CHANGED or change is None:
        return _describe_host(kind, key, change)
    delta = _delta(change.field, change.previous, change.new)
    listed = ", ".join(map(str, delta))
    if change.field == "ports_opened":
        risky = sorted(HIGH_RISK_PORTS.intersection(delta))
        suffix = f" including high-risk {', '.join(map(str, risky))}" if risky else ""
        return f"{len(delta)} new port(s) opened on {key}: {listed}{suffix}"
    return f"{len(delta)} port(s) closed on {key}: {listed}"


def detect_port_anomalies(
    previous: Snapshot | None,
    current: Snapshot,
    *,
    now: datetime | None = None,
) -> DiffResult:
    return diff_snapshots(
        previous,
        current,
        compare=_port_changes,
        severity=SeverityMap(resolver=_port_severity),
        now=now,
        describe=_describe_ports,
    )


def _service_changes(old: ServiceFingerprint, new: ServiceFingerprint) -> list[FieldChange]:
    changes: list[FieldChange] = []
    if new.model_info is not None and old.model_info != new.model_info:
        changes.append(FieldChange(field="model_info", previous=old.model_info, new=new.model_info))
    if new.version is not None and old.version != new.version:
        changes.append(FieldChange(field="version", previous=old.version, new=new.version))
    if old.is_authorized != new.is_authorized:
        changes.append(FieldChange(field="is_authorized", previous=old.is_authorized, new=new.is_authorized))
    return changes


def detect_ai_service_drift(
    previous: Snapshot | None,
    current: Snapshot,
    *,
    now: datetime | None = None,
) -> DiffResult:
    """Appeared services are critical unless authorized; removals are low."""

    def severity(kind: ChangeKind, key: str, change: FieldChange | None) -> Severity | None:
        if kind is ChangeKind.APPEARED:
            return Severity.INFO if current[key].is_authorized else Severity.CRITICAL
        return None

    def describe(kind: ChangeKind, key: str, change: FieldChange | None) -> str:
        if kind is ChangeKind.APPEARED:
            item: Any = current[key]
            state = "authorized" if item.is_authorized else "UNAUTHORIZED"
            return f"New {state} {item.service_name} detected at {key}"
        if kind is ChangeKind.DISAPPEARED:
            return f"AI service at {key} went offline"
        if change is None:
            return f"AI service at {key} changed"
        if change.field == "is_authorized":
            return f"Service at {key} {'authorized' if change.new else 'authorization revoked'}"
        return f"{change.field.replace('_', ' ').capitalize()} at {key} changed from {change.previous} to {change.new}"

    return diff_snapshots(
        previous,
        current,
        compare=_service_changes,
        severity=SeverityMap(
            appeared=Severity.CRITICAL,
            disappeared=Severity.LOW,
            changed=Severity.INFO,
            fields={"model_info": Severity.MEDIUM, "version": Severity.MEDIUM, "is_authorized": Severity.INFO},
            resolver=severity,
        ),
        now=now,
        describe=describe,
    )
