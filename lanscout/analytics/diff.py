"""Generic added/removed/changed computation between two keyed snapshots.

The engine keeps no state between calls. Callers own the previous snapshot,
pick the key function, the comparator and the severity mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from lanscout.config import LanScoutError
from lanscout.models import ChangeEvent, ChangeKind, Severity, Snapshot, utc_now


class KeySpaceMismatchError(LanScoutError, ValueError):
    """Raised when two snapshots were keyed by different schemes."""


@dataclass(frozen=True, slots=True)
class FieldChange:
    field: str
    previous: Any
    new: Any


Comparator = Callable[[Any, Any], Iterable[FieldChange]]
SeverityResolver = Callable[[ChangeKind, str, "FieldChange | None"], "Severity | None"]


@dataclass(slots=True)
class SeverityMap:
    """Severity per change kind, with per-field overrides for attribute changes.

    ``resolver`` is consulted first and may return ``None`` to fall back to
    the static mapping.
    """

    appeared: Severity = Severity.MEDIUM
    disappeared: Severity = Severity.LOW
    changed: Severity = Severity.INFO
    fields: Mapping[str, Severity] = field(default_factory=dict)
    resolver: SeverityResolver | None = None

    def severity_for(self, kind: ChangeKind, key: str, change: FieldChange | None = None) -> Severity:
        if self.resolver is not None:
            resolved = self.resolver(kind, key, change)
            if resolved is not None:
                return resolved
        if kind is ChangeKind.APPEARED:
            return self.appeared
        if kind is ChangeKind.DISAPPEARED:
            return self.disappeared
        if change is not None and change.field in self.fields:
            return self.fields[change.field]
        return self.changed


@dataclass(slots=True)
class DiffResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: dict[str, list[FieldChange]] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    events: list[ChangeEvent] = field(default_factory=list)
    first_observation: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def events_of(self, kind: ChangeKind) -> list[ChangeEvent]:
        return [event for event in self.events if event.kind is kind]


def field_comparator(*fields: str) -> Comparator:
    """Comparator over named attributes (or mapping keys) of both items."""

    def read(item: Any, name: str) -> Any:
        if isinstance(item, Mapping):
            return item.get(name)
        return getattr(item, name, None)

    def compare(old: Any, new: Any) -> list[FieldChange]:
        changes: list[FieldChange] = []
        for name in fields:
            before, after = read(old, name), read(new, name)
            if before != after:
                changes.append(FieldChange(field=name, previous=before, new=after))
        return changes

    return compare


def _default_detail(kind: ChangeKind, key: str, change: FieldChange | None) -> str:
    if kind is ChangeKind.APPEARED:
        return f"{key} appeared"
    if kind is ChangeKind.DISAPPEARED:
        return f"{key} disappeared"
    if change is None:
        return f"{key} changed"
    return f"{key}: {change.field} changed from {change.previous!r} to {change.new!r}"


def diff_snapshots(
    old: Snapshot | None,
    new: Snapshot,
    *,
    compare: Comparator,
    severity: SeverityMap | None = None,
    now: datetime | None = None,
    describe: Callable[[ChangeKind, str, FieldChange | None], str] | None = None,
) -> DiffResult:
    """Partition the keys of ``old`` and ``new`` and emit one event per change.

    ``old=None`` is a first observation: every key of ``new`` is added.
    Events come out grouped as appeared, disappeared, changed, with keys
    sorted inside each group.
    """
    mapping = severity or SeverityMap()
    detail = describe or _default_detail
    moment = now or utc_now()

    first_observation = old is None
    if old is None:
        old = Snapshot(key_space=new.key_space, taken_at=moment)
    elif old.key_space != new.key_space:
        raise KeySpaceMismatchError(f"cannot diff key space {old.key_space!r} against {new.key_space!r}")

    old_keys, new_keys = set(old), set(new)
    result = DiffResult(
        added=sorted(new_keys - old_keys),
        removed=sorted(old_keys - new_keys),
        first_observation=first_observation,
    )

    def emit(kind: ChangeKind, key: str, change: FieldChange | None = None) -> None:
        result.events.append(
            ChangeEvent(
                kind=kind,
                key=key,
                severity=mapping.severity_for(kind, key, change),
                attribute=change.field if change else None,
                previous=change.previous if change else None,
                new=change.new if change else None,
                detail=detail(kind, key, change),
                timestamp=moment,
            )
        )

    for key in result.added:
        emit(ChangeKind.APPEARED, key)
    for key in result.removed:
        emit(ChangeKind.DISAPPEARED, key)

    for key in sorted(old_keys & new_keys):
        changes = list(compare(old[key], new[key]))
        if not changes:
            result.unchanged.append(key)
            continue
        result.changed[key] = changes
        for change in changes:
            emit(ChangeKind.ATTRIBUTE_CHANGED, key, change)

    return result
