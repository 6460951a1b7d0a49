"""Shared records passed between discovery, classification and drift tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Severity(IntEnum):
    """Ordered severity scale shared by findings and change events."""

    INFO = 10
    LOW = 20
    MEDIUM = 30
    HIGH = 40
    CRITICAL = 50

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | int | Severity) -> Severity:
        if isinstance(value, Severity):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"unknown severity: {value!r}") from None


def severity_rank(severity: Severity) -> int:
    """Sort key that places critical first and info last."""
    return -int(severity)


class Category(str, Enum):
    BACKDOOR = "backdoor"
    EXPOSED_SERVICE = "exposed-service"
    WEAK_SECURITY = "weak-security"
    MISCONFIGURATION = "misconfiguration"
    ROGUE_DEVICE = "rogue-device"
    SUSPICIOUS_ACTIVITY = "suspicious-activity"
    DATA_EXPOSURE = "data-exposure"
    DOS_RISK = "dos-risk"


class PortState(str, Enum):
    OPEN = "open"
    CLOSED_FILTERED = "closed/filtered"


class ProbeOutcome(str, Enum):
    """Result variant of a single bounded-wait connect attempt."""

    OPEN = "open"
    CLOSED = "closed"
    TIMEOUT = "timeout"
    ERROR = "error"

    @property
    def port_state(self) -> PortState:
        return PortState.OPEN if self is ProbeOutcome.OPEN else PortState.CLOSED_FILTERED


@dataclass(slots=True)
class PortRecord:
    port: int
    transport: str = "tcp"
    state: PortState = PortState.CLOSED_FILTERED
    label: str = "Unknown"
    banner: str | None = None
    version: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "transport": self.transport,
            "state": self.state.value,
            "label": self.label,
            "banner": self.banner,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PortRecord:
        return cls(
            port=int(payload["port"]),
            transport=str(payload.get("transport") or "tcp"),
            state=PortState(payload.get("state") or PortState.CLOSED_FILTERED.value),
            label=str(payload.get("label") or "Unknown"),
            banner=payload.get("banner"),
            version=payload.get("version"),
        )


@dataclass(slots=True)
class HostRecord:
    """A device on the scanned network; marked offline, never deleted."""

    address: str
    mac: str | None = None
    hostname: str | None = None
    vendor: str | None = None
    ports: list[PortRecord] = field(default_factory=list)
    is_online: bool = True
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    is_known: bool = False

    @property
    def open_ports(self) -> list[PortRecord]:
        return [record for record in self.ports if record.is_open]

    @property
    def open_port_numbers(self) -> set[int]:
        return {record.port for record in self.ports if record.is_open}

    def has_port(self, port: int) -> bool:
        return port in self.open_port_numbers

    @property
    def display_name(self) -> str:
        return self.hostname or self.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "mac": self.mac,
            "hostname": self.hostname,
            "vendor": self.vendor,
            "ports": [record.to_dict() for record in self.ports],
            "is_online": self.is_online,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "is_known": self.is_known,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> HostRecord:
        return cls(
            address=str(payload["address"]),
            mac=payload.get("mac"),
            hostname=payload.get("hostname"),
            vendor=payload.get("vendor"),
            ports=[PortRecord.from_dict(item) for item in payload.get("ports") or []],
            is_online=bool(payload.get("is_online", True)),
            first_seen=parse_timestamp(payload.get("first_seen")),
            last_seen=parse_timestamp(payload.get("last_seen")),
            is_known=bool(payload.get("is_known", False)),
        )


@dataclass(frozen=True, slots=True)
class Finding:
    """One classified security observation tied to a host and optionally a port."""

    severity: Severity
    category: Category
    title: str
    description: str
    host: str
    port: int | None = None
    risk_score: float = 0.0
    remediation: str = ""
    technical_detail: str = ""
    impact: str = ""
    cve_references: tuple[str, ...] = ()
    rule_id: str = ""
    detected_at: datetime = field(default_factory=utc_now, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.label,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "host": self.host,
            "port": self.port,
            "risk_score": self.risk_score,
            "remediation": self.remediation,
            "technical_detail": self.technical_detail,
            "impact": self.impact,
            "cve_references": list(self.cve_references),
            "rule_id": self.rule_id,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(slots=True)
class ServiceFingerprint:
    """An AI-inference (or similar) service observed at ``host:port``."""

    host: str
    port: int
    service_name: str
    service_type: str
    version: str | None = None
    model_info: str | None = None
    is_authorized: bool = False
    is_online: bool = True
    first_seen: datetime | None = None
    last_seen: datetime | None = None

    @property
    def key(self) -> str:
        return service_key(self.host, self.port)

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "service_name": self.service_name,
            "service_type": self.service_type,
            "version": self.version,
            "model_info": self.model_info,
            "is_authorized": self.is_authorized,
            "is_online": self.is_online,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ServiceFingerprint:
        return cls(
            host=str(payload["host"]),
            port=int(payload["port"]),
            service_name=str(payload.get("service_name") or "Unknown AI Service"),
            service_type=str(payload.get("service_type") or "unknown"),
            version=payload.get("version"),
            model_info=payload.get("model_info"),
            is_authorized=bool(payload.get("is_authorized", False)),
            is_online=bool(payload.get("is_online", True)),
            first_seen=parse_timestamp(payload.get("first_seen")),
            last_seen=parse_timestamp(payload.get("last_seen")),
        )


def service_key(host: str, port: int) -> str:
    return f"{host}:{int(port)}"


class ChangeKind(str, Enum):
    APPEARED = "appeared"
    DISAPPEARED = "disappeared"
    ATTRIBUTE_CHANGED = "attribute-changed"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    kind: ChangeKind
    key: str
    severity: Severity
    attribute: str | None = None
    previous: Any = None
    new: Any = None
    detail: str = ""
    timestamp: datetime = field(default_factory=utc_now, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "key": self.key,
            "severity": self.severity.label,
            "field": self.attribute,
            "previous": _jsonable(self.previous),
            "new": _jsonable(self.new),
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


class Snapshot(Mapping[str, Any]):
    """Immutable keyed collection of entities observed at one instant.

    ``key_space`` names the keying scheme (``"address"``, ``"host:port"``...)
    so the diff engine can refuse to compare snapshots keyed differently.
    """

    __slots__ = ("_items", "key_space", "taken_at")

    def __init__(
        self,
        items: Mapping[str, Any] | None = None,
        *,
        key_space: str = "default",
        taken_at: datetime | None = None,
    ) -> None:
        self._items = MappingProxyType(dict(items or {}))
        self.key_space = key_space
        self.taken_at = taken_at or utc_now()

    @classmethod
    def from_items(
        cls,
        items: Iterable[Any],
        *,
        key: Callable[[Any], str],
        key_space: str = "default",
        taken_at: datetime | None = None,
    ) -> Snapshot:
        """Build a snapshot; duplicate keys keep the last item seen."""
        keyed: dict[str, Any] = {}
        for item in items:
            keyed[key(item)] = item
        return cls(keyed, key_space=key_space, taken_at=taken_at)

    def __getitem__(self, key: str) -> Any:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Snapshot(key_space={self.key_space!r}, size={len(self._items)})"


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value or "").strip()
    if not text:
        return None

    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
