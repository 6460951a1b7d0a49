"""Persistence of the previous host and service inventory between scan cycles."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, Iterable, Protocol

from lanscout.models import HostRecord, ServiceFingerprint

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS hosts (
        address TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS services (
        service_key TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS authorized_services (
        service_key TEXT PRIMARY KEY,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        summary TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
)


class SnapshotStore(Protocol):
    """Where the orchestrator keeps the previous cycle's inventory."""

    def load_hosts(self) -> list[HostRecord]: ...

    def save_hosts(self, hosts: Iterable[HostRecord]) -> None: ...

    def load_services(self) -> list[ServiceFingerprint]: ...

    def save_services(self, services: Iterable[ServiceFingerprint]) -> None: ...

    def authorized_keys(self) -> set[str]: ...

    def set_authorized(self, key: str, authorized: bool = True) -> None: ...


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemorySnapshotStore:
    """In-process store; copies on the way in and out."""

    def __init__(self) -> None:
        self._hosts: dict[str, dict[str, Any]] = {}
        self._services: dict[str, dict[str, Any]] = {}
        self._authorized: set[str] = set()
        self._history: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def load_hosts(self) -> list[HostRecord]:
        with self._lock:
            return [HostRecord.from_dict(payload) for payload in self._hosts.values()]

    def save_hosts(self, hosts: Iterable[HostRecord]) -> None:
        with self._lock:
            self._hosts = {host.address: host.to_dict() for host in hosts}

    def load_services(self) -> list[ServiceFingerprint]:
        with self._lock:
            return [ServiceFingerprint.from_dict(payload) for payload in self._services.values()]

    def save_services(self, services: Iterable[ServiceFingerprint]) -> None:
        with self._lock:
            self._services = {service.key: service.to_dict() for service in services}

    def authorized_keys(self) -> set[str]:
        with self._lock:
            return set(self._authorized)

    def set_authorized(self, key: str, authorized: bool = True) -> None:
        with self._lock:
            if authorized:
                self._authorized.add(key)
            else:
                self._authorized.discard(key)

    def record_scan_history(self, summary: dict[str, Any]) -> None:
        with self._lock:
            self._history.append({"summary": dict(summary), "created_at": _stamp()})

    def list_scan_history(self, limit: int = 25) -> list[dict[str, Any]]:
        with self._lock:
            return list(reversed(self._history))[: max(1, int(limit))]


class SqliteSnapshotStore:
    """SQLite store with one JSON payload per host and per service.

    ``save_hosts``/``save_services`` replace the whole table inside one
    transaction, so readers never observe a half-written inventory.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        for statement in SCHEMA:
            conn.execute(statement)
        return conn

    def _load(self, table: str) -> list[dict[str, Any]]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(f"SELECT payload FROM {table}").fetchall()
        payloads: list[dict[str, Any]] = []
        for (payload,) in rows:
            try:
                decoded = json.loads(str(payload))
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt row in %s", table)
                continue
            if isinstance(decoded, dict):
                payloads.append(decoded)
        return payloads

    def _replace(self, table: str, key_column: str, rows: list[tuple[str, dict[str, Any]]]) -> None:
        stamp = _stamp()
        with self._lock, self._connect() as conn:
            conn.execute(f"DELETE FROM {table}")
            conn.executemany(
                f"""
                INSERT INTO {table}({key_column}, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT({key_column}) DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at
                """,
                [(key, json.dumps(payload, ensure_ascii=False), stamp) for key, payload in rows],
            )

    def load_hosts(self) -> list[HostRecord]:
        hosts: list[HostRecord] = []
        for payload in self._load("hosts"):
            try:
                hosts.append(HostRecord.from_dict(payload))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable host record: %s", exc)
        return hosts

    def save_hosts(self, hosts: Iterable[HostRecord]) -> None:
        self._replace("hosts", "address", [(host.address, host.to_dict()) for host in hosts])

    def load_services(self) -> list[ServiceFingerprint]:
        services: list[ServiceFingerprint] = []
        for payload in self._load("services"):
            try:
                services.append(ServiceFingerprint.from_dict(payload))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable service record: %s", exc)
        return services

    def save_services(self, services: Iterable[ServiceFingerprint]) -> None:
        self._replace("services", "service_key", [(service.key, service.to_dict()) for service in services])

    def authorized_keys(self) -> set[str]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT service_key FROM authorized_services").fetchall()
        return {str(row[0]) for row in rows}

    def set_authorized(self, key: str, authorized: bool = True) -> None:
        with self._lock, self._connect() as conn:
            if authorized:
                conn.execute(
                    "INSERT INTO authorized_services(service_key, created_at) VALUES (?, ?) ON CONFLICT(service_key) DO NOTHING",
                    (key, _stamp()),
                )
            else:
                conn.execute("DELETE FROM authorized_services WHERE service_key = ?", (key,))

    def record_scan_history(self, summary: dict[str, Any]) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO scan_history(summary, created_at) VALUES (?, ?)",
                (json.dumps(summary, ensure_ascii=False), _stamp()),
            )

    def list_scan_history(self, limit: int = 25) -> list[dict[str, Any]]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT summary, created_at FROM scan_history ORDER BY id DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        history: list[dict[str, Any]] = []
        for summary, created_at in rows:
            try:
                decoded = json.loads(str(summary))
            except json.JSONDecodeError:
                decoded = {"raw": str(summary)}
            history.append({"summary": decoded, "created_at": created_at})
        return history
