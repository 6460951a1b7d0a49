"""One scan cycle: discover, scan, classify, diff against the stored inventory."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
import time
from typing import Any, Callable, Sequence

from lanscout.alerts.dispatch import AlertDispatcher
from lanscout.analytics.drift import (
    detect_ai_service_drift,
    detect_inventory_drift,
    detect_port_anomalies,
    host_snapshot,
    service_snapshot,
)
from lanscout.config import LanScoutError, ScanSettings
from lanscout.intel.ai_services import fingerprint_ai_services
from lanscout.intel.threats import NetworkThreatSummary, analyze_network, default_rules
from lanscout.models import ChangeEvent, ChangeKind, Finding, HostRecord, ServiceFingerprint, Severity, utc_now
from lanscout.scanner.discovery import (
    ProbeFn,
    discover_hosts,
    lookup_vendor,
    read_neighbor_table,
    resolve_hostname,
)
from lanscout.scanner.engine import HostScanResult, ProbeResult, scan_hosts
from lanscout.scanner.ip_utils import default_subnet
from lanscout.scanner.port_sets import resolve_port_set
from lanscout.storage.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanRequest:
    subnet: str
    port_set: str | Sequence[int] = "standard"
    liveness_timeout: float = 1.0
    port_timeout: float = 0.5
    port_delay: float = 0.01
    host_workers: int = 1
    ping_workers: int = 1
    grab_banners: bool = False
    query_ai_models: bool = False
    max_hosts: int | None = None

    @classmethod
    def from_settings(cls, settings: ScanSettings, *, subnet: str | None = None, port_set: str | None = None) -> ScanRequest:
        target = subnet or settings.subnet
        if not target:
            detected = default_subnet()
            target = str(detected) if detected is not None else None
        if not target:
            raise LanScoutError("no subnet given and none could be detected from local interfaces")
        return cls(
            subnet=target,
            port_set=port_set or settings.port_set,
            liveness_timeout=settings.liveness_timeout,
            port_timeout=settings.port_timeout,
            port_delay=settings.port_delay,
            host_workers=settings.host_workers,
            ping_workers=settings.ping_workers,
            grab_banners=settings.grab_banners,
            query_ai_models=settings.query_ai_models,
            max_hosts=settings.max_hosts,
        )


@dataclass(frozen=True, slots=True)
class ScanProgress:
    phase: str = "idle"
    fraction: float = 0.0
    current_host: str | None = None
    current_port: int | None = None


@dataclass(slots=True)
class CycleResult:
    hosts: list[HostRecord]
    findings: list[Finding]
    summary: NetworkThreatSummary
    services: list[ServiceFingerprint] = field(default_factory=list)
    change_events: list[ChangeEvent] = field(default_factory=list)
    port_events: list[ChangeEvent] = field(default_factory=list)
    ai_events: list[ChangeEvent] = field(default_factory=list)
    cancelled: bool = False
    first_observation: bool = False
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime = field(default_factory=utc_now)

    @property
    def online_hosts(self) -> list[HostRecord]:
        return [host for host in self.hosts if host.is_online]

    @property
    def all_events(self) -> list[ChangeEvent]:
        return self.change_events + self.port_events + self.ai_events

    def to_summary(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "cancelled": self.cancelled,
            "hosts_online": len(self.online_hosts),
            "hosts_known": len(self.hosts),
            "findings": len(self.findings),
            "risk_score": self.summary.risk_score,
            "risk_level": self.summary.risk_level,
            "change_events": len(self.change_events),
            "port_events": len(self.port_events),
            "ai_events": len(self.ai_events),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.to_summary(),
            "hosts": [host.to_dict() for host in self.online_hosts],
            "threats": self.summary.to_dict(),
            "services": [service.to_dict() for service in self.services],
            "events": [event.to_dict() for event in self.all_events],
        }


class ScanWatchdog:
    """Watches progress heartbeats and cancels a stalled cycle.

    A warning is logged once the heartbeat is older than ``warning_seconds``;
    ``on_kill`` runs once it is older than ``kill_seconds``.
    """

    def __init__(
        self,
        heartbeat: Callable[[], float],
        on_kill: Callable[[], None],
        *,
        warning_seconds: float = 30.0,
        kill_seconds: float = 60.0,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.heartbeat = heartbeat
        self.on_kill = on_kill
        self.warning_seconds = warning_seconds
        self.kill_seconds = kill_seconds
        self.poll_interval = poll_interval
        self.clock = clock
        self.warned = False
        self.killed = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def check(self) -> str:
        """Evaluate the heartbeat once; returns ``ok``, ``warning`` or ``killed``."""
        if self.killed:
            return "killed"
        stalled_for = self.clock() - self.heartbeat()
        if stalled_for >= self.kill_seconds:
            logger.error("Scan stalled for %.0fs, forcing cancellation", stalled_for)
            self.killed = True
            self.on_kill()
            return "killed"
        if stalled_for >= self.warning_seconds:
            if not self.warned:
                logger.warning("Scan has made no progress for %.0fs", stalled_for)
                self.warned = True
            return "warning"
        self.warned = False
        return "ok"

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            if self.check() == "killed":
                break

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="scan-watchdog")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval * 2)
            self._thread = None


class ScanOrchestrator:
    """Runs scan cycles and owns the previous inventory through ``store``."""

    def __init__(
        self,
        store: SnapshotStore,
        settings: ScanSettings | None = None,
        dispatcher: AlertDispatcher | None = None,
        *,
        ping_probe: ProbeFn | None = None,
        port_probe: Callable[[str, int, float], ProbeResult] | None = None,
        neighbor_reader: Callable[[], dict[str, str]] | None = read_neighbor_table,
        hostname_resolver: Callable[[str], str | None] | None = resolve_hostname,
        on_progress: Callable[[ScanProgress], None] | None = None,
        use_watchdog: bool = True,
    ) -> None:
        self.store = store
        self.settings = settings or ScanSettings()
        self.dispatcher = dispatcher or AlertDispatcher()
        self.ping_probe = ping_probe
        self.port_probe = port_probe
        self.neighbor_reader = neighbor_reader
        self.hostname_resolver = hostname_resolver
        self.on_progress = on_progress
        self.use_watchdog = use_watchdog

        self._cancel_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._store_lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._progress = ScanProgress()
        self._heartbeat = time.monotonic()

    @property
    def progress(self) -> ScanProgress:
        with self._progress_lock:
            return self._progress

    @property
    def last_heartbeat(self) -> float:
        with self._progress_lock:
            return self._heartbeat

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def cancel(self) -> None:
        """Request cooperative cancellation; checked between hosts and ports."""
        self._cancel_event.set()

    def _report(self, phase: str, fraction: float, host: str | None = None, port: int | None = None) -> None:
        progress = ScanProgress(phase=phase, fraction=min(1.0, max(0.0, fraction)), current_host=host, current_port=port)
        with self._progress_lock:
            self._progress = progress
            self._heartbeat = time.monotonic()
        if self.on_progress:
            try:
                self.on_progress(progress)
            except Exception:  # noqa: BLE001
                logger.exception("Progress callback failed")

    def mark_known(self, address: str, known: bool = True) -> bool:
        """Flag a stored host as known so it no longer reports as rogue."""
        with self._store_lock:
            hosts = self.store.load_hosts()
            for host in hosts:
                if host.address == address:
                    host.is_known = known
                    self.store.save_hosts(hosts)
                    return True
        return False

    def authorize_service(self, key: str, authorized: bool = True) -> None:
        """Allow-list a host (``"10.0.0.5"``) or one service (``"10.0.0.5:11434"``)."""
        with self._store_lock:
            self.store.set_authorized(key, authorized)

    def run_cycle(self, request: ScanRequest) -> CycleResult:
        if not self._cycle_lock.acquire(blocking=False):
            raise LanScoutError("a scan cycle is already running")
        watchdog: ScanWatchdog | None = None
        try:
            self._cancel_event.clear()
            self._report("starting", 0.0)
            if self.use_watchdog:
                watchdog = ScanWatchdog(
                    lambda: self.last_heartbeat,
                    self.cancel,
                    warning_seconds=self.settings.watchdog_warning_seconds,
                    kill_seconds=self.settings.watchdog_kill_seconds,
                )
                watchdog.start()
            return self._run(request)
        finally:
            if watchdog is not None:
                watchdog.stop()
            self._cycle_lock.release()

    def _run(self, request: ScanRequest) -> CycleResult:
        started_at = utc_now()
        ports = resolve_port_set(request.port_set)
        with self._store_lock:
            previous_hosts = self.store.load_hosts()
            previous_services = self.store.load_services()
            authorized = self.store.authorized_keys()
        first_observation = not previous_hosts

        logger.info("Scan cycle started for %s (%d port(s))", request.subnet, len(ports))
        sweep = discover_hosts(
            request.subnet,
            timeout=request.liveness_timeout,
            workers=request.ping_workers,
            max_hosts=request.max_hosts,
            on_progress=lambda fraction, address: self._report("discovery", fraction, address),
            cancel_event=self._cancel_event,
            probe=self.ping_probe,
        )

        scanned = self._scan_ports(sweep.alive, ports, request)
        hosts = self._build_hosts(sweep.alive, scanned, previous_hosts, started_at)

        self._report("classification", 0.0)
        rules = default_rules(
            rogue_window_seconds=self.settings.rogue_window_seconds,
            authorized_ai_keys=authorized,
            authorized_dhcp_servers=self.settings.authorized_dhcp_servers or None,
        )
        summary = analyze_network(hosts, rules, now=started_at)
        findings = summary.all_findings
        services = fingerprint_ai_services(hosts, authorized, query_models=request.query_ai_models)

        cancelled = self._cancel_event.is_set() or sweep.cancelled
        result = CycleResult(
            hosts=hosts,
            findings=findings,
            summary=summary,
            services=services,
            cancelled=cancelled,
            first_observation=first_observation,
            started_at=started_at,
        )
        if cancelled:
            logger.warning("Scan cycle cancelled after %d host(s); stored inventory left unchanged", len(hosts))
            result.finished_at = utc_now()
            self._report("cancelled", 1.0)
            return result

        self._report("diff", 0.0)
        previous_snapshot = None if first_observation else host_snapshot(previous_hosts)
        current_snapshot = host_snapshot(hosts, taken_at=started_at)
        inventory = detect_inventory_drift(previous_snapshot, current_snapshot, now=started_at)
        anomalies = detect_port_anomalies(previous_snapshot, current_snapshot, now=started_at)
        ai_drift = detect_ai_service_drift(
            None if first_observation else service_snapshot(previous_services),
            service_snapshot(services, taken_at=started_at),
            now=started_at,
        )
        result.change_events = inventory.events
        result.port_events = anomalies.events_of(ChangeKind.ATTRIBUTE_CHANGED)
        result.ai_events = ai_drift.events
        result.hosts = _merge_hosts(hosts, previous_hosts)

        with self._store_lock:
            self.store.save_hosts(result.hosts)
            self.store.save_services(_merge_services(services, previous_services))
            record_history = getattr(self.store, "record_scan_history", None)
            result.finished_at = utc_now()
            if record_history is not None:
                record_history(result.to_summary())

        self.dispatcher.dispatch(findings, result.all_events)
        self._report("complete", 1.0)
        logger.info(
            "Scan cycle finished: %d online, %d finding(s), %d change event(s), risk %s",
            len(hosts),
            len(findings),
            len(result.all_events),
            summary.risk_level,
        )
        return result

    def _scan_ports(self, alive: list[str], ports: list[int], request: ScanRequest) -> dict[str, HostScanResult]:
        if not alive or not ports:
            return {}
        total = len(alive) * len(ports)
        done = 0
        counter_lock = threading.Lock()

        def advance(_fraction: float, host: str, port: int) -> None:
            nonlocal done
            with counter_lock:
                done += 1
                fraction = done / total
            self._report("ports", fraction, host, port)

        self._report("ports", 0.0)
        return scan_hosts(
            alive,
            ports,
            timeout=request.port_timeout,
            delay=request.port_delay,
            host_workers=request.host_workers,
            cancel_event=self._cancel_event,
            on_progress=advance,
            grab_banners=request.grab_banners,
            probe=self.port_probe,
        )

    def _build_hosts(
        self,
        alive: list[str],
        scanned: dict[str, HostScanResult],
        previous_hosts: list[HostRecord],
        now: datetime,
    ) -> list[HostRecord]:
        known = {host.address: host for host in previous_hosts}
        neighbors: dict[str, str] = {}
        if alive and self.neighbor_reader is not None and not self._cancel_event.is_set():
            try:
                neighbors = self.neighbor_reader()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Neighbor table unavailable: %s", exc)

        hosts: list[HostRecord] = []
        for index, address in enumerate(alive):
            scan = scanned.get(address)
            if scan is None and self._cancel_event.is_set():
                continue
            previous = known.get(address)
            self._report("enrichment", index / len(alive), address)
            mac = neighbors.get(address) or (previous.mac if previous else None)
            hostname = None
            if self.hostname_resolver is not None and not self._cancel_event.is_set():
                hostname = self.hostname_resolver(address)
            hosts.append(
                HostRecord(
                    address=address,
                    mac=mac,
                    hostname=hostname or (previous.hostname if previous else None),
                    vendor=lookup_vendor(mac) or (previous.vendor if previous else None),
                    ports=list(scan.ports) if scan is not None else [],
                    is_online=True,
                    first_seen=(previous.first_seen if previous and previous.first_seen else now),
                    last_seen=now,
                    is_known=previous.is_known if previous else False,
                )
            )
        return hosts


def _merge_hosts(current: list[HostRecord], previous: list[HostRecord]) -> list[HostRecord]:
    """Current hosts plus every previously stored host, the latter marked offline."""
    seen = {host.address for host in current}
    merged = list(current)
    for host in previous:
        if host.address in seen:
            continue
        host.is_online = False
        merged.append(host)
    return merged


def _merge_services(current: list[ServiceFingerprint], previous: list[ServiceFingerprint]) -> list[ServiceFingerprint]:
    by_key = {service.key: service for service in previous}
    merged: list[ServiceFingerprint] = []
    for service in current:
        earlier = by_key.pop(service.key, None)
        if earlier is not None and earlier.first_seen is not None:
            service.first_seen = earlier.first_seen
        if earlier is not None and service.model_info is None:
            service.model_info = earlier.model_info
        merged.append(service)
    for service in by_key.values():
        service.is_online = False
        merged.append(service)
    return merged


def alert_threshold(settings: ScanSettings) -> Severity:
    return Severity.parse(settings.alert_threshold)
