"""Connect-timeout TCP port scanner and background scan handle."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
import errno
import logging
import queue
import socket
import threading
import time
from typing import Callable, Iterable, Sequence

from lanscout.intel.services import label_for_port
from lanscout.models import PortRecord, PortState, ProbeOutcome

from .fingerprinting import fingerprint_service
from .port_sets import validate_port

logger = logging.getLogger(__name__)

DEFAULT_PORT_TIMEOUT = 0.5
DEFAULT_PORT_DELAY = 0.01

PortProgress = Callable[[float, str, int], None]

COARSE_LABELS: dict[int, str] = {
    21: "FTP", 22: "SSH", 23: "Telnet", 25: "SMTP", 53: "DNS",
    80: "HTTP", 110: "POP3", 139: "NetBIOS", 143: "IMAP", 443: "HTTPS",
    445: "SMB", 3306: "MySQL", 3389: "RDP", 5432: "PostgreSQL",
    5900: "VNC", 8080: "HTTP-Alt",
    31337: "Back Orifice", 12345: "NetBus", 12346: "NetBus",
    1243: "SubSeven", 6667: "IRC", 6668: "IRC", 6669: "IRC",
    27374: "SubSeven", 2001: "Trojan.Latinus", 1999: "BackDoor",
    30100: "NetSphere", 30101: "NetSphere", 30102: "NetSphere",
    5000: "Back Door Setup", 5001: "Sockets de Troie", 5002: "Sockets de Troie",
}

_REFUSED_ERRNOS = {errno.ECONNREFUSED, errno.ECONNRESET}
_TIMEOUT_ERRNOS = {errno.ETIMEDOUT, errno.EAGAIN, errno.EWOULDBLOCK, errno.EINPROGRESS, errno.EALREADY}


@dataclass(slots=True)
class ProbeResult:
    """Single connect attempt produced by :func:`probe_tcp_port`."""

    host: str
    port: int
    outcome: ProbeOutcome
    elapsed: float = 0.0
    error: str | None = None

    @property
    def is_open(self) -> bool:
        return self.outcome is ProbeOutcome.OPEN


@dataclass(slots=True)
class HostScanResult:
    host: str
    ports: list[PortRecord]
    cancelled: bool = False


def coarse_label(port: int) -> str:
    return COARSE_LABELS.get(port, "Unknown")


def _outcome_from_errno(code: int) -> ProbeOutcome:
    if code == 0:
        return ProbeOutcome.OPEN
    if code in _REFUSED_ERRNOS:
        return ProbeOutcome.CLOSED
    if code in _TIMEOUT_ERRNOS:
        return ProbeOutcome.TIMEOUT
    return ProbeOutcome.ERROR


def probe_tcp_port(host: str, port: int, timeout: float = DEFAULT_PORT_TIMEOUT) -> ProbeResult:
    """Attempt one TCP handshake bounded by ``timeout`` seconds.

    Raises ``ValueError`` for an out-of-range port before any socket is made.
    """
    port = validate_port(port)
    started = time.monotonic()
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            code = sock.connect_ex((host, port))
        outcome = _outcome_from_errno(code)
        error = None if code == 0 else errno.errorcode.get(code, str(code))
        return ProbeResult(host=host, port=port, outcome=outcome, elapsed=time.monotonic() - started, error=error)
    except (TimeoutError, socket.timeout):
        return ProbeResult(host=host, port=port, outcome=ProbeOutcome.TIMEOUT, elapsed=time.monotonic() - started, error="timeout")
    except OSError as exc:
        return ProbeResult(host=host, port=port, outcome=ProbeOutcome.ERROR, elapsed=time.monotonic() - started, error=str(exc))


def _valid_ports(ports: Iterable[int]) -> list[int]:
    accepted: list[int] = []
    seen: set[int] = set()
    for port in ports:
        try:
            value = validate_port(port)
        except (TypeError, ValueError):
            logger.warning("Skipping invalid port %r", port)
            continue
        if value not in seen:
            seen.add(value)
            accepted.append(value)
    return accepted


def _port_record(result: ProbeResult, *, grab_banner: bool, timeout: float) -> PortRecord:
    coarse = coarse_label(result.port)
    record = PortRecord(
        port=result.port,
        transport="tcp",
        state=result.outcome.port_state,
        label=label_for_port(result.port, coarse),
    )
    if grab_banner and record.state is PortState.OPEN:
        fingerprint = fingerprint_service(result.host, result.port, timeout=max(timeout, 0.7))
        record.banner = fingerprint.banner or None
        record.version = fingerprint.version or None
    return record


def scan_host_ports(
    host: str,
    ports: Sequence[int],
    *,
    timeout: float = DEFAULT_PORT_TIMEOUT,
    delay: float = DEFAULT_PORT_DELAY,
    cancel_event: threading.Event | None = None,
    on_progress: PortProgress | None = None,
    grab_banners: bool = False,
    probe: Callable[[str, int, float], ProbeResult] | None = None,
) -> HostScanResult:
    """Scan ``ports`` of one host strictly in order, one socket at a time."""
    probe_fn = probe or probe_tcp_port
    targets = _valid_ports(ports)
    records: list[PortRecord] = []
    total = len(targets)

    for index, port in enumerate(targets):
        if cancel_event is not None and cancel_event.is_set():
            return HostScanResult(host=host, ports=records, cancelled=True)

        try:
            result = probe_fn(host, port, timeout)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Probe %s:%s failed: %s", host, port, exc)
            result = ProbeResult(host=host, port=port, outcome=ProbeOutcome.ERROR, error=str(exc))

        records.append(_port_record(result, grab_banner=grab_banners, timeout=timeout))
        if on_progress:
            on_progress((index + 1) / total, host, port)
        if delay > 0 and index + 1 < total:
            time.sleep(delay)

    open_count = sum(1 for record in records if record.is_open)
    logger.debug("Scanned %d port(s) on %s, %d open", total, host, open_count)
    return HostScanResult(host=host, ports=records)


def scan_hosts(
    hosts: Sequence[str],
    ports: Sequence[int],
    *,
    timeout: float = DEFAULT_PORT_TIMEOUT,
    delay: float = DEFAULT_PORT_DELAY,
    host_workers: int = 1,
    cancel_event: threading.Event | None = None,
    on_progress: PortProgress | None = None,
    grab_banners: bool = False,
    probe: Callable[[str, int, float], ProbeResult] | None = None,
) -> dict[str, HostScanResult]:
    """Scan several hosts; hosts may overlap, ports within a host never do."""
    results: dict[str, HostScanResult] = {}
    stop = cancel_event or threading.Event()
    kwargs = {
        "timeout": timeout,
        "delay": delay,
        "cancel_event": stop,
        "on_progress": on_progress,
        "grab_banners": grab_banners,
        "probe": probe,
    }

    if host_workers <= 1:
        for host in hosts:
            if stop.is_set():
                break
            results[host] = scan_host_ports(host, ports, **kwargs)
        return results

    with ThreadPoolExecutor(max_workers=host_workers, thread_name_prefix="port-scan") as pool:
        futures = {pool.submit(scan_host_ports, host, ports, **kwargs): host for host in hosts}
        for future in as_completed(futures):
            host = futures[future]
            try:
                results[host] = future.result()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Port scan of %s failed: %s", host, exc)
                results[host] = HostScanResult(host=host, ports=[])
    return results


@dataclass(slots=True)
class ScanJob:
    """Async scan handle returned by :func:`start_background_scan`."""

    _worker: threading.Thread
    _callback_worker: threading.Thread
    _stop_event: threading.Event

    def cancel(self) -> None:
        """Ask the scan to stop early."""
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for workers to finish; returns ``True`` when both are done."""
        self._worker.join(timeout)
        self._callback_worker.join(timeout)
        return not self._worker.is_alive() and not self._callback_worker.is_alive()


def _callback_consumer(
    result_queue: queue.Queue[HostScanResult | None],
    on_result: Callable[[HostScanResult], None],
    on_complete: Callable[[], None] | None = None,
) -> None:
    """Consume queue entries and run callbacks outside scanner threads."""
    while True:
        result = result_queue.get()
        if result is None:
            result_queue.task_done()
            if on_complete:
                on_complete()
            break

        try:
            on_result(result)
        finally:
            result_queue.task_done()


def start_background_scan(
    hosts: Sequence[str],
    ports: Sequence[int],
    on_result: Callable[[HostScanResult], None],
    *,
    on_complete: Callable[[], None] | None = None,
    timeout: float = DEFAULT_PORT_TIMEOUT,
    delay: float = DEFAULT_PORT_DELAY,
    probe: Callable[[str, int, float], ProbeResult] | None = None,
) -> ScanJob:
    """Scan hosts on a worker thread and stream one result per host via callback."""
    result_queue: queue.Queue[HostScanResult | None] = queue.Queue()
    stop_event = threading.Event()

    callback_worker = threading.Thread(
        target=_callback_consumer,
        args=(result_queue, on_result, on_complete),
        daemon=True,
        name="scan-callback-consumer",
    )

    def worker() -> None:
        try:
            for host in hosts:
                if stop_event.is_set():
                    break
                result = scan_host_ports(
                    host,
                    ports,
                    timeout=timeout,
                    delay=delay,
                    cancel_event=stop_event,
                    probe=probe,
                )
                result_queue.put(result)
        finally:
            result_queue.put(None)

    scan_worker = threading.Thread(target=worker, daemon=True, name="scan-submit-worker")
    callback_worker.start()
    scan_worker.start()

    return ScanJob(_worker=scan_worker, _callback_worker=callback_worker, _stop_event=stop_event)
