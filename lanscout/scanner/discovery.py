"""Host reachability sweep plus neighbor-table, vendor and hostname enrichment."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import ipaddress
import logging
import re
import socket
import subprocess
import threading
from typing import Callable, Iterable

from .icmp import PingResult, ping_host
from .ip_utils import enumerate_hosts

logger = logging.getLogger(__name__)

ProbeFn = Callable[[str, float], PingResult]
SweepProgress = Callable[[float, str], None]

VENDOR_BY_OUI = {
    "B8:27:EB": "Raspberry Pi Foundation",
    "DC:A6:32": "Raspberry Pi Trading",
    "44:65:0D": "Amazon Technologies",
    "FC:A1:83": "Google",
    "00:17:88": "Philips Lighting",
    "00:1A:11": "Google Nest",
    "A4:77:33": "LG Electronics",
    "3C:5A:B4": "Google",
    "00:1D:A5": "Samsung Electronics",
    "F0:9F:C2": "Ubiquiti Networks",
    "24:5A:4C": "Ubiquiti Networks",
    "00:1E:C2": "Apple",
    "A4:83:E7": "Apple",
    "00:0C:29": "VMware",
    "00:50:56": "VMware",
    "08:00:27": "Oracle VirtualBox",
}


@dataclass(slots=True)
class SweepResult:
    """Addresses that answered, plus how far the sweep got."""

    alive: list[str] = field(default_factory=list)
    probed: int = 0
    total: int = 0
    cancelled: bool = False

    @property
    def fraction(self) -> float:
        return 1.0 if self.total == 0 else self.probed / self.total


def _safe_probe(probe: ProbeFn, address: str, timeout: float) -> PingResult:
    try:
        return probe(address, timeout)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Liveness probe for %s failed: %s", address, exc)
        return PingResult(address=address, alive=False, error=str(exc))


def _address_key(address: str) -> tuple[int, int | str]:
    try:
        return (0, int(ipaddress.ip_address(address)))
    except ValueError:
        return (1, address)


def sweep(
    addresses: Iterable[str],
    *,
    timeout: float = 1.0,
    workers: int = 1,
    on_progress: SweepProgress | None = None,
    cancel_event: threading.Event | None = None,
    probe: ProbeFn | None = None,
) -> SweepResult:
    """Probe every address for liveness.

    ``workers == 1`` probes strictly one host at a time; larger values use a
    bounded thread pool. Every probe keeps its own ``timeout``. Cancellation
    is honoured between hosts and the partial result is returned.
    """
    probe_fn = probe or ping_host
    targets = list(addresses)
    result = SweepResult(total=len(targets))
    stop = cancel_event or threading.Event()

    def record(ping: PingResult) -> None:
        result.probed += 1
        if ping.alive:
            result.alive.append(ping.address)
        if on_progress:
            on_progress(result.fraction, ping.address)

    if workers <= 1:
        for address in targets:
            if stop.is_set():
                result.cancelled = True
                break
            record(_safe_probe(probe_fn, address, timeout))
    else:
        def guarded(address: str) -> PingResult | None:
            if stop.is_set():
                return None
            return _safe_probe(probe_fn, address, timeout)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lan-ping") as pool:
            futures = [pool.submit(guarded, address) for address in targets]
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                ping = future.result()
                if ping is not None:
                    record(ping)
                if stop.is_set() and not result.cancelled:
                    result.cancelled = True
                    for pending in futures:
                        pending.cancel()

    if stop.is_set() and result.probed < result.total:
        result.cancelled = True
    result.alive.sort(key=_address_key)
    return result


def discover_hosts(
    subnet: str,
    *,
    timeout: float = 1.0,
    workers: int = 1,
    max_hosts: int | None = None,
    on_progress: SweepProgress | None = None,
    cancel_event: threading.Event | None = None,
    probe: ProbeFn | None = None,
) -> SweepResult:
    """Enumerate ``subnet`` and sweep it; unreachable hosts are simply absent."""
    addresses = list(enumerate_hosts(subnet, max_hosts=max_hosts))
    logger.info("Liveness sweep of %s (%d candidates, %d worker(s))", subnet, len(addresses), max(1, workers))
    result = sweep(
        addresses,
        timeout=timeout,
        workers=workers,
        on_progress=on_progress,
        cancel_event=cancel_event,
        probe=probe,
    )
    logger.info("Liveness sweep of %s finished: %d alive of %d probed", subnet, len(result.alive), result.probed)
    return result


def normalize_mac(value: str | None) -> str:
    if not value:
        return ""
    compact = re.sub(r"[^0-9A-Fa-f]", "", value)
    if len(compact) != 12:
        return value.upper().strip()
    return ":".join(compact[index : index + 2] for index in range(0, 12, 2)).upper()


def lookup_vendor(mac: str | None) -> str | None:
    normalized = normalize_mac(mac)
    if not normalized:
        return None
    return VENDOR_BY_OUI.get(normalized[:8])


def parse_neighbor_lines(lines: Iterable[str]) -> dict[str, str]:
    """Extract ``ip -> MAC`` pairs from ``ip neigh`` or ``arp -a`` output."""
    discovered: dict[str, str] = {}
    for line in lines:
        if "INCOMPLETE" in line.upper() or "FAILED" in line.upper():
            continue
        match = re.search(r"(\d+\.\d+\.\d+\.\d+).*?(([0-9a-fA-F]{1,2}[:-]){5}[0-9a-fA-F]{1,2})", line)
        if not match:
            continue
        ip = match.group(1)
        raw_mac = match.group(2)
        octets = re.split(r"[:-]", raw_mac)
        discovered[ip] = normalize_mac("".join(octet.zfill(2) for octet in octets))
    return discovered


def read_neighbor_table() -> dict[str, str]:
    """Read the OS neighbor (ARP) cache; empty when no tool is available."""
    commands: list[list[str]] = [["ip", "neigh", "show"], ["arp", "-a"]]
    for cmd in commands:
        try:
            proc = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired):
            continue
        if proc.returncode != 0 and not proc.stdout:
            continue
        parsed = parse_neighbor_lines((proc.stdout or "").splitlines())
        if parsed:
            return parsed
    return {}


def resolve_hostname(address: str) -> str | None:
    try:
        return socket.gethostbyaddr(address)[0]
    except (socket.herror, socket.gaierror, OSError):
        return None
