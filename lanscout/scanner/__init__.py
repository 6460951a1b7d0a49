"""Scanner package: address enumeration, ICMP liveness sweep and TCP port scanning."""

from .discovery import SweepResult, discover_hosts, read_neighbor_table, sweep
from .engine import HostScanResult, ProbeResult, ScanJob, probe_tcp_port, scan_host_ports, scan_hosts, start_background_scan
from .icmp import PingResult, build_echo_request, internet_checksum, parse_echo_reply, ping_host, system_ping
from .ip_utils import default_subnet, enumerate_hosts
from .port_sets import PORT_SETS, parse_port_spec, resolve_port_set

__all__ = [
    "HostScanResult",
    "PORT_SETS",
    "PingResult",
    "ProbeResult",
    "ScanJob",
    "SweepResult",
    "build_echo_request",
    "default_subnet",
    "discover_hosts",
    "enumerate_hosts",
    "internet_checksum",
    "parse_echo_reply",
    "parse_port_spec",
    "ping_host",
    "probe_tcp_port",
    "read_neighbor_table",
    "resolve_port_set",
    "scan_host_ports",
    "scan_hosts",
    "start_background_scan",
    "sweep",
    "system_ping",
]
