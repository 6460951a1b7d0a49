"""Address enumeration and IP helpers for scan planning."""

from __future__ import annotations

import ipaddress
import re
import socket
from typing import Iterator

import psutil

_LEGACY_PREFIX = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.?$")


def parse_subnet(subnet: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    """Parse a CIDR, a bare address or a three-octet prefix such as ``192.168.1``.

    Host bits are tolerated (``192.168.1.17/24`` means ``192.168.1.0/24``).
    Raises ``ValueError`` for anything else.
    """
    text = str(subnet or "").strip()
    if not text:
        raise ValueError("subnet must not be empty")
    if _LEGACY_PREFIX.match(text):
        text = f"{text.rstrip('.')}.0/24"
    return ipaddress.ip_network(text, strict=False)


def enumerate_hosts(subnet: str, *, max_hosts: int | None = None) -> Iterator[str]:
    """Yield candidate host addresses of ``subnet`` in ascending order."""
    network = parse_subnet(subnet)
    if network.num_addresses == 1:
        candidates: Iterator[ipaddress.IPv4Address | ipaddress.IPv6Address] = iter([network.network_address])
    else:
        candidates = network.hosts()

    for index, address in enumerate(candidates):
        if max_hosts is not None and index >= max_hosts:
            break
        yield str(address)


def default_subnet() -> ipaddress.IPv4Network | None:
    """Derive the first non-loopback IPv4 network from local interfaces."""
    for interface_addrs in psutil.net_if_addrs().values():
        for addr in interface_addrs:
            if getattr(addr, "family", None) != socket.AF_INET:
                continue
            if not addr.address or not addr.netmask:
                continue
            ip = ipaddress.ip_address(addr.address)
            if ip.is_loopback or ip.is_link_local:
                continue
            try:
                return ipaddress.ip_network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
    return None
