"""ICMP Echo framing and a single bounded-wait liveness probe."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import platform
import socket
import struct
import subprocess
import time

logger = logging.getLogger(__name__)

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
ICMP_HEADER = struct.Struct("!BBHHH")
DEFAULT_PAYLOAD = b"abcdefghijklmnopqrstuvwabcdefghi"
RECV_BUFFER = 1024


@dataclass(slots=True)
class EchoReply:
    icmp_type: int
    code: int
    identifier: int
    sequence: int
    payload_length: int


@dataclass(slots=True)
class PingResult:
    address: str
    alive: bool
    rtt: float | None = None
    error: str | None = None


def default_identifier() -> int:
    """16-bit echo identifier derived from the current process."""
    return os.getpid() & 0xFFFF


def internet_checksum(data: bytes) -> int:
    """One's complement of the one's-complement sum of all 16-bit words (RFC 1071)."""
    if len(data) % 2:
        data += b"\x00"
    total = 0
    for (word,) in struct.iter_unpack("!H", data):
        total += word
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def build_echo_request(
    identifier: int | None = None,
    sequence: int = 0,
    payload: bytes = DEFAULT_PAYLOAD,
) -> bytes:
    """Build an Echo Request (type 8, code 0) with a valid checksum."""
    ident = (default_identifier() if identifier is None else identifier) & 0xFFFF
    seq = sequence & 0xFFFF
    header = ICMP_HEADER.pack(ICMP_ECHO_REQUEST, 0, 0, ident, seq)
    checksum = internet_checksum(header + payload)
    return ICMP_HEADER.pack(ICMP_ECHO_REQUEST, 0, checksum, ident, seq) + payload


def parse_echo_reply(
    data: bytes,
    *,
    identifier: int | None = None,
    sequence: int | None = None,
) -> EchoReply | None:
    """Return the reply when ``data`` is a plausible Echo Reply, else ``None``.

    Raw sockets deliver the IPv4 header in front of the ICMP message; it is
    stripped using its IHL field. Datagram ICMP sockets on Linux rewrite the
    identifier, so callers pass ``identifier=None`` there.
    """
    packet = bytes(data)
    if len(packet) >= 20 and packet[0] >> 4 == 4:
        header_length = (packet[0] & 0x0F) * 4
        if header_length < 20 or len(packet) < header_length:
            return None
        packet = packet[header_length:]

    if len(packet) < ICMP_HEADER.size:
        return None

    icmp_type, code, _, ident, seq = ICMP_HEADER.unpack_from(packet)
    if icmp_type != ICMP_ECHO_REPLY:
        return None
    if identifier is not None and ident != identifier:
        return None
    if sequence is not None and seq != sequence:
        return None
    return EchoReply(
        icmp_type=icmp_type,
        code=code,
        identifier=ident,
        sequence=seq,
        payload_length=len(packet) - ICMP_HEADER.size,
    )


def open_icmp_socket() -> tuple[socket.socket, bool]:
    """Open an ICMP-capable socket; returns ``(sock, is_raw)``.

    Unprivileged datagram ICMP is tried first, raw sockets second. Raises
    ``OSError`` when neither is permitted.
    """
    try:
        return socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_ICMP), False
    except OSError:
        return socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP), True


def system_ping(address: str, timeout: float = 1.0) -> PingResult:
    """One echo through the platform ``ping`` command, for hosts without ICMP socket rights."""
    if "windows" in platform.system().lower():
        cmd = ["ping", "-n", "1", "-w", str(max(1, int(timeout * 1000))), address]
    else:
        cmd = ["ping", "-c", "1", "-W", str(max(1, int(round(timeout)))), address]

    started = time.monotonic()
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=max(1.0, timeout) + 1.0)
    except subprocess.TimeoutExpired:
        return PingResult(address=address, alive=False, error="timeout")
    except OSError as exc:
        logger.debug("System ping unavailable for %s: %s", address, exc)
        return PingResult(address=address, alive=False, error=f"ping: {exc}")
    if proc.returncode != 0:
        return PingResult(address=address, alive=False, error=f"ping exit {proc.returncode}")
    return PingResult(address=address, alive=True, rtt=time.monotonic() - started)


def ping_host(
    address: str,
    timeout: float = 1.0,
    *,
    identifier: int | None = None,
    sequence: int = 1,
) -> PingResult:
    """Send one Echo Request and wait at most ``timeout`` seconds for the reply."""
    ident = default_identifier() if identifier is None else identifier & 0xFFFF
    try:
        sock, is_raw = open_icmp_socket()
    except OSError as exc:
        logger.debug("ICMP socket unavailable for %s, using system ping: %s", address, exc)
        return system_ping(address, timeout)

    packet = build_echo_request(ident, sequence)
    started = time.monotonic()
    deadline = started + max(0.0, float(timeout))
    with sock:
        try:
            sock.sendto(packet, (address, 0))
        except OSError as exc:
            logger.debug("ICMP send to %s failed: %s", address, exc)
            return PingResult(address=address, alive=False, error=f"send: {exc}")

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return PingResult(address=address, alive=False, error="timeout")
            sock.settimeout(remaining)
            try:
                data, peer = sock.recvfrom(RECV_BUFFER)
            except (TimeoutError, socket.timeout):
                return PingResult(address=address, alive=False, error="timeout")
            except OSError as exc:
                return PingResult(address=address, alive=False, error=f"recv: {exc}")

            if peer and peer[0] != address:
                continue
            reply = parse_echo_reply(
                data,
                identifier=ident if is_raw else None,
                sequence=sequence,
            )
            if reply is not None:
                return PingResult(address=address, alive=True, rtt=time.monotonic() - started)
