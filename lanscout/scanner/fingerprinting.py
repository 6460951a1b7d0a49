"""Banner grabbing for open TCP ports (connect, read, one harmless probe)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
import socket
from typing import Callable

logger = logging.getLogger(__name__)

BANNER_LIMIT = 256


@dataclass(slots=True)
class BannerInfo:
    service: str = "unknown"
    software: str = "unknown"
    version: str = ""
    banner: str = ""
    confidence: str = "low"


def _read(sock: socket.socket, limit: int = BANNER_LIMIT) -> str:
    try:
        payload = sock.recv(limit)
    except (TimeoutError, OSError):
        return ""
    return payload.decode("utf-8", errors="ignore").strip()


def _version(pattern: str, banner: str) -> str:
    match = re.search(pattern, banner, flags=re.IGNORECASE)
    if not match or not match.groups():
        return ""
    return str(match.group(1)).strip()


def _http_head(sock: socket.socket) -> str:
    sock.sendall(b"HEAD / HTTP/1.0\r\nHost: localhost\r\n\r\n")
    return _read(sock)


def _greeting_then(command: bytes) -> Callable[[socket.socket], str]:
    def probe(sock: socket.socket) -> str:
        greeting = _read(sock)
        sock.sendall(command)
        return "\n".join(filter(None, [greeting, _read(sock)]))

    return probe


def _greeting_only(sock: socket.socket) -> str:
    return _read(sock)


def _newline(sock: socket.socket) -> str:
    sock.sendall(b"\r\n")
    return _read(sock)


PROBES: dict[int, Callable[[socket.socket], str]] = {
    21: _greeting_then(b"SYST\r\n"),
    22: _greeting_only,
    23: _greeting_only,
    25: _greeting_then(b"EHLO lanscout.local\r\n"),
    80: _http_head,
    443: _http_head,
    587: _greeting_then(b"EHLO lanscout.local\r\n"),
    3306: _greeting_only,
    5900: _greeting_only,
    8000: _http_head,
    8080: _http_head,
    8888: _http_head,
    11434: _http_head,
}


def identify_banner(port: int, banner: str) -> BannerInfo:
    """Map raw banner text onto a coarse service/software/version triple."""
    lowered = banner.lower()

    if lowered.startswith("ssh-") or "ssh-" in lowered:
        return BannerInfo(
            service="ssh",
            software="openssh" if "openssh" in lowered else "ssh",
            version=_version(r"openssh[_-]([0-9][^\s]+)", banner),
            banner=banner,
            confidence="high",
        )
    if lowered.startswith("rfb "):
        return BannerInfo(service="vnc", software="rfb", version=_version(r"rfb\s+([0-9.]+)", banner), banner=banner, confidence="high")
    if "server:" in lowered or "http/" in lowered:
        software = "http-server"
        for name in ("nginx", "apache", "uvicorn", "gunicorn", "tornado", "werkzeug"):
            if name in lowered:
                software = name
                break
        version = _version(r"(?:nginx|apache|uvicorn|gunicorn|tornado|werkzeug)/([0-9][^\s\r\n;]+)", banner)
        return BannerInfo(service="http", software=software, version=version, banner=banner, confidence="high")
    if "smtp" in lowered:
        return BannerInfo(
            service="smtp",
            software="postfix" if "postfix" in lowered else "exim" if "exim" in lowered else "smtp-server",
            version=_version(r"(?:postfix|exim)[/\s-]?([0-9][^\s\r\n]+)", banner),
            banner=banner,
            confidence="medium",
        )
    if "ftp" in lowered:
        return BannerInfo(
            service="ftp",
            software="vsftpd" if "vsftpd" in lowered else "proftpd" if "proftpd" in lowered else "ftp-server",
            version=_version(r"(?:vsftpd|proftpd)[\s-]?\(?([0-9][^\s\r\n)]+)", banner),
            banner=banner,
            confidence="medium",
        )
    if "mysql" in lowered or port == 3306:
        return BannerInfo(service="mysql", software="mysql", version=_version(r"([0-9]+\.[0-9]+\.[0-9]+)", banner), banner=banner, confidence="medium")
    return BannerInfo(service=f"tcp/{port}", banner=banner)


def fingerprint_service(host: str, port: int, timeout: float = 0.7) -> BannerInfo:
    """Best-effort banner read for an open port; never raises."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect((host, int(port)))
            banner = PROBES.get(int(port), _newline)(sock)
    except OSError as exc:
        logger.debug("Banner grab %s:%s failed: %s", host, port, exc)
        return BannerInfo(service=f"tcp/{port}")
    return identify_banner(int(port), banner)
