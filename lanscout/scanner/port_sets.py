"""Named port-set tiers and port list parsing."""

from __future__ import annotations

from typing import Iterable, Sequence

BACKDOOR_PORTS: tuple[int, ...] = (
    31337, 12345, 12346, 1243, 6667, 6668, 6669, 27374,
    2001, 1999, 30100, 30101, 30102, 5000, 5001, 5002,
)

QUICK_PORTS: tuple[int, ...] = (
    21, 22, 23, 25, 80, 110, 143, 443,
    3306, 3389, 5432, 5900, 8080, 8443,
    31337, 12345, 6667,
)

STANDARD_PORTS: tuple[int, ...] = (
    21, 22, 23, 25, 53, 80, 110, 139, 143, 443, 445,
    3306, 3389, 5432, 5900, 8080, 8443,
    *BACKDOOR_PORTS,
    1433, 1434, 27017, 27018, 27019, 6379, 9042, 7000, 7001, 8086,
)

AI_SERVICE_PORTS: tuple[int, ...] = (
    3000, 3001, 4000, 5000, 5001, 5005, 5050, 6333, 6334, 7860, 7861,
    8000, 8001, 8002, 8080, 8081, 8188, 8500, 8501, 8765, 8888, 9090,
    11434, 11435, 19530,
)

HOME_PORTS: tuple[int, ...] = (
    80, 443, 548, 631, 1883, 3283, 3689, 5000, 5009, 5223, 5353,
    5683, 7000, 8080, 8123, 8443, 8883, 49152, 62078,
)

DATABASE_PORTS: tuple[int, ...] = (3306, 5432, 27017, 6379, 1433, 5984, 9042, 7000, 7001)
REMOTE_ACCESS_PORTS: tuple[int, ...] = (22, 23, 3389, 5900, 5901, 5902, 5938, 8022)
WEB_PORTS: tuple[int, ...] = (80, 443, 8000, 8080, 8443, 8888, 3000, 5000)


def _full_ports() -> tuple[int, ...]:
    extra = (
        20, 119, 123, 135, 137, 138, 161, 162, 389, 636,
        1521, 2049, 3690, 5222, 5223, 5269, 5353, 6000, 6001,
        8000, 8008, 8081, 8082, 8888, 9000, 9001, 9090, 9091,
        9200, 9300, 11211, 27015, 27016, 50000, 50001,
    )
    return tuple(sorted(set(STANDARD_PORTS) | set(extra)))


PORT_SETS: dict[str, tuple[int, ...]] = {
    "quick": QUICK_PORTS,
    "standard": STANDARD_PORTS,
    "full": _full_ports(),
    "backdoors": BACKDOOR_PORTS,
    "ai": AI_SERVICE_PORTS,
    "home": HOME_PORTS,
    "databases": DATABASE_PORTS,
    "remote_access": REMOTE_ACCESS_PORTS,
    "web": WEB_PORTS,
}


def validate_port(port: int) -> int:
    value = int(port)
    if value < 1 or value > 65535:
        raise ValueError(f"invalid TCP port: {port!r}")
    return value


def dedupe_ports(ports: Iterable[int]) -> list[int]:
    """Validate and de-duplicate while keeping first-seen order."""
    seen: set[int] = set()
    ordered: list[int] = []
    for port in ports:
        value = validate_port(port)
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def parse_port_spec(spec: str) -> list[int]:
    """Parse ``"22,80,8000-8010"`` into an ordered port list."""
    ports: list[int] = []
    for chunk in str(spec).split(","):
        token = chunk.strip()
        if not token:
            continue
        if "-" in token:
            start_text, end_text = token.split("-", 1)
            start, end = validate_port(int(start_text)), validate_port(int(end_text))
            if end < start:
                raise ValueError(f"descending port range: {token!r}")
            ports.extend(range(start, end + 1))
        else:
            ports.append(int(token))
    return dedupe_ports(ports)


def resolve_port_set(selection: str | Sequence[int]) -> list[int]:
    """Turn a tier name, a port spec string or an explicit list into ports."""
    if isinstance(selection, str):
        text = selection.strip().lower()
        tier = text.replace("-", "_")
        if tier in PORT_SETS:
            return dedupe_ports(PORT_SETS[tier])
        if text and all(char.isdigit() or char in ",- " for char in text):
            return parse_port_spec(text)
        raise ValueError(f"unknown port set: {selection!r}")
    return dedupe_ports(selection)
