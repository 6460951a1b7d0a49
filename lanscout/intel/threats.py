"""Ordered, independent threat rules applied to one host record at a time.

Every rule is evaluated for every host. A rule fires at most once per host
(host-level rules) or once per matching open port (port-level rules), and
overlapping rules are all reported. Results are sorted by severity with
ties kept in rule order, so the same host and rule set always produce the
same list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Collection, Iterable, Sequence

from lanscout.models import Category, Finding, HostRecord, PortRecord, Severity, severity_rank, utc_now
from lanscout.scanner.port_sets import BACKDOOR_PORTS

from .ai_services import UNKNOWN_AI_SERVICE, is_authorized, lookup_ai_service

logger = logging.getLogger(__name__)

DEFAULT_ROGUE_WINDOW_SECONDS = 3600.0

REMOTE_ACCESS_SET = frozenset({22, 23, 3389, 5900, 5901, 5902, 5800, 5801, 5802})
DATABASE_SET = frozenset({3306, 5432, 1433, 1434, 27017, 27018, 27019, 6379, 9042, 7000, 7001, 8086})
BACKDOOR_SET = frozenset(BACKDOOR_PORTS)
REMOTE_ACCESS_THRESHOLD = 2

BACKDOOR_NAMES: dict[int, str] = {
    31337: "Back Orifice trojan",
    12345: "NetBus trojan",
    12346: "NetBus trojan",
    1243: "SubSeven trojan",
    6667: "IRC botnet command & control",
    6668: "IRC botnet command & control",
    6669: "IRC botnet command & control",
    27374: "SubSeven trojan",
    2001: "Trojan.Latinus",
    1999: "BackDoor trojan",
    30100: "NetSphere trojan",
    30101: "NetSphere trojan",
    30102: "NetSphere trojan",
    5000: "Back Door Setup/Sockets de Troie",
    5001: "Back Door Setup/Sockets de Troie",
    5002: "Back Door Setup/Sockets de Troie",
}

AI_RISK_SCORES: dict[Severity, float] = {
    Severity.CRITICAL: 9.0,
    Severity.HIGH: 7.5,
    Severity.MEDIUM: 5.0,
    Severity.LOW: 3.0,
    Severity.INFO: 0.0,
}


@dataclass(frozen=True, slots=True)
class FindingTemplate:
    """Fixed part of a finding; text fields are ``str.format`` templates."""

    severity: Severity
    category: Category
    title: str
    description: str
    risk_score: float
    remediation: str
    technical_detail: str
    impact: str
    cve_references: tuple[str, ...] = ()

    def render(self, rule_id: str, host: HostRecord, port: int | None, now: datetime, **values: Any) -> Finding:
        context = {
            "address": host.address,
            "display": host.display_name,
            "mac": host.mac or "Unknown",
            "port": port,
            **values,
        }
        return Finding(
            severity=values.get("severity", self.severity),
            category=self.category,
            title=self.title.format(**context),
            description=self.description.format(**context),
            host=host.address,
            port=port,
            risk_score=values.get("risk_score", self.risk_score),
            remediation=self.remediation.format(**context),
            technical_detail=self.technical_detail.format(**context),
            impact=self.impact.format(**context),
            cve_references=self.cve_references,
            rule_id=rule_id,
            detected_at=now,
        )


class ThreatRule:
    """Base rule: a named predicate that yields findings for one host."""

    rule_id: str
    requires: tuple[str, ...]

    def applies_to(self, host: HostRecord) -> bool:
        return all(getattr(host, name, None) not in (None, "") for name in self.requires)

    def evaluate(self, host: HostRecord, now: datetime | None = None) -> list[Finding]:
        raise NotImplementedError


@dataclass(slots=True)
class PortRule(ThreatRule):
    """Fires once for every open port matching ``matches``."""

    rule_id: str
    template: FindingTemplate
    matches: Callable[[PortRecord, HostRecord], bool]
    extra: Callable[[PortRecord, HostRecord], dict[str, Any]] | None = None
    requires: tuple[str, ...] = ("address",)

    def evaluate(self, host: HostRecord, now: datetime | None = None) -> list[Finding]:
        moment = now or utc_now()
        findings: list[Finding] = []
        for record in host.open_ports:
            if not self.matches(record, host):
                continue
            values = {
                "label": record.label,
                "banner": record.banner or "none",
                "version": record.version or "unknown",
            }
            if self.extra:
                values.update(self.extra(record, host))
            findings.append(self.template.render(self.rule_id, host, record.port, moment, **values))
        return findings


@dataclass(slots=True)
class HostRule(ThreatRule):
    """Fires at most once per host when ``matches`` holds."""

    rule_id: str
    template: FindingTemplate
    matches: Callable[[HostRecord, datetime], bool]
    extra: Callable[[HostRecord], dict[str, Any]] | None = None
    requires: tuple[str, ...] = ("address",)

    def evaluate(self, host: HostRecord, now: datetime | None = None) -> list[Finding]:
        moment = now or utc_now()
        if not self.matches(host, moment):
            return []
        values = self.extra(host) if self.extra else {}
        return [self.template.render(self.rule_id, host, None, moment, **values)]


def _is_rogue(window_seconds: float) -> Callable[[HostRecord, datetime], bool]:
    def check(host: HostRecord, now: datetime) -> bool:
        if host.is_known or host.first_seen is None:
            return False
        return (now - host.first_seen).total_seconds() < window_seconds

    return check


def _remote_access_ports(host: HostRecord) -> list[PortRecord]:
    return [record for record in host.open_ports if record.port in REMOTE_ACCESS_SET]


ROGUE_DEVICE = FindingTemplate(
    severity=Severity.CRITICAL,
    category=Category.ROGUE_DEVICE,
    title="Rogue Device Detected",
    description="Unknown device detected on network for the first time",
    risk_score=9.0,
    remediation="Investigate device immediately. If unauthorized, isolate from network and identify source. Update MAC allow-list if legitimate.",
    technical_detail="Device MAC: {mac}, First seen: {first_seen}, Not in known devices list",
    impact="Potential unauthorized access to network. Could be attacker device, compromised host, or legitimate new device.",
)

BACKDOOR_PORT = FindingTemplate(
    severity=Severity.CRITICAL,
    category=Category.BACKDOOR,
    title="Known Backdoor Port Detected",
    description="Port {port} is associated with known backdoor trojans/malware",
    risk_score=10.0,
    remediation="IMMEDIATE ACTION REQUIRED: Isolate device from network. Run full malware scan. Reimage system if compromised. Investigate source of infection.",
    technical_detail="Port {port} is commonly used by: {trojan}. Service banner: {banner}",
    impact="System likely compromised. Attacker may have full control. Risk of data theft, lateral movement, and persistent access.",
)

TELNET = FindingTemplate(
    severity=Severity.CRITICAL,
    category=Category.WEAK_SECURITY,
    title="Telnet Service Enabled",
    description="Unencrypted remote access protocol detected",
    risk_score=9.0,
    remediation="Disable Telnet immediately. Use SSH instead. If SSH is not available, use encrypted VPN tunnel.",
    technical_detail="Telnet transmits all data including passwords in clear text. Vulnerable to man-in-the-middle attacks and eavesdropping.",
    impact="Credentials can be intercepted. System can be compromised. No confidentiality or integrity protection.",
    cve_references=("CVE-2020-15778", "CVE-2019-19521"),
)

FTP = FindingTemplate(
    severity=Severity.HIGH,
    category=Category.WEAK_SECURITY,
    title="FTP Service Detected",
    description="Potentially insecure file transfer protocol",
    risk_score=7.5,
    remediation="Replace with SFTP or FTPS. Disable anonymous access. Use strong authentication.",
    technical_detail="FTP transmits credentials in clear text. Check if anonymous access is enabled. Version: {version}",
    impact="Credentials may be intercepted. Possible anonymous file access. Risk of unauthorized data access or modification.",
    cve_references=("CVE-2021-41773",),
)

HTTP_ONLY = FindingTemplate(
    severity=Severity.MEDIUM,
    category=Category.WEAK_SECURITY,
    title="HTTP Without HTTPS",
    description="Web server accessible over unencrypted HTTP only",
    risk_score=5.3,
    remediation="Enable HTTPS with a valid TLS certificate. Redirect HTTP to HTTPS. Disable HTTP if possible.",
    technical_detail="HTTP port 80 open, no HTTPS port 443 detected. All traffic sent in clear text.",
    impact="Data transmitted in clear text. Risk of eavesdropping, session hijacking and man-in-the-middle attacks.",
)

VNC = FindingTemplate(
    severity=Severity.HIGH,
    category=Category.BACKDOOR,
    title="VNC Remote Desktop Exposed",
    description="VNC service accessible from network",
    risk_score=8.0,
    remediation="Place VNC behind VPN or SSH tunnel. Use a strong password. Enable encryption.",
    technical_detail="VNC uses weak encryption by default. Often targeted by automated scanners. Display number: {display_number}",
    impact="Remote desktop access available to attackers. Risk of unauthorized screen capture, keyboard monitoring and system control.",
    cve_references=("CVE-2020-14404", "CVE-2019-15681"),
)

RDP = FindingTemplate(
    severity=Severity.HIGH,
    category=Category.BACKDOOR,
    title="RDP Service Exposed to Network",
    description="Remote Desktop Protocol accessible from network",
    risk_score=8.0,
    remediation="Place RDP behind VPN. Enable Network Level Authentication (NLA). Use strong passwords or certificate-based auth. Enable account lockout policies.",
    technical_detail="RDP is frequently targeted by ransomware and automated attacks. BlueKeep and other critical vulnerabilities affect unpatched systems.",
    impact="High-value target for attackers. Risk of brute-force attacks, ransomware deployment and complete system compromise.",
    cve_references=("CVE-2019-0708", "CVE-2020-0609", "CVE-2020-0610"),
)

SMB = FindingTemplate(
    severity=Severity.HIGH,
    category=Category.EXPOSED_SERVICE,
    title="SMB File Sharing Exposed",
    description="Windows file sharing accessible from network",
    risk_score=7.5,
    remediation="Disable SMBv1. Restrict SMB access to specific subnets. Enable SMB signing. Apply latest patches.",
    technical_detail="SMB port {port} exposed. EternalBlue (MS17-010) and SMBGhost vulnerabilities affect unpatched systems.",
    impact="Risk of ransomware, lateral movement, credential theft and unauthorized file access.",
    cve_references=("CVE-2017-0144", "CVE-2020-0796"),
)

MULTIPLE_REMOTE_ACCESS = FindingTemplate(
    severity=Severity.HIGH,
    category=Category.SUSPICIOUS_ACTIVITY,
    title="Multiple Remote Access Ports Open",
    description="{remote_count} remote access services detected",
    risk_score=7.5,
    remediation="Disable unnecessary remote access services. Use VPN for remote access. Implement strong authentication.",
    technical_detail="Open remote access ports: {remote_ports}",
    impact="Increased attack surface. Multiple entry points for attackers. Higher risk of brute-force attacks.",
)

EXPOSED_DATABASE = FindingTemplate(
    severity=Severity.CRITICAL,
    category=Category.DATA_EXPOSURE,
    title="Exposed Database Service",
    description="{label} database accessible from network",
    risk_score=9.8,
    remediation="Bind database to localhost only. Use firewall to restrict access. Implement authentication and encryption.",
    technical_detail="Service: {label}, Port: {port}, Protocol: tcp",
    impact="Direct database access from network. Risk of data breach, unauthorized data access or data destruction.",
)

UNAUTHORIZED_AI = FindingTemplate(
    severity=Severity.MEDIUM,
    category=Category.SUSPICIOUS_ACTIVITY,
    title="Unauthorized AI Service",
    description="{service_name} is reachable on port {port} and is not on the allow-list",
    risk_score=5.0,
    remediation="Confirm the owner of this service. Authorize it explicitly or shut it down. Restrict access with authentication or a firewall.",
    technical_detail="Service type: {service_type}, Port: {port}, Banner: {banner}",
    impact="Unsanctioned model endpoints can leak data, run arbitrary workloads or expose code execution.",
)

ROGUE_DHCP = FindingTemplate(
    severity=Severity.CRITICAL,
    category=Category.ROGUE_DEVICE,
    title="Rogue DHCP Server",
    description="Host answers on the DHCP server port but is not an authorized DHCP server",
    risk_score=9.0,
    remediation="Locate and disconnect the device. Enable DHCP snooping on managed switches.",
    technical_detail="DHCP server port 67 open on {address} (MAC {mac})",
    impact="Clients may receive attacker-controlled gateway and DNS settings, enabling traffic interception.",
)


def default_rules(
    *,
    rogue_window_seconds: float = DEFAULT_ROGUE_WINDOW_SECONDS,
    authorized_ai_keys: Collection[str] | None = None,
    authorized_dhcp_servers: Collection[str] | None = None,
) -> list[ThreatRule]:
    """Build the standard rule set in its fixed evaluation order.

    The unauthorized-AI and rogue-DHCP rules are only included when their
    allow-lists are supplied.
    """
    rules: list[ThreatRule] = [
        HostRule(
            rule_id="rogue-device",
            template=ROGUE_DEVICE,
            matches=_is_rogue(rogue_window_seconds),
            extra=lambda host: {"first_seen": host.first_seen.isoformat() if host.first_seen else "unknown"},
            requires=("address", "first_seen"),
        ),
        PortRule(
            rule_id="backdoor-port",
            template=BACKDOOR_PORT,
            matches=lambda record, host: record.port in BACKDOOR_SET,
            extra=lambda record, host: {"trojan": BACKDOOR_NAMES.get(record.port, "Unknown backdoor/trojan")},
        ),
        PortRule(rule_id="telnet", template=TELNET, matches=lambda record, host: record.port == 23),
        PortRule(rule_id="ftp", template=FTP, matches=lambda record, host: record.port == 21),
        PortRule(
            rule_id="http-without-https",
            template=HTTP_ONLY,
            matches=lambda record, host: record.port == 80 and not host.has_port(443),
        ),
        PortRule(
            rule_id="vnc",
            template=VNC,
            matches=lambda record, host: 5900 <= record.port <= 5910,
            extra=lambda record, host: {"display_number": record.port - 5900},
        ),
        PortRule(rule_id="rdp", template=RDP, matches=lambda record, host: record.port == 3389),
        PortRule(rule_id="smb", template=SMB, matches=lambda record, host: record.port in (139, 445)),
        HostRule(
            rule_id="multiple-remote-access",
            template=MULTIPLE_REMOTE_ACCESS,
            matches=lambda host, now: len(_remote_access_ports(host)) > REMOTE_ACCESS_THRESHOLD,
            extra=lambda host: {
                "remote_count": len(_remote_access_ports(host)),
                "remote_ports": ", ".join(f"{record.port}/{record.label}" for record in _remote_access_ports(host)),
            },
        ),
        PortRule(
            rule_id="exposed-database",
            template=EXPOSED_DATABASE,
            matches=lambda record, host: record.port in DATABASE_SET,
        ),
    ]

    if authorized_ai_keys is not None:
        allowed_ai = frozenset(authorized_ai_keys)

        def ai_extra(record: PortRecord, host: HostRecord) -> dict[str, Any]:
            info = lookup_ai_service(record.port) or UNKNOWN_AI_SERVICE
            return {
                "service_name": info.name,
                "service_type": info.service_type.value,
                "severity": info.risk_level,
                "risk_score": AI_RISK_SCORES[info.risk_level],
            }

        rules.append(
            PortRule(
                rule_id="unauthorized-ai-service",
                template=UNAUTHORIZED_AI,
                matches=lambda record, host: lookup_ai_service(record.port) is not None
                and not is_authorized(host.address, record.port, allowed_ai),
                extra=ai_extra,
            )
        )

    if authorized_dhcp_servers is not None:
        allowed_dhcp = frozenset(authorized_dhcp_servers)
        rules.append(
            HostRule(
                rule_id="rogue-dhcp",
                template=ROGUE_DHCP,
                matches=lambda host, now: host.has_port(67) and host.address not in allowed_dhcp,
            )
        )
    return rules


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Critical first; ``sorted`` is stable so equal severities keep rule order."""
    return sorted(findings, key=lambda finding: severity_rank(finding.severity))


def classify_host(
    host: HostRecord,
    rules: Sequence[ThreatRule] | None = None,
    *,
    now: datetime | None = None,
) -> list[Finding]:
    """Run every rule against ``host`` and return the severity-sorted findings."""
    active_rules = default_rules() if rules is None else rules
    moment = now or utc_now()
    findings: list[Finding] = []
    for rule in active_rules:
        if not rule.applies_to(host):
            logger.debug("Rule %s skipped for %r: missing %s", rule.rule_id, host.address, rule.requires)
            continue
        try:
            findings.extend(rule.evaluate(host, moment))
        except Exception:  # noqa: BLE001
            logger.exception("Rule %s failed for %s", rule.rule_id, host.address)
    return sort_findings(findings)


@dataclass(slots=True)
class DeviceThreatSummary:
    host: HostRecord
    critical: list[Finding] = field(default_factory=list)
    high: list[Finding] = field(default_factory=list)
    medium: list[Finding] = field(default_factory=list)
    low: list[Finding] = field(default_factory=list)
    info: list[Finding] = field(default_factory=list)

    @classmethod
    def from_findings(cls, host: HostRecord, findings: Iterable[Finding]) -> DeviceThreatSummary:
        summary = cls(host=host)
        for finding in findings:
            summary.bucket(finding.severity).append(finding)
        return summary

    def bucket(self, severity: Severity) -> list[Finding]:
        return {
            Severity.CRITICAL: self.critical,
            Severity.HIGH: self.high,
            Severity.MEDIUM: self.medium,
            Severity.LOW: self.low,
            Severity.INFO: self.info,
        }[severity]

    @property
    def total_threats(self) -> int:
        return len(self.critical) + len(self.high) + len(self.medium) + len(self.low)

    @property
    def has_threats(self) -> bool:
        return self.total_threats > 0

    @property
    def overall_severity(self) -> Severity:
        for severity in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW):
            if self.bucket(severity):
                return severity
        return Severity.INFO

    @property
    def all_findings(self) -> list[Finding]:
        return self.critical + self.high + self.medium + self.low + self.info

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host.address,
            "display_name": self.host.display_name,
            "overall_severity": self.overall_severity.label,
            "total_threats": self.total_threats,
            "findings": [finding.to_dict() for finding in self.all_findings],
        }


SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 5,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}
MAX_WEIGHT_PER_DEVICE = 50


def risk_score(counts: dict[Severity, int], total_devices: int) -> int:
    """100 minus the weighted finding count scaled against a per-device worst case."""
    weighted = sum(SEVERITY_WEIGHTS.get(severity, 0) * count for severity, count in counts.items())
    ceiling = max(total_devices * MAX_WEIGHT_PER_DEVICE, 1)
    return max(0, 100 - int(weighted / ceiling * 100))


def risk_level(score: int) -> str:
    if score >= 90:
        return "Low Risk"
    if score >= 70:
        return "Moderate Risk"
    if score >= 40:
        return "High Risk"
    return "Critical Risk"


@dataclass(slots=True)
class NetworkThreatSummary:
    scan_date: datetime
    total_devices: int
    devices: list[DeviceThreatSummary] = field(default_factory=list)

    def findings(self, severity: Severity) -> list[Finding]:
        return [finding for device in self.devices for finding in device.bucket(severity)]

    @property
    def all_findings(self) -> list[Finding]:
        return sort_findings(finding for device in self.devices for finding in device.all_findings)

    @property
    def threatened_devices(self) -> int:
        return sum(1 for device in self.devices if device.has_threats)

    @property
    def total_threats(self) -> int:
        return sum(device.total_threats for device in self.devices)

    @property
    def rogue_devices(self) -> list[HostRecord]:
        return [
            device.host
            for device in self.devices
            if any(finding.category is Category.ROGUE_DEVICE for finding in device.all_findings)
        ]

    @property
    def backdoor_devices(self) -> list[HostRecord]:
        return [
            device.host
            for device in self.devices
            if any(finding.category is Category.BACKDOOR for finding in device.all_findings)
        ]

    @property
    def exposed_services(self) -> list[Finding]:
        return [finding for finding in self.all_findings if finding.category is Category.EXPOSED_SERVICE]

    @property
    def risk_score(self) -> int:
        counts = {severity: len(self.findings(severity)) for severity in SEVERITY_WEIGHTS}
        return risk_score(counts, self.total_devices)

    @property
    def risk_level(self) -> str:
        return risk_level(self.risk_score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_date": self.scan_date.isoformat(),
            "total_devices": self.total_devices,
            "threatened_devices": self.threatened_devices,
            "total_threats": self.total_threats,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "counts": {severity.label: len(self.findings(severity)) for severity in SEVERITY_WEIGHTS},
            "devices": [device.to_dict() for device in self.devices if device.has_threats],
        }


def analyze_network(
    hosts: Iterable[HostRecord],
    rules: Sequence[ThreatRule] | None = None,
    *,
    now: datetime | None = None,
) -> NetworkThreatSummary:
    """Classify every host and roll the results up into a network summary."""
    moment = now or utc_now()
    active_rules = default_rules() if rules is None else rules
    host_list = list(hosts)
    devices = [
        DeviceThreatSummary.from_findings(host, classify_host(host, active_rules, now=moment))
        for host in host_list
    ]
    devices.sort(key=lambda device: (severity_rank(device.overall_severity), -device.total_threats, device.host.address))
    return NetworkThreatSummary(scan_date=moment, total_devices=len(host_list), devices=devices)
