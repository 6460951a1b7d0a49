from datetime import datetime, timedelta, timezone

import pytest

from lanscout.intel.threats import (
    DeviceThreatSummary,
    ThreatRule,
    analyze_network,
    classify_host,
    default_rules,
    risk_level,
    risk_score,
)
from lanscout.models import Category, HostRecord, PortRecord, PortState, Severity

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def host(address="192.168.1.50", ports=(), **kwargs):
    records = [PortRecord(port=port, state=PortState.OPEN, label=f"p{port}") for port in ports]
    return HostRecord(address=address, ports=records, **kwargs)


def test_telnet_yields_single_critical_weak_security_finding():
    findings = classify_host(host(ports=[23]), now=NOW)
    assert len(findings) == 1
    finding = findings[0]
    assert finding.severity is Severity.CRITICAL
    assert finding.category is Category.WEAK_SECURITY
    assert finding.port == 23
    assert finding.remediation


def test_mysql_only_yields_single_data_exposure_finding():
    findings = classify_host(host(ports=[3306]), now=NOW)
    assert len(findings) == 1
    assert findings[0].severity is Severity.CRITICAL
    assert findings[0].category is Category.DATA_EXPOSURE
    assert findings[0].port == 3306
    assert findings[0].risk_score == 9.8


def test_closed_ports_do_not_fire_rules():
    record = PortRecord(port=23, state=PortState.CLOSED_FILTERED)
    assert classify_host(HostRecord(address="10.0.0.1", ports=[record]), now=NOW) == []


def test_classification_is_idempotent():
    target = host(ports=[21, 23, 80, 445, 3389, 5900, 31337])
    assert classify_host(target, now=NOW) == classify_host(target, now=NOW)


def test_classification_is_idempotent_without_pinned_clock():
    target = host(ports=[21, 23, 3306])
    first = classify_host(target)
    second = classify_host(target)
    assert first == second
    assert [finding.rule_id for finding in first] == [finding.rule_id for finding in second]


def test_findings_sorted_by_severity_with_rule_order_ties():
    findings = classify_host(host(ports=[21, 23, 80, 3389]), now=NOW)
    ranks = [int(finding.severity) for finding in findings]
    assert ranks == sorted(ranks, reverse=True)
    assert [finding.rule_id for finding in findings] == ["telnet", "ftp", "rdp", "http-without-https"]


def test_overlapping_rules_all_fire():
    findings = classify_host(host(ports=[22, 23, 3389, 6667]), now=NOW)
    rule_ids = {finding.rule_id for finding in findings}
    assert {"backdoor-port", "telnet", "rdp", "multiple-remote-access"} <= rule_ids


def test_http_with_https_is_not_flagged():
    findings = classify_host(host(ports=[80, 443]), now=NOW)
    assert all(finding.rule_id != "http-without-https" for finding in findings)


def test_vnc_range_fires_per_port():
    findings = classify_host(host(ports=[5900, 5905]), now=NOW)
    assert [finding.port for finding in findings if finding.rule_id == "vnc"] == [5900, 5905]


def test_rogue_device_within_window():
    fresh = host(ports=[], first_seen=NOW - timedelta(minutes=5))
    stale = host(ports=[], first_seen=NOW - timedelta(hours=3))
    known = host(ports=[], first_seen=NOW - timedelta(minutes=5), is_known=True)

    assert [finding.category for finding in classify_host(fresh, now=NOW)] == [Category.ROGUE_DEVICE]
    assert classify_host(stale, now=NOW) == []
    assert classify_host(known, now=NOW) == []


def test_rogue_rule_skipped_without_first_seen():
    assert classify_host(host(ports=[], first_seen=None), now=NOW) == []


def test_failing_rule_is_skipped_and_batch_continues():
    class Exploding(ThreatRule):
        rule_id = "exploding"
        requires = ("address",)

        def evaluate(self, host, now=None):
            raise RuntimeError("bad rule")

    rules = [Exploding(), *default_rules()]
    findings = classify_host(host(ports=[23]), rules, now=NOW)
    assert [finding.rule_id for finding in findings] == ["telnet"]


def test_unauthorized_ai_rule_only_with_allow_list():
    target = host(ports=[11434])
    assert classify_host(target, now=NOW) == []

    flagged = classify_host(target, default_rules(authorized_ai_keys=set()), now=NOW)
    assert len(flagged) == 1
    assert flagged[0].severity is Severity.HIGH
    assert flagged[0].category is Category.SUSPICIOUS_ACTIVITY

    allowed = classify_host(target, default_rules(authorized_ai_keys={"192.168.1.50"}), now=NOW)
    assert allowed == []


def test_rogue_dhcp_rule():
    rules = default_rules(authorized_dhcp_servers={"192.168.1.1"})
    assert classify_host(host("192.168.1.1", ports=[67]), rules, now=NOW) == []
    rogue = classify_host(host("192.168.1.66", ports=[67]), rules, now=NOW)
    assert [finding.rule_id for finding in rogue] == ["rogue-dhcp"]


def test_device_summary_buckets_and_overall_severity():
    findings = classify_host(host(ports=[21, 80]), now=NOW)
    summary = DeviceThreatSummary.from_findings(host(ports=[21, 80]), findings)
    assert summary.overall_severity is Severity.HIGH
    assert summary.total_threats == 2
    assert DeviceThreatSummary(host=host()).overall_severity is Severity.INFO


@pytest.mark.parametrize(
    "counts, devices, expected",
    [
        ({}, 4, 100),
        ({Severity.CRITICAL: 1}, 1, 80),
        ({Severity.CRITICAL: 5}, 1, 0),
        ({Severity.CRITICAL: 10}, 1, 0),
        ({Severity.HIGH: 1, Severity.MEDIUM: 1, Severity.LOW: 1}, 2, 92),
        ({Severity.LOW: 3}, 0, 0),
    ],
)
def test_network_risk_score(counts, devices, expected):
    assert risk_score(counts, devices) == expected


def test_risk_level_bands():
    assert [risk_level(score) for score in (100, 90, 89, 70, 69, 40, 39)] == [
        "Low Risk",
        "Low Risk",
        "Moderate Risk",
        "Moderate Risk",
        "High Risk",
        "High Risk",
        "Critical Risk",
    ]


def test_analyze_network_orders_devices_worst_first():
    clean = host("10.0.0.1", ports=[22])
    medium = host("10.0.0.2", ports=[80])
    critical = host("10.0.0.3", ports=[23])
    summary = analyze_network([clean, medium, critical], now=NOW)

    assert [device.host.address for device in summary.devices] == ["10.0.0.3", "10.0.0.2", "10.0.0.1"]
    assert summary.total_devices == 3
    assert summary.threatened_devices == 2
    # critical 10 + medium 2 over 3 devices * 50
    assert summary.risk_score == 100 - int(12 / 150 * 100)
    assert summary.to_dict()["counts"]["critical"] == 1
