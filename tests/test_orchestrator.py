import threading

import pytest

from lanscout.alerts.dispatch import AlertDispatcher
from lanscout.analytics.drift import port_delta
from lanscout.config import LanScoutError, ScanSettings
from lanscout.models import ChangeKind, ProbeOutcome, Severity
from lanscout.orchestrator import ScanOrchestrator, ScanRequest, ScanWatchdog
from lanscout.scanner.engine import ProbeResult
from lanscout.scanner.icmp import PingResult
from lanscout.storage.snapshots import MemorySnapshotStore


class FakeNetwork:
    """Mutable view of which hosts answer and which ports accept."""

    def __init__(self, layout, macs=None):
        self.layout = layout
        self.macs = macs or {}

    def ping(self, address, timeout):
        return PingResult(address=address, alive=address in self.layout)

    def connect(self, host, port, timeout):
        outcome = ProbeOutcome.OPEN if port in self.layout.get(host, ()) else ProbeOutcome.CLOSED
        return ProbeResult(host=host, port=port, outcome=outcome)

    def neighbors(self):
        return dict(self.macs)


class RecordingNotifier:
    def __init__(self):
        self.findings = []
        self.changes = []

    def notify_finding(self, finding):
        self.findings.append(finding)

    def notify_change(self, event):
        self.changes.append(event)


def request(ports=(22, 23, 80, 443, 3389)):
    return ScanRequest(subnet="192.168.50.0/29", port_set=list(ports), port_delay=0.0, liveness_timeout=0.1)


def orchestrator(network, store=None, **kwargs):
    return ScanOrchestrator(
        store or MemorySnapshotStore(),
        ScanSettings(port_delay=0.0),
        ping_probe=network.ping,
        port_probe=network.connect,
        neighbor_reader=network.neighbors,
        hostname_resolver=lambda address: None,
        use_watchdog=False,
        **kwargs,
    )


def test_first_cycle_is_first_observation():
    network = FakeNetwork({"192.168.50.1": {80, 443}, "192.168.50.3": {23}})
    result = orchestrator(network).run_cycle(request())

    assert result.first_observation is True
    assert not result.cancelled
    assert [host.address for host in result.hosts] == ["192.168.50.1", "192.168.50.3"]
    assert {event.kind for event in result.change_events} == {ChangeKind.APPEARED}
    assert result.port_events == []
    assert any(finding.rule_id == "telnet" for finding in result.findings)


def test_second_cycle_reports_mac_change_and_new_port():
    network = FakeNetwork({"192.168.50.2": {22}}, macs={"192.168.50.2": "00:11:22:33:44:55"})
    scout = orchestrator(network)
    scout.run_cycle(request())

    network.layout["192.168.50.2"] = {22, 3389}
    network.macs["192.168.50.2"] = "66:77:88:99:AA:BB"
    result = scout.run_cycle(request())

    assert result.first_observation is False
    (mac_change,) = result.change_events
    assert mac_change.attribute == "mac"
    assert mac_change.severity is Severity.HIGH
    (opened,) = result.port_events
    assert opened.previous == [22]
    assert port_delta(opened) == [3389]
    assert opened.severity is Severity.HIGH


def test_missing_host_is_marked_offline_and_reappears():
    network = FakeNetwork({"192.168.50.1": {80}, "192.168.50.2": {22}})
    store = MemorySnapshotStore()
    scout = orchestrator(network, store)
    first = scout.run_cycle(request())
    first_seen = {host.address: host.first_seen for host in first.hosts}

    del network.layout["192.168.50.2"]
    second = scout.run_cycle(request())
    offline = {host.address: host.is_online for host in store.load_hosts()}
    assert offline == {"192.168.50.1": True, "192.168.50.2": False}
    assert [(event.kind, event.key) for event in second.change_events] == [(ChangeKind.DISAPPEARED, "192.168.50.2")]

    network.layout["192.168.50.2"] = {22}
    third = scout.run_cycle(request())
    assert [(event.kind, event.key) for event in third.change_events] == [(ChangeKind.APPEARED, "192.168.50.2")]
    returning = next(host for host in third.hosts if host.address == "192.168.50.2")
    assert returning.first_seen == first_seen["192.168.50.2"]


def test_discovery_only_cycle_keeps_every_live_host():
    network = FakeNetwork({"192.168.50.2": {22}, "192.168.50.3": set()})
    store = MemorySnapshotStore()
    scout = orchestrator(network, store)

    first = scout.run_cycle(request(ports=()))
    assert [host.address for host in first.hosts] == ["192.168.50.2", "192.168.50.3"]
    assert all(host.ports == [] for host in first.hosts)

    second = scout.run_cycle(request(ports=()))
    assert second.change_events == []
    assert all(host.is_online for host in store.load_hosts())


def test_all_unreachable_cycle_completes_empty():
    result = orchestrator(FakeNetwork({})).run_cycle(request())
    assert result.hosts == []
    assert result.findings == []
    assert result.summary.risk_score == 100
    assert not result.cancelled


def test_cancelled_cycle_returns_partial_result_without_saving():
    network = FakeNetwork({"192.168.50.1": {22}, "192.168.50.2": {22}})
    store = MemorySnapshotStore()
    scout = orchestrator(network, store)

    def cancelling_probe(host, port, timeout):
        scout.cancel()
        return network.connect(host, port, timeout)

    scout.port_probe = cancelling_probe
    result = scout.run_cycle(request())

    assert result.cancelled is True
    assert result.change_events == []
    assert store.load_hosts() == []
    assert store.list_scan_history() == []


def test_concurrent_cycle_is_rejected():
    gate = threading.Event()
    release = threading.Event()
    network = FakeNetwork({"192.168.50.1": {22}})

    def slow_ping(address, timeout):
        gate.set()
        release.wait(5)
        return network.ping(address, timeout)

    scout = orchestrator(network)
    scout.ping_probe = slow_ping
    worker = threading.Thread(target=scout.run_cycle, args=(request(),))
    worker.start()
    try:
        assert gate.wait(5)
        assert scout.is_running
        with pytest.raises(LanScoutError):
            scout.run_cycle(request())
    finally:
        release.set()
        worker.join(5)
    assert not scout.is_running


def test_alerts_and_history_follow_a_completed_cycle():
    notifier = RecordingNotifier()
    store = MemorySnapshotStore()
    scout = orchestrator(
        FakeNetwork({"192.168.50.4": {23}}),
        store,
        dispatcher=AlertDispatcher(notifier, threshold=Severity.HIGH),
    )
    scout.run_cycle(request())

    assert {finding.rule_id for finding in notifier.findings} == {"rogue-device", "telnet"}
    assert notifier.changes == []
    (entry,) = store.list_scan_history()
    assert entry["summary"]["hosts_online"] == 1


def test_known_host_is_not_rogue_next_cycle():
    network = FakeNetwork({"192.168.50.5": set()})
    store = MemorySnapshotStore()
    scout = orchestrator(network, store)
    first = scout.run_cycle(request())
    assert [finding.rule_id for finding in first.findings] == ["rogue-device"]

    assert scout.mark_known("192.168.50.5") is True
    assert scout.mark_known("192.168.50.99") is False
    assert scout.run_cycle(request()).findings == []


def test_ai_service_authorization_through_store():
    network = FakeNetwork({"192.168.50.6": {11434}})
    store = MemorySnapshotStore()
    scout = orchestrator(network, store)
    result = scout.run_cycle(request(ports=[11434]))
    assert "unauthorized-ai-service" in {finding.rule_id for finding in result.findings}
    assert [service.key for service in result.services] == ["192.168.50.6:11434"]

    scout.authorize_service("192.168.50.6:11434")
    again = scout.run_cycle(request(ports=[11434]))
    assert "unauthorized-ai-service" not in {finding.rule_id for finding in again.findings}
    assert again.services[0].is_authorized is True
    (change,) = again.ai_events
    assert change.attribute == "is_authorized"


def test_progress_is_reported_through_phases():
    phases = []
    scout = orchestrator(FakeNetwork({"192.168.50.1": {80}}), on_progress=lambda progress: phases.append(progress.phase))
    scout.run_cycle(request())
    assert phases[0] == "starting"
    assert {"discovery", "ports", "classification", "diff"} <= set(phases)
    assert phases[-1] == "complete"
    assert scout.progress.fraction == 1.0


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_watchdog_warns_then_kills_once():
    clock = FakeClock()
    kills = []
    watchdog = ScanWatchdog(lambda: 100.0, lambda: kills.append(1), warning_seconds=30, kill_seconds=60, clock=clock)

    assert watchdog.check() == "ok"
    clock.now = 135.0
    assert watchdog.check() == "warning"
    clock.now = 161.0
    assert watchdog.check() == "killed"
    assert watchdog.check() == "killed"
    assert kills == [1]


def test_watchdog_recovers_when_heartbeat_advances():
    clock = FakeClock()
    beat = {"at": 100.0}
    watchdog = ScanWatchdog(lambda: beat["at"], lambda: None, warning_seconds=30, kill_seconds=60, clock=clock)
    clock.now = 140.0
    assert watchdog.check() == "warning"
    beat["at"] = 139.0
    assert watchdog.check() == "ok"
    assert watchdog.warned is False


def test_request_requires_subnet(monkeypatch):
    monkeypatch.setattr("lanscout.orchestrator.default_subnet", lambda: None)
    with pytest.raises(LanScoutError):
        ScanRequest.from_settings(ScanSettings())
    built = ScanRequest.from_settings(ScanSettings(port_set="quick"), subnet="10.9.0.0/30")
    assert built.subnet == "10.9.0.0/30"
    assert built.port_set == "quick"
