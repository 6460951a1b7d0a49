import subprocess
import threading
from unittest import mock

import pytest

from lanscout.scanner import discovery
from lanscout.scanner.icmp import PingResult
from lanscout.scanner.ip_utils import enumerate_hosts


def unreachable(address, timeout):
    return PingResult(address=address, alive=False, error="timeout")


def alive_set(*addresses):
    def probe(address, timeout):
        return PingResult(address=address, alive=address in addresses, rtt=0.001)

    return probe


def test_enumerate_cidr_excludes_network_and_broadcast():
    hosts = list(enumerate_hosts("192.168.1.0/24"))
    assert hosts[0] == "192.168.1.1"
    assert hosts[-1] == "192.168.1.254"
    assert len(hosts) == 254


def test_enumerate_legacy_prefix_and_single_address():
    assert list(enumerate_hosts("10.0.0", max_hosts=3)) == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert list(enumerate_hosts("10.0.0.7")) == ["10.0.0.7"]


def test_enumerate_rejects_garbage():
    with pytest.raises(ValueError):
        list(enumerate_hosts("not-a-subnet"))


def test_all_unreachable_slash_24_yields_empty_alive_set():
    progress = []
    result = discovery.discover_hosts(
        "192.168.50.0/24",
        timeout=0.01,
        probe=unreachable,
        on_progress=lambda fraction, address: progress.append(fraction),
    )
    assert result.alive == []
    assert result.probed == result.total == 254
    assert result.cancelled is False
    assert progress[-1] == pytest.approx(1.0)


def test_probe_exceptions_count_as_not_alive():
    def broken(address, timeout):
        raise OSError("boom")

    result = discovery.sweep(["10.0.0.1", "10.0.0.2"], probe=broken)
    assert result.alive == []
    assert result.probed == 2


def test_pooled_sweep_sorts_alive_numerically():
    result = discovery.sweep(
        ["10.0.0.10", "10.0.0.9", "10.0.0.100"],
        workers=3,
        probe=alive_set("10.0.0.10", "10.0.0.9", "10.0.0.100"),
    )
    assert result.alive == ["10.0.0.9", "10.0.0.10", "10.0.0.100"]


def test_cancellation_between_hosts_keeps_partial_results():
    stop = threading.Event()
    seen = []

    def probe(address, timeout):
        seen.append(address)
        if len(seen) == 2:
            stop.set()
        return PingResult(address=address, alive=True)

    result = discovery.sweep([f"10.0.0.{i}" for i in range(1, 11)], probe=probe, cancel_event=stop)
    assert result.cancelled is True
    assert result.alive == ["10.0.0.1", "10.0.0.2"]
    assert result.probed == 2


def test_parse_neighbor_lines_handles_ip_and_arp_formats():
    lines = [
        "192.168.1.1 dev eth0 lladdr 0:9:f:aa:bb:cc REACHABLE",
        "192.168.1.7 dev eth0  FAILED",
        "? (192.168.1.20) at b8:27:eb:0:11:22 [ether] on eth0",
        "192.168.1.30 dev eth0 INCOMPLETE",
    ]
    assert discovery.parse_neighbor_lines(lines) == {
        "192.168.1.1": "00:09:0F:AA:BB:CC",
        "192.168.1.20": "B8:27:EB:00:11:22",
    }


def test_read_neighbor_table_falls_back_to_arp():
    outputs = [
        OSError("ip not installed"),
        subprocess.CompletedProcess(["arp", "-a"], 0, stdout="? (10.0.0.2) at 08:00:27:12:34:56 [ether] on eth0\n"),
    ]
    with mock.patch.object(discovery.subprocess, "run", side_effect=outputs):
        assert discovery.read_neighbor_table() == {"10.0.0.2": "08:00:27:12:34:56"}


def test_vendor_lookup_uses_oui_prefix():
    assert discovery.lookup_vendor("b8-27-eb-00-11-22") == "Raspberry Pi Foundation"
    assert discovery.lookup_vendor(None) is None
    assert discovery.lookup_vendor("12:34:56:78:9a:bc") is None
