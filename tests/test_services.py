import pytest

from lanscout.config import load_settings
from lanscout.intel.services import label_for_port, lookup_service
from lanscout.scanner.port_sets import PORT_SETS, parse_port_spec, resolve_port_set


def test_home_automation_table_wins_over_well_known():
    info = lookup_service(8080, "HTTP-Alt")
    assert info is not None
    assert info.name == "HomeKit Bridge"
    assert info.source == "home-automation"


def test_well_known_table_wins_over_coarse_label():
    info = lookup_service(3306, "Something Else")
    assert info is not None
    assert info.name == "MySQL"
    assert info.source == "well-known"


def test_coarse_label_is_the_last_resort():
    info = lookup_service(31337, "Back Orifice")
    assert info is not None
    assert info.source == "scanner"
    assert lookup_service(40000) is None
    assert label_for_port(40000) == "Unknown"


def test_resolve_named_tier_is_deduplicated():
    ports = resolve_port_set("standard")
    assert len(ports) == len(set(ports))
    assert 23 in ports and 31337 in ports


def test_every_tier_resolves():
    for name in PORT_SETS:
        assert resolve_port_set(name)


def test_resolve_spec_string_and_list():
    assert resolve_port_set("22, 80,8000-8002") == [22, 80, 8000, 8001, 8002]
    assert resolve_port_set([443, 443, 22]) == [443, 22]
    assert resolve_port_set("remote-access") == resolve_port_set("remote_access")


def test_invalid_selections_raise():
    with pytest.raises(ValueError):
        resolve_port_set("everything")
    with pytest.raises(ValueError):
        parse_port_spec("90-80")
    with pytest.raises(ValueError):
        resolve_port_set([22, 70000])


def test_range_spec_from_settings_resolves():
    settings = load_settings(env={"LANSCOUT_PORT_SET": "22,8000-8002"})
    assert resolve_port_set(settings.port_set) == [22, 8000, 8001, 8002]
    assert resolve_port_set("8000-8001") == [8000, 8001]
