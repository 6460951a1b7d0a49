import json

import pytest

from lanscout.config import ConfigError, LanScoutError, ScanSettings, load_settings


def test_defaults_without_file_or_env():
    settings = load_settings(env={})
    assert settings == ScanSettings()
    assert settings.port_timeout == 0.5
    assert settings.host_workers == 1
    assert settings.watchdog_warning_seconds == 30.0
    assert settings.watchdog_kill_seconds == 60.0


def test_file_then_env_then_overrides(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"lanscout": {"port_set": "quick", "host_workers": 4, "subnet": "10.1.0.0/24"}}))

    settings = load_settings(
        path,
        env={"LANSCOUT_HOST_WORKERS": "8", "LANSCOUT_GRAB_BANNERS": "yes", "HOME": "/root"},
        overrides={"subnet": "10.2.0.0/24", "port_timeout": None},
    )

    assert settings.port_set == "quick"
    assert settings.host_workers == 8
    assert settings.grab_banners is True
    assert settings.subnet == "10.2.0.0/24"
    assert settings.port_timeout == 0.5


def test_top_level_file_and_list_values(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"authorized_dhcp_servers": ["192.168.1.1"], "max_hosts": 32}))
    settings = load_settings(path, env={"LANSCOUT_AUTHORIZED_DHCP_SERVERS": "192.168.1.1, 192.168.1.2"})
    assert settings.authorized_dhcp_servers == ["192.168.1.1", "192.168.1.2"]
    assert settings.max_hosts == 32


@pytest.mark.parametrize(
    "env",
    [
        {"LANSCOUT_PORT_TIMEOUT": "fast"},
        {"LANSCOUT_PORT_TIMEOUT": "0"},
        {"LANSCOUT_HOST_WORKERS": "0"},
        {"LANSCOUT_GRAB_BANNERS": "maybe"},
        {"LANSCOUT_ALERT_THRESHOLD": "urgent"},
        {"LANSCOUT_WATCHDOG_KILL_SECONDS": "10"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        load_settings(env=env)


def test_unreadable_file_raises(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(ConfigError):
        load_settings(broken, env={})
    with pytest.raises(LanScoutError):
        load_settings(tmp_path / "missing.json", env={})
