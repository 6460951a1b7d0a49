import pytest

from lanscout import main as cli
from lanscout.models import HostRecord
from lanscout.storage.snapshots import SqliteSnapshotStore


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file: None)
    for name in ("LANSCOUT_CONFIG", "LANSCOUT_DB_PATH", "LANSCOUT_SUBNET"):
        monkeypatch.delenv(name, raising=False)


def test_scan_options_parse():
    args = cli.build_parser().parse_args(
        ["--db", "/tmp/x.db", "scan", "--subnet", "10.0.0.0/24", "--ports", "quick", "--banners", "--host-workers", "4"]
    )
    assert args.command == "scan"
    assert args.db_path == "/tmp/x.db"
    assert args.port_set == "quick"
    assert args.grab_banners is True
    assert args.query_ai_models is None
    assert args.host_workers == 4


def test_monitor_interval_default():
    args = cli.build_parser().parse_args(["monitor"])
    assert args.interval == 300.0


def test_authorize_and_revoke(tmp_path):
    db = tmp_path / "inventory.db"
    assert cli.main(["--db", str(db), "authorize", "10.0.0.5:11434"]) == 0
    assert SqliteSnapshotStore(db).authorized_keys() == {"10.0.0.5:11434"}
    assert cli.main(["--db", str(db), "authorize", "10.0.0.5:11434", "--revoke"]) == 0
    assert SqliteSnapshotStore(db).authorized_keys() == set()


def test_trust_requires_stored_host(tmp_path):
    db = tmp_path / "inventory.db"
    assert cli.main(["--db", str(db), "trust", "10.0.0.9"]) == 1

    SqliteSnapshotStore(db).save_hosts([HostRecord(address="10.0.0.9")])
    assert cli.main(["--db", str(db), "trust", "10.0.0.9"]) == 0
    (host,) = SqliteSnapshotStore(db).load_hosts()
    assert host.is_known is True


def test_invalid_setting_exits_with_usage_error(tmp_path):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--db", str(tmp_path / "x.db"), "scan", "--port-timeout", "0"])
    assert exc.value.code == 2
