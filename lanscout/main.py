"""Command-line entrypoint for LanScout."""

from __future__ import annotations

import argparse
import json
import logging
import logging.handlers
import os
from pathlib import Path
import signal
import sys
import threading
from typing import Sequence

from lanscout.alerts.dispatch import AlertDispatcher, LoggingNotifier
from lanscout.config import ConfigError, LanScoutError, ScanSettings, load_settings
from lanscout.orchestrator import ScanOrchestrator, ScanProgress, ScanRequest, alert_threshold
from lanscout.scanner.port_sets import PORT_SETS
from lanscout.scheduler.jobs import build_scheduler, schedule_recurring_scan
from lanscout.storage.snapshots import SqliteSnapshotStore

logger = logging.getLogger("lanscout")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Console logging, plus a rotating file (10 MB x 5) when ``log_file`` is set."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lanscout", description="Local network discovery, threat classification and drift tracking")
    parser.add_argument("--config", default=os.environ.get("LANSCOUT_CONFIG"), help="JSON settings file")
    parser.add_argument("--db", dest="db_path", help="SQLite inventory path")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", help="Also write logs to this rotating file")

    sub = parser.add_subparsers(dest="command", required=True)

    def scan_options(command: argparse.ArgumentParser) -> None:
        command.add_argument("--subnet", help="CIDR, single address or three-octet prefix (default: detected)")
        command.add_argument("--ports", dest="port_set", help=f"tier ({', '.join(PORT_SETS)}) or list like 22,80,8000-8010")
        command.add_argument("--ping-timeout", dest="liveness_timeout", type=float)
        command.add_argument("--port-timeout", type=float)
        command.add_argument("--host-workers", type=int)
        command.add_argument("--ping-workers", type=int)
        command.add_argument("--max-hosts", type=int)
        command.add_argument("--banners", dest="grab_banners", action="store_true", default=None)
        command.add_argument("--ai-models", dest="query_ai_models", action="store_true", default=None)

    scan = sub.add_parser("scan", help="Run one scan cycle and print a JSON report")
    scan_options(scan)
    scan.add_argument("--full-report", action="store_true", help="Include hosts, findings and events")

    monitor = sub.add_parser("monitor", help="Run scan cycles on an interval until interrupted")
    scan_options(monitor)
    monitor.add_argument("--interval", type=float, default=300.0, help="Seconds between cycles")

    trust = sub.add_parser("trust", help="Mark a host as known so it is not reported as rogue")
    trust.add_argument("address")
    trust.add_argument("--revoke", action="store_true")

    authorize = sub.add_parser("authorize", help="Allow-list an AI service (host or host:port)")
    authorize.add_argument("key")
    authorize.add_argument("--revoke", action="store_true")
    return parser


def _settings_from_args(args: argparse.Namespace) -> ScanSettings:
    names = (
        "db_path", "log_level", "log_file", "port_set", "liveness_timeout", "port_timeout",
        "host_workers", "ping_workers", "max_hosts", "grab_banners", "query_ai_models", "subnet",
    )
    overrides = {name: getattr(args, name, None) for name in names}
    return load_settings(args.config, overrides=overrides)


def _build_orchestrator(settings: ScanSettings) -> ScanOrchestrator:
    def log_progress(progress: ScanProgress) -> None:
        logger.debug("%s %.0f%% %s", progress.phase, progress.fraction * 100, progress.current_host or "")

    dispatcher = AlertDispatcher(notifier=LoggingNotifier(), threshold=alert_threshold(settings))
    return ScanOrchestrator(SqliteSnapshotStore(settings.db_path), settings, dispatcher, on_progress=log_progress)


def _run_scan(settings: ScanSettings, *, full_report: bool) -> int:
    orchestrator = _build_orchestrator(settings)
    request = ScanRequest.from_settings(settings)

    def interrupt(signum: int, frame: object) -> None:
        logger.warning("Interrupted, cancelling scan")
        orchestrator.cancel()

    previous = signal.signal(signal.SIGINT, interrupt)
    try:
        result = orchestrator.run_cycle(request)
    finally:
        signal.signal(signal.SIGINT, previous)

    payload = result.to_dict() if full_report else {**result.to_summary(), "threats": result.summary.to_dict()}
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 130 if result.cancelled else 0


def _run_monitor(settings: ScanSettings, interval: float) -> int:
    orchestrator = _build_orchestrator(settings)
    request = ScanRequest.from_settings(settings)
    scheduler = build_scheduler()
    schedule_recurring_scan(scheduler, lambda: orchestrator.run_cycle(request), interval_seconds=interval)

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: stop.set())
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    scheduler.start()
    logger.info("Monitoring %s every %ss (Ctrl+C to stop)", request.subnet, interval)
    try:
        stop.wait()
    finally:
        orchestrator.cancel()
        scheduler.shutdown(wait=True)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Application entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _settings_from_args(args)
    except ConfigError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level, settings.log_file)

    try:
        if args.command == "scan":
            return _run_scan(settings, full_report=args.full_report)
        if args.command == "monitor":
            return _run_monitor(settings, args.interval)
        orchestrator = _build_orchestrator(settings)
        if args.command == "trust":
            if not orchestrator.mark_known(args.address, not args.revoke):
                logger.error("Host %s is not in the stored inventory; scan first", args.address)
                return 1
            return 0
        if args.command == "authorize":
            orchestrator.authorize_service(args.key, not args.revoke)
            return 0
    except (LanScoutError, ValueError) as exc:
        logger.error("%s", exc)
        return 2
    return 1


if __name__ == "__main__":
    sys.exit(main())
