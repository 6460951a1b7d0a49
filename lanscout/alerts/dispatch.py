"""Alert dispatch with pluggable notifier backends."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, Protocol

from lanscout.models import ChangeEvent, Finding, Severity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


class Notifier(Protocol):
    """Pluggable delivery interface."""

    def notify_finding(self, finding: Finding) -> None:
        """Deliver one classified finding."""

    def notify_change(self, event: ChangeEvent) -> None:
        """Deliver one drift event."""


class NullNotifier:
    """No-op notifier used when alerting is disabled."""

    def notify_finding(self, finding: Finding) -> None:
        _ = finding

    def notify_change(self, event: ChangeEvent) -> None:
        _ = event


class LoggingNotifier:
    """Writes alerts to a logger, at a level following the alert severity."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logging.getLogger("lanscout.alerts")

    def notify_finding(self, finding: Finding) -> None:
        where = f"{finding.host}:{finding.port}" if finding.port is not None else finding.host
        self.log.log(
            _LOG_LEVELS[finding.severity],
            "[%s] %s on %s: %s",
            finding.severity.label.upper(),
            finding.title,
            where,
            finding.description,
        )

    def notify_change(self, event: ChangeEvent) -> None:
        self.log.log(_LOG_LEVELS[event.severity], "[%s] %s", event.severity.label.upper(), event.detail)


@dataclass(slots=True)
class AlertDispatcher:
    """Routes findings and change events to a notifier when the threshold is met.

    Notifier failures are logged and never interrupt a scan cycle.
    """

    notifier: Notifier = field(default_factory=NullNotifier)
    threshold: Severity = Severity.MEDIUM
    enabled: bool = True
    _seen: set[tuple[str, int | None, str]] = field(default_factory=set)

    def should_alert(self, severity: Severity) -> bool:
        return self.enabled and severity >= self.threshold

    def dispatch_finding(self, finding: Finding, *, dedupe: bool = True) -> bool:
        if not self.should_alert(finding.severity):
            return False
        identity = (finding.host, finding.port, finding.rule_id or finding.title)
        if dedupe and identity in self._seen:
            return False
        try:
            self.notifier.notify_finding(finding)
        except Exception:  # noqa: BLE001
            logger.exception("Notifier failed for finding %s on %s", finding.rule_id, finding.host)
            return False
        self._seen.add(identity)
        return True

    def dispatch_change(self, event: ChangeEvent) -> bool:
        if not self.should_alert(event.severity):
            return False
        try:
            self.notifier.notify_change(event)
        except Exception:  # noqa: BLE001
            logger.exception("Notifier failed for change event on %s", event.key)
            return False
        return True

    def dispatch(self, findings: Iterable[Finding] = (), events: Iterable[ChangeEvent] = ()) -> int:
        """Send everything at or above the threshold; returns how many were delivered."""
        delivered = sum(1 for finding in findings if self.dispatch_finding(finding))
        delivered += sum(1 for event in events if self.dispatch_change(event))
        return delivered

    def reset(self) -> None:
        self._seen.clear()
