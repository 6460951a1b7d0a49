"""Recurring scan cycles on an APScheduler background scheduler."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
import logging
from threading import Lock
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

DEFAULT_JOB_ID = "lanscout-recurring-scan"

MAX_SCHEDULE_EVENTS = 500

_JOB_EVENTS: deque[dict[str, Any]] = deque(maxlen=MAX_SCHEDULE_EVENTS)
_JOB_EVENTS_LOCK = Lock()


def build_scheduler() -> BackgroundScheduler:
    """Create and return a background scheduler instance."""
    return BackgroundScheduler(timezone=timezone.utc)


def log_schedule_event(
    *,
    action: str,
    job_id: str,
    scheduled_for: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Record a scheduler event for later inspection."""
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "job_id": job_id,
        "scheduled_for": scheduled_for or "",
        "metadata": dict(metadata or {}),
    }
    with _JOB_EVENTS_LOCK:
        _JOB_EVENTS.append(event)
    return event


def get_schedule_events(*, job_id: str | None = None) -> list[dict[str, Any]]:
    """Return a snapshot of recorded scheduler events."""
    with _JOB_EVENTS_LOCK:
        items = list(_JOB_EVENTS)
    if job_id:
        return [event for event in items if str(event.get("job_id")) == job_id]
    return items


def clear_schedule_events() -> None:
    with _JOB_EVENTS_LOCK:
        _JOB_EVENTS.clear()


def _guarded(job_id: str, run_cycle: Callable[[], Any]) -> Callable[[], None]:
    def run() -> None:
        log_schedule_event(action="started", job_id=job_id)
        try:
            result = run_cycle()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scheduled scan %s failed", job_id)
            log_schedule_event(action="failed", job_id=job_id, metadata={"error": str(exc)})
            return
        metadata = result.to_summary() if hasattr(result, "to_summary") else {}
        log_schedule_event(action="finished", job_id=job_id, metadata=metadata)

    return run


def schedule_recurring_scan(
    scheduler: BackgroundScheduler,
    run_cycle: Callable[[], Any],
    *,
    interval_seconds: float,
    job_id: str = DEFAULT_JOB_ID,
    run_immediately: bool = True,
) -> Any:
    """Add (or replace) an interval job running ``run_cycle``.

    ``max_instances=1`` keeps cycles from overlapping when one overruns the
    interval; the late run is coalesced instead of queued.
    """
    if interval_seconds <= 0:
        raise ValueError(f"interval must be positive, got {interval_seconds!r}")

    kwargs: dict[str, Any] = {}
    if run_immediately:
        kwargs["next_run_time"] = datetime.now(timezone.utc)

    job = scheduler.add_job(
        _guarded(job_id, run_cycle),
        trigger="interval",
        seconds=interval_seconds,
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        **kwargs,
    )
    next_run = getattr(job, "next_run_time", None)
    log_schedule_event(
        action="scheduled",
        job_id=job_id,
        scheduled_for=next_run.isoformat() if next_run else None,
        metadata={"interval_seconds": interval_seconds},
    )
    logger.info("Scheduled recurring scan %s every %ss", job_id, interval_seconds)
    return job
