from unittest.mock import MagicMock

import pytest

from lanscout.scheduler.jobs import (
    MAX_SCHEDULE_EVENTS,
    _guarded,
    build_scheduler,
    clear_schedule_events,
    get_schedule_events,
    log_schedule_event,
    schedule_recurring_scan,
)


@pytest.fixture(autouse=True)
def fresh_events():
    clear_schedule_events()
    yield
    clear_schedule_events()


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        schedule_recurring_scan(MagicMock(), lambda: None, interval_seconds=0)


def test_job_never_overlaps_itself():
    scheduler = MagicMock()
    scheduler.add_job.return_value.next_run_time = None
    schedule_recurring_scan(scheduler, lambda: None, interval_seconds=300, job_id="nightly", run_immediately=False)

    _, kwargs = scheduler.add_job.call_args
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    assert kwargs["seconds"] == 300
    assert kwargs["id"] == "nightly"
    assert "next_run_time" not in kwargs
    assert [event["action"] for event in get_schedule_events(job_id="nightly")] == ["scheduled"]


def test_guarded_records_success_and_failure():
    class Result:
        def to_summary(self):
            return {"hosts_online": 3}

    _guarded("ok-job", Result)()
    _guarded("bad-job", MagicMock(side_effect=RuntimeError("boom")))()

    ok = get_schedule_events(job_id="ok-job")
    assert [event["action"] for event in ok] == ["started", "finished"]
    assert ok[-1]["metadata"] == {"hosts_online": 3}
    bad = get_schedule_events(job_id="bad-job")
    assert [event["action"] for event in bad] == ["started", "failed"]
    assert bad[-1]["metadata"]["error"] == "boom"


def test_real_scheduler_registers_job():
    scheduler = build_scheduler()
    job = schedule_recurring_scan(scheduler, lambda: None, interval_seconds=60, job_id="real")
    assert scheduler.get_job("real") is job
    assert job.max_instances == 1


def test_event_log_keeps_only_recent_entries():
    for index in range(MAX_SCHEDULE_EVENTS + 25):
        log_schedule_event(action="started", job_id="busy", metadata={"n": index})
    events = get_schedule_events(job_id="busy")
    assert len(events) == MAX_SCHEDULE_EVENTS
    assert events[0]["metadata"]["n"] == 25
    assert events[-1]["metadata"]["n"] == MAX_SCHEDULE_EVENTS + 24
