# backend/tests/test_session_refresh.py
from __future__ import annotations

import threading

import pytest

from apscheduler.triggers.interval import IntervalTrigger

from app.services.session_refresh import CancellationToken, PeriodicTask, SessionRefresher, build_interval_scheduler


def test_run_once_counts_and_survives_failure():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("network down")

    task = PeriodicTask(10, flaky, name="t")
    assert task.run_once() is False
    assert task.run_once() is True
    assert (task.ticks, task.failures) == (2, 1)


def test_start_and_stop_are_idempotent():
    task = PeriodicTask(60, lambda: None)
    task.start()
    task.start()
    assert task.running
    task.stop()
    task.stop()
    assert not task.running


def test_ticks_on_schedule_until_stopped():
    fired = threading.Event()
    task = PeriodicTask(0.01, fired.set)
    task.start()
    try:
        assert fired.wait(2)
    finally:
        task.stop()
    assert not task.running
    threading.Event().wait(0.05)
    ticks = task.ticks
    # nothing fires after stop
    assert not threading.Event().wait(0.1)
    assert task.ticks == ticks


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask(0, lambda: None)


def test_cancellation_token():
    tok = CancellationToken()
    assert not tok.is_cancelled
    assert tok.wait(0.01) is False
    tok.cancel()
    assert tok.wait(0.01) is True


def test_session_refresher_lifecycle():
    calls = []
    r = SessionRefresher(lambda: calls.append(1), interval=3600)
    r.start()
    assert r.running
    assert r.refresh_now() is True
    r.stop()
    assert not r.running
    assert calls == [1]


def test_interval_scheduler_holds_one_interval_job():
    scheduler = build_interval_scheduler(900, lambda: None, job_id="session-refresh")
    jobs = scheduler.get_jobs()
    assert [j.id for j in jobs] == ["session-refresh"]
    assert isinstance(jobs[0].trigger, IntervalTrigger)
    assert jobs[0].trigger.interval.total_seconds() == 900
    assert jobs[0].max_instances == 1


def test_restart_after_stop_uses_a_fresh_schedule():
    fired = threading.Event()
    task = PeriodicTask(0.01, fired.set)
    task.start()
    task.stop()
    fired.clear()
    task.start()
    try:
        assert fired.wait(2)
    finally:
        task.stop()
