# backend/app/services/session_refresh.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings

log = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._ev = threading.Event()

    def cancel(self) -> None:
        self._ev.set()

    @property
    def is_cancelled(self) -> bool:
        return self._ev.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleeps up to `timeout`; True when cancelled meanwhile."""
        return self._ev.wait(timeout)


def build_interval_scheduler(interval: float, job_fn: Callable[[], object], *, job_id: str) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        job_fn,
        trigger=IntervalTrigger(seconds=interval),
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


class PeriodicTask:
    """
    Calls `fn` every `interval` seconds on an APScheduler background
    scheduler until stopped.

    A failing tick is logged and the next tick runs on schedule (no backoff).
    run_once() performs one tick synchronously, so schedules can be tested
    without real timers.
    """

    def __init__(self, interval: float, fn: Callable[[], object], *, name: str = "periodic-task"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self.fn = fn
        self.name = name
        self.ticks = 0
        self.failures = 0
        self._lock = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._token is not None and not self._token.is_cancelled

    def run_once(self) -> bool:
        self.ticks += 1
        try:
            self.fn()
            return True
        except Exception:
            self.failures += 1
            log.exception("%s tick failed; retrying next interval", self.name)
            return False

    def _tick(self, token: CancellationToken) -> None:
        # a tick already queued when stop() ran must not fire
        if not token.is_cancelled:
            self.run_once()

    def start(self) -> None:
        with self._lock:
            if self._token is not None and not self._token.is_cancelled:
                return
            token = CancellationToken()
            scheduler = build_interval_scheduler(self.interval, lambda: self._tick(token), job_id=self.name)
            scheduler.start()
            self._token, self._scheduler = token, scheduler
        log.info("%s started (every %ss)", self.name, self.interval)

    def stop(self) -> None:
        with self._lock:
            token, scheduler = self._token, self._scheduler
            self._token, self._scheduler = None, None
        if token is None:
            return
        token.cancel()
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        log.info("%s stopped", self.name)


class SessionRefresher:
    """Keeps a session alive: start on login, stop on sign-out."""

    def __init__(self, refresh_fn: Callable[[], object], *, interval: Optional[float] = None):
        self.task = PeriodicTask(
            float(interval if interval is not None else settings.session_refresh_interval_seconds),
            refresh_fn,
            name="session-refresh",
        )

    @property
    def running(self) -> bool:
        return self.task.running

    def start(self) -> None:
        self.task.start()

    def stop(self) -> None:
        self.task.stop()

    def refresh_now(self) -> bool:
        return self.task.run_once()
