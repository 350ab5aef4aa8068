# backend/app/services/change_relay.py
from __future__ import annotations

import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

log = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"
KINDS = (INSERT, UPDATE, DELETE)


@dataclass(frozen=True)
class ChangeEvent:
    kind: str  # insert|update|delete
    entity_type: str  # appraisals|reports|comparable_properties|profiles
    record: dict[str, Any]
    emitted_at: datetime = field(default_factory=datetime.utcnow)
    # row as it was before an update; kept off the wire
    previous: Optional[dict[str, Any]] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "entity_type": self.entity_type,
            "record": self.record,
            "emitted_at": self.emitted_at.isoformat(),
        }


def _matches(record: dict[str, Any], flt: Optional[dict[str, Any]]) -> bool:
    if not flt:
        return True
    for k, v in flt.items():
        if record.get(k) != v:
            return False
    return True


class Subscription:
    """
    One consumer's view of the relay.

    Iterating blocks until the next event or until the subscription is
    closed. close() is idempotent and never raises.
    """

    _CLOSED = object()

    def __init__(self, relay: "ChangeRelay", entity_type: str, flt: Optional[dict[str, Any]]):
        self.entity_type = entity_type
        self.filter = dict(flt or {})
        self._relay = relay
        self._q: "queue.Queue[Any]" = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def wants(self, ev: ChangeEvent) -> bool:
        return ev.entity_type == self.entity_type and _matches(ev.record, self.filter)

    def _deliver(self, ev: ChangeEvent) -> None:
        if not self._closed.is_set():
            self._q.put(ev)

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next event, or None on timeout / after close."""
        if self._closed.is_set() and self._q.empty():
            return None
        try:
            item = self._q.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            return None
        return item

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._relay._remove(self)
        # wake a consumer blocked in get()
        self._q.put(self._CLOSED)

    def __iter__(self) -> Iterator[ChangeEvent]:
        while True:
            ev = self.get()
            if ev is None:
                return
            yield ev

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeRelay:
    """
    In-process fan-out of store change notifications.

    Events reach each subscriber in publish order; nothing is reordered or
    batched. Publishing is called after the writing transaction commits.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []

    def subscribe(self, entity_type: str, flt: Optional[dict[str, Any]] = None) -> Subscription:
        sub = Subscription(self, entity_type, flt)
        with self._lock:
            self._subs.append(sub)
        log.debug("subscription opened for %s filter=%s", entity_type, sub.filter)
        return sub

    @contextmanager
    def open(self, entity_type: str, flt: Optional[dict[str, Any]] = None) -> Iterator[Subscription]:
        sub = self.subscribe(entity_type, flt)
        try:
            yield sub
        finally:
            sub.close()

    def publish(self, ev: ChangeEvent) -> int:
        if ev.kind not in KINDS:
            raise ValueError(f"unknown change kind: {ev.kind}")
        # deliver under the lock so two publishers cannot interleave per subscriber
        with self._lock:
            targets = [s for s in self._subs if s.wants(ev)]
            for s in targets:
                s._deliver(ev)
        return len(targets)

    def emit(
        self, kind: str, entity_type: str, record: dict[str, Any], previous: Optional[dict[str, Any]] = None
    ) -> int:
        return self.publish(
            ChangeEvent(
                kind=kind,
                entity_type=entity_type,
                record=dict(record),
                previous=dict(previous) if previous is not None else None,
            )
        )

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subs.remove(sub)
            except ValueError:
                pass
