# backend/tests/test_change_relay.py
from __future__ import annotations

import threading

import pytest

from app.services.change_relay import DELETE, INSERT, UPDATE, ChangeRelay


def test_events_arrive_in_publish_order():
    relay = ChangeRelay()
    with relay.open("appraisals") as sub:
        for i in range(20):
            relay.emit(UPDATE, "appraisals", {"id": "a", "seq": i})
        got = [sub.get(timeout=1).record["seq"] for _ in range(20)]
    assert got == list(range(20))


def test_filters_by_entity_type_and_fields():
    relay = ChangeRelay()
    with relay.open("appraisals", {"customer_id": "c1"}) as mine, relay.open("reports") as reports:
        relay.emit(INSERT, "appraisals", {"id": "1", "customer_id": "c2"})
        relay.emit(INSERT, "appraisals", {"id": "2", "customer_id": "c1"})
        relay.emit(DELETE, "reports", {"id": "r"})

        ev = mine.get(timeout=1)
        assert ev.record["id"] == "2"
        assert mine.get(timeout=0.05) is None
        assert reports.get(timeout=1).kind == DELETE


def test_close_is_idempotent_and_unsubscribes():
    relay = ChangeRelay()
    sub = relay.subscribe("appraisals")
    assert relay.subscriber_count() == 1

    sub.close()
    sub.close()
    assert relay.subscriber_count() == 0
    assert relay.emit(INSERT, "appraisals", {"id": "x"}) == 0
    assert sub.get(timeout=0.01) is None


def test_close_wakes_a_blocked_consumer():
    relay = ChangeRelay()
    sub = relay.subscribe("appraisals")
    seen = []

    t = threading.Thread(target=lambda: seen.extend(sub))
    t.start()
    relay.emit(INSERT, "appraisals", {"id": "1"})
    sub.close()
    t.join(2)

    assert not t.is_alive()
    assert [e.record["id"] for e in seen] == ["1"]


def test_scope_releases_on_error():
    relay = ChangeRelay()
    with pytest.raises(RuntimeError):
        with relay.open("appraisals"):
            raise RuntimeError("setup failed")
    assert relay.subscriber_count() == 0


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        ChangeRelay().emit("upsert", "appraisals", {})
