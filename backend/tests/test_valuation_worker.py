# backend/tests/test_valuation_worker.py
from __future__ import annotations

from app.domain.lifecycle import PROCESSING, PUBLISHED
from app.services.appraisal_store import AppraisalStore
from app.services.lifecycle_service import AppraisalLifecycle
from app.workers import appraisal_tasks
from app.workers.appraisal_tasks import enqueue_valuation, value_appraisal


def _submitted(db, make_actor, comps=(720000, 740000, 760000)):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="10 Worker Way", bedrooms=3)
    engine.submit(customer, row.id)
    for price in comps:
        engine.add_comparable(admin, row.id, {"address": f"{price} Comp St", "sale_price": price, "bedrooms": 3})
    return row.id, admin


def test_worker_records_range_and_is_idempotent(db, make_actor):
    appraisal_id, admin = _submitted(db, make_actor)

    out = value_appraisal(appraisal_id)
    assert out["ok"] is True
    assert out["valuation"]["point_estimate"] == 740000

    row = AppraisalStore(db).reload(appraisal_id)
    assert row.status == PROCESSING
    assert row.estimated_value_min < 740000 < row.estimated_value_max

    AppraisalLifecycle(db).publish(admin, appraisal_id)

    # redelivery after the appraisal moved on changes nothing
    assert value_appraisal(appraisal_id) == {"ok": True, "skipped": "invalid_transition"}
    assert AppraisalStore(db).reload(appraisal_id).status == PUBLISHED


def test_worker_defers_without_comparables(db, make_actor):
    appraisal_id, _ = _submitted(db, make_actor, comps=())
    out = value_appraisal(appraisal_id)
    assert out["ok"] is False
    assert out["reason"] == "validation_error"
    assert AppraisalStore(db).reload(appraisal_id).estimated_value_min is None


def test_worker_skips_unknown_appraisal():
    assert value_appraisal("no-such-appraisal") == {"ok": True, "skipped": "not_found"}


def test_enqueue_without_broker_does_not_dispatch(monkeypatch):
    sent = []
    monkeypatch.setattr(appraisal_tasks.settings, "celery_broker_url", None)
    monkeypatch.setattr(appraisal_tasks.run_valuation, "delay", lambda **kw: sent.append(kw))
    enqueue_valuation("a-1")
    assert sent == []


def test_enqueue_with_broker_dispatches(monkeypatch):
    sent = []
    monkeypatch.setattr(appraisal_tasks.settings, "celery_broker_url", "memory://")
    monkeypatch.setattr(appraisal_tasks.run_valuation, "delay", lambda **kw: sent.append(kw))
    enqueue_valuation("a-1")
    assert sent == [{"appraisal_id": "a-1"}]
