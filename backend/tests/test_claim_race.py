# backend/tests/test_claim_race.py
from __future__ import annotations

import threading

import pytest

from app.db import SessionLocal
from app.domain.errors import AlreadyClaimed
from app.domain.lifecycle import CLAIMED, PUBLISHED
from app.services.appraisal_store import AppraisalStore
from app.services.lifecycle_service import AppraisalLifecycle


def _published_id(db, make_actor) -> str:
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="789 Main St")
    engine.submit(customer, row.id)
    engine.record_valuation(admin, row.id, estimated_value_min=700000, estimated_value_max=780000)
    engine.publish(admin, row.id)
    return row.id


def test_stale_reader_loses_the_claim(db, make_actor):
    appraisal_id = _published_id(db, make_actor)
    agent_a, agent_b = make_actor("agent", "race-a"), make_actor("agent", "race-b")

    sess_a, sess_b = SessionLocal(), SessionLocal()
    try:
        # B reads the row while it is still unclaimed
        assert AppraisalStore(sess_b).get(appraisal_id).agent_id is None

        AppraisalLifecycle(sess_a).claim(agent_a, appraisal_id)

        # B's cached row still says published/unassigned; the guarded UPDATE decides
        assert AppraisalStore(sess_b).get(appraisal_id).status == PUBLISHED
        with pytest.raises(AlreadyClaimed):
            AppraisalLifecycle(sess_b).claim(agent_b, appraisal_id)
    finally:
        sess_a.close()
        sess_b.close()

    row = AppraisalStore(db).reload(appraisal_id)
    assert row.status == CLAIMED
    assert row.agent_id == agent_a.id


def test_guarded_update_applies_once(db, make_actor):
    appraisal_id = _published_id(db, make_actor)
    agent_a, agent_b = make_actor("agent"), make_actor("agent")
    store = AppraisalStore(db)

    first = store.conditional_update(
        appraisal_id, where_status=PUBLISHED, agent_id=None, values={"status": CLAIMED, "agent_id": agent_a.id}
    )
    second = store.conditional_update(
        appraisal_id, where_status=PUBLISHED, agent_id=None, values={"status": CLAIMED, "agent_id": agent_b.id}
    )
    db.commit()

    assert (first, second) == (1, 0)
    assert store.reload(appraisal_id).agent_id == agent_a.id


def test_concurrent_claims_have_exactly_one_winner(db, make_actor):
    appraisal_id = _published_id(db, make_actor)
    agents = [make_actor("agent", f"racer-{i}") for i in range(8)]
    barrier = threading.Barrier(len(agents))
    outcomes: dict[str, str] = {}

    def attempt(agent):
        sess = SessionLocal()
        try:
            barrier.wait(timeout=5)
            AppraisalLifecycle(sess).claim(agent, appraisal_id)
            outcomes[agent.id] = "ok"
        except AlreadyClaimed:
            outcomes[agent.id] = "already"
        except Exception as e:  # surfaced through the assertion below
            outcomes[agent.id] = repr(e)
        finally:
            sess.close()

    threads = [threading.Thread(target=attempt, args=(a,)) for a in agents]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert sorted(outcomes.values()) == ["already"] * 7 + ["ok"]
    (winner,) = [aid for aid, res in outcomes.items() if res == "ok"]
    row = AppraisalStore(db).reload(appraisal_id)
    assert row.status == CLAIMED
    assert row.agent_id == winner
