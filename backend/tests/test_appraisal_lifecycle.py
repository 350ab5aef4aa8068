# backend/tests/test_appraisal_lifecycle.py
from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from app.domain.errors import AlreadyClaimed, Forbidden, InvalidTransition, NotFound, ValidationError
from app.domain.lifecycle import CANCELLED, CLAIMED, COMPLETED, PROCESSING, PUBLISHED, agent_matches_status
from app.models import Appraisal, AuditEvent
from app.services.change_relay import ChangeRelay
from app.services.appraisal_store import appraisal_dict
from app.services.lifecycle_service import AppraisalLifecycle


def _published(engine: AppraisalLifecycle, customer, admin, address="789 Main St") -> Appraisal:
    row = engine.create(customer, property_address=address, bedrooms=3, bathrooms=2)
    engine.submit(customer, row.id)
    engine.record_valuation(admin, row.id, estimated_value_min=700000, estimated_value_max=780000)
    return engine.publish(admin, row.id)


def test_create_requires_address(db, make_actor):
    customer = make_actor("customer")
    engine = AppraisalLifecycle(db)
    with pytest.raises(ValidationError):
        engine.create(customer, property_address="   ")


def test_only_customers_create(db, make_actor):
    agent = make_actor("agent")
    with pytest.raises(Forbidden):
        AppraisalLifecycle(db).create(agent, property_address="1 Elm St")


def test_submit_calls_valuation_trigger_after_commit(db, make_actor):
    customer = make_actor("customer")
    seen = []
    engine = AppraisalLifecycle(db, valuation_trigger=seen.append)

    row = engine.create(customer, property_address="12 Oak Ave")
    engine.submit(customer, row.id)

    assert seen == [row.id]
    assert row.status == PROCESSING


def test_publish_requires_valuation(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="3 Pine Rd")
    engine.submit(customer, row.id)

    with pytest.raises(InvalidTransition) as ei:
        engine.publish(admin, row.id)
    assert ei.value.details["reason"] == "valuation_missing"


def test_record_valuation_rejects_inverted_range(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="4 Pine Rd")
    engine.submit(customer, row.id)
    with pytest.raises(ValidationError):
        engine.record_valuation(admin, row.id, estimated_value_min=900, estimated_value_max=100)


def test_claim_then_second_claim_is_already_claimed(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    agent_a, agent_b = make_actor("agent", "agent-a"), make_actor("agent", "agent-b")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)

    claimed = engine.claim(agent_a, row.id)
    assert claimed.status == CLAIMED
    assert claimed.agent_id == agent_a.id
    assert claimed.claimed_at is not None

    with pytest.raises(AlreadyClaimed):
        engine.claim(agent_b, row.id)

    assert engine.store.reload(row.id).agent_id == agent_a.id


def test_customer_cannot_claim(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    with pytest.raises(Forbidden):
        engine.claim(customer, row.id)


def test_complete_by_other_agent_is_forbidden(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    agent_a, agent_b = make_actor("agent"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent_a, row.id)

    with pytest.raises(Forbidden):
        engine.complete(agent_b, row.id, final_value=750000)


def test_complete_unclaimed_is_invalid_transition(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)

    with pytest.raises(InvalidTransition):
        engine.complete(agent, row.id, final_value=750000)


def test_complete_requires_final_value(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent, row.id)

    with pytest.raises(ValidationError):
        engine.complete(agent, row.id, final_value=None)

    done = engine.complete(agent, row.id, final_value=750000, completion_notes="inspected")
    assert done.status == COMPLETED
    assert done.final_value == 750000
    assert done.completed_at is not None


def test_cancel_before_claim_then_terminal(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)

    cancelled = engine.cancel(customer, row.id)
    assert cancelled.status == CANCELLED
    assert cancelled.agent_id is None

    with pytest.raises(InvalidTransition):
        engine.claim(agent, row.id)
    with pytest.raises(InvalidTransition):
        engine.cancel(admin, row.id)


def test_cancel_after_claim_is_rejected(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent, row.id)

    with pytest.raises(InvalidTransition):
        engine.cancel(customer, row.id)


def test_update_details_only_in_draft(db, make_actor):
    customer = make_actor("customer")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="5 Birch Ln")

    row = engine.update_details(customer, row.id, {"bedrooms": 4, "status": "completed"})
    assert row.bedrooms == 4
    assert row.status == "draft"

    engine.submit(customer, row.id)
    with pytest.raises(InvalidTransition):
        engine.update_details(customer, row.id, {"bedrooms": 5})


def test_visibility(db, make_actor):
    customer, other, admin = make_actor("customer"), make_actor("customer"), make_actor("admin")
    agent = make_actor("agent")
    engine = AppraisalLifecycle(db)
    draft = engine.create(customer, property_address="6 Cedar Ct")

    with pytest.raises(Forbidden):
        engine.get_for_actor(other, draft.id)
    with pytest.raises(Forbidden):
        engine.get_for_actor(agent, draft.id)
    assert engine.get_for_actor(admin, draft.id).id == draft.id

    with pytest.raises(NotFound):
        engine.get_for_actor(admin, "missing-id")


def test_feed_lists_only_unclaimed_published(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    open_row = _published(engine, customer, admin, address="7 Feed St")
    taken = _published(engine, customer, admin, address="8 Feed St")
    engine.claim(agent, taken.id)

    ids = {r.id for r in engine.feed(agent)}
    assert open_row.id in ids
    assert taken.id not in ids

    with pytest.raises(Forbidden):
        engine.feed(customer)


def test_agent_id_matches_status_after_every_step(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent, row.id)
    engine.complete(agent, row.id, final_value=1)

    for r in db.scalars(select(Appraisal)).all():
        assert agent_matches_status(r.status, r.agent_id), (r.id, r.status, r.agent_id)


def test_transitions_are_recorded_and_audited(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent, row.id)

    events = engine.events(admin, row.id)
    assert [e.transition for e in events] == ["create", "submit", "record_valuation", "publish", "claim"]
    assert events[-1].from_status == PUBLISHED
    assert events[-1].to_status == CLAIMED
    assert json.loads(events[-1].payload_json)["role"] == "agent"

    audit = db.scalars(
        select(AuditEvent).where(AuditEvent.entity_id == row.id, AuditEvent.action == "appraisal_claim")
    ).all()
    assert len(audit) == 1
    assert audit[0].actor_id == agent.id
    assert json.loads(audit[0].before_json)["status"] == PUBLISHED
    assert json.loads(audit[0].after_json)["agent_id"] == agent.id


def test_denied_attempts_write_nothing(db, make_actor):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    before = len(engine.events(admin, row.id))

    with pytest.raises(Forbidden):
        engine.publish(agent, row.id)
    assert len(engine.events(admin, row.id)) == before


def test_changes_reach_the_relay(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    relay = ChangeRelay()
    engine = AppraisalLifecycle(db, relay=relay)

    with relay.open("appraisals", {"customer_id": customer.id}) as sub:
        row = engine.create(customer, property_address="9 Relay Rd")
        engine.submit(customer, row.id)

        first, second = sub.get(timeout=1), sub.get(timeout=1)
        assert (first.kind, first.record["status"]) == ("insert", "draft")
        assert (second.kind, second.record["status"]) == ("update", PROCESSING)
        assert sub.get(timeout=0.05) is None


def test_comparables_only_admin_or_claimant(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    agent, other_agent = make_actor("agent"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)

    engine.add_comparable(admin, row.id, {"address": "1 Comp St", "sale_price": 720000})
    with pytest.raises(Forbidden):
        engine.add_comparable(agent, row.id, {"address": "2 Comp St", "sale_price": 730000})

    engine.claim(agent, row.id)
    engine.add_comparable(agent, row.id, {"address": "2 Comp St", "sale_price": 730000})
    with pytest.raises(Forbidden):
        engine.add_comparable(other_agent, row.id, {"address": "3 Comp St", "sale_price": 1})
    with pytest.raises(ValidationError):
        engine.add_comparable(agent, row.id, {"address": "4 Comp St", "sale_price": 0})

    assert [c.address for c in engine.comparables(customer, row.id)] == ["1 Comp St", "2 Comp St"]


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), -float("inf"), 0, -5])
def test_complete_rejects_non_finite_or_non_positive_value(db, make_actor, bad):
    customer, admin, agent = make_actor("customer"), make_actor("admin"), make_actor("agent")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    engine.claim(agent, row.id)

    with pytest.raises(ValidationError):
        engine.complete(agent, row.id, final_value=bad)

    fresh = engine.store.reload(row.id)
    assert fresh.status == CLAIMED
    assert fresh.final_value is None


@pytest.mark.parametrize(
    "lo,hi",
    [(float("nan"), 780000), (700000, float("nan")), (700000, float("inf")), (float("-inf"), 780000)],
)
def test_record_valuation_rejects_non_finite_bounds(db, make_actor, lo, hi):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = engine.create(customer, property_address="11 Pine Rd")
    engine.submit(customer, row.id)

    with pytest.raises(ValidationError):
        engine.record_valuation(admin, row.id, estimated_value_min=lo, estimated_value_max=hi)

    fresh = engine.store.reload(row.id)
    assert (fresh.estimated_value_min, fresh.estimated_value_max) == (None, None)


def test_comparable_with_nan_price_is_rejected(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    row = _published(engine, customer, admin)
    with pytest.raises(ValidationError):
        engine.add_comparable(admin, row.id, {"address": "1 Comp St", "sale_price": float("nan")})


def test_create_then_cancel_leaves_other_fields_unchanged(db, make_actor):
    customer = make_actor("customer")
    engine = AppraisalLifecycle(db)
    row = engine.create(
        customer,
        property_address="12 Quiet Way",
        property_type="house",
        bedrooms=3,
        bathrooms=2,
        land_size=450,
    )
    created = appraisal_dict(engine.store.reload(row.id))

    engine.cancel(customer, row.id)
    cancelled = appraisal_dict(engine.store.reload(row.id))

    assert cancelled["status"] == CANCELLED
    for key in (
        "customer_id",
        "agent_id",
        "property_address",
        "property_type",
        "bedrooms",
        "bathrooms",
        "land_size",
        "estimated_value_min",
        "estimated_value_max",
        "final_value",
        "completion_notes",
        "created_at",
        "claimed_at",
        "completed_at",
    ):
        assert cancelled[key] == created[key], key


def test_search_matches_address_within_the_actors_scope(db, make_actor):
    customer, other, admin = make_actor("customer"), make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    mine = engine.create(customer, property_address="12 Kowhai Lane")
    engine.create(customer, property_address="40 Rimu Road")
    theirs = engine.create(other, property_address="14 Kowhai Lane")

    found = {r.id for r in engine.list_for_actor(customer, q="kowhai")}
    assert found == {mine.id}

    admin_found = {r.id for r in engine.list_for_actor(admin, q="KOWHAI LANE")}
    assert {mine.id, theirs.id} <= admin_found


def test_search_combines_term_and_status(db, make_actor):
    customer, admin = make_actor("customer"), make_actor("admin")
    engine = AppraisalLifecycle(db)
    draft = engine.create(customer, property_address="3 Totara Terrace")
    live = _published(engine, customer, admin, address="5 Totara Terrace")

    assert [r.id for r in engine.list_for_actor(customer, q="totara", status=PUBLISHED)] == [live.id]
    assert draft.id in {r.id for r in engine.list_for_actor(customer, q="totara")}


def test_search_wildcards_are_literal(db, make_actor):
    customer = make_actor("customer")
    engine = AppraisalLifecycle(db)
    engine.create(customer, property_address="9 Matai Street")

    assert list(engine.list_for_actor(customer, q="%%")) == []


def test_search_term_too_short_is_rejected(db, make_actor):
    customer = make_actor("customer")
    with pytest.raises(ValidationError):
        AppraisalLifecycle(db).list_for_actor(customer, q="a")
