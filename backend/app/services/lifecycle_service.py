# backend/app/services/lifecycle_service.py
from __future__ import annotations

import json
import logging
import math
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.errors import AlreadyClaimed, Forbidden, InvalidTransition, ValidationError
from ..domain.lifecycle import (
    CLAIMED,
    DRAFT,
    PROCESSING,
    PUBLISHED,
    TERMINAL,
    Actor,
    AppraisalSnapshot,
    Role,
    check_transition,
    get_rule,
)
from ..models import Appraisal, AppraisalEvent, ComparableProperty
from .appraisal_store import DESCRIPTIVE_FIELDS, AppraisalStore, appraisal_dict
from .change_relay import INSERT, UPDATE, ChangeRelay
from .valuation import ValuationResult, estimate_value

log = logging.getLogger(__name__)

ValuationTrigger = Callable[[str], None]

COMPARABLE_FIELDS = ("address", "sale_price", "property_type", "bedrooms", "bathrooms", "land_size", "sold_date", "distance_km")


def _utcnow() -> datetime:
    return datetime.utcnow()


def _snapshot(row: Appraisal) -> AppraisalSnapshot:
    return AppraisalSnapshot(
        id=str(row.id),
        status=str(row.status),
        customer_id=str(row.customer_id),
        agent_id=str(row.agent_id) if row.agent_id is not None else None,
    )


def _positive(value: Any) -> bool:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(v) and v > 0


def _actor_id(actor: Actor) -> Optional[str]:
    return None if actor.is_system else actor.id


class AppraisalLifecycle:
    """
    Applies lifecycle transitions to appraisals.

    Every transition is a single conditional UPDATE guarded by the expected
    status (and agent for claim/complete). When it hits zero rows the row is
    re-read and the right error raised, so concurrent callers never overwrite
    each other.

    Commits on success; change events go to the relay after the commit.
    """

    def __init__(
        self,
        db: Session,
        *,
        relay: Optional[ChangeRelay] = None,
        valuation_trigger: Optional[ValuationTrigger] = None,
    ):
        self.db = db
        self.store = AppraisalStore(db)
        self.relay = relay
        self.valuation_trigger = valuation_trigger

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def can_view(self, actor: Actor, row: Appraisal) -> bool:
        if actor.role == Role.admin:
            return True
        if actor.role == Role.customer:
            return row.customer_id == actor.id
        # agents: the open feed plus whatever they claimed
        if row.agent_id == actor.id:
            return True
        return row.status == PUBLISHED and row.agent_id is None

    def get_for_actor(self, actor: Actor, appraisal_id: str) -> Appraisal:
        row = self.store.get(appraisal_id)
        if not self.can_view(actor, row):
            self._deny(actor, "view", row, "not visible to this actor")
        return row

    def list_for_actor(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        q: Optional[str] = None,
        limit: int = 200,
    ) -> Sequence[Appraisal]:
        term = (q or "").strip() or None
        if term is not None and len(term) < 2:
            raise ValidationError("search term must be at least 2 characters", details={"field": "q"})
        if actor.role == Role.customer:
            return self.store.search(term=term, status=status, customer_id=actor.id, limit=limit)
        if actor.role == Role.agent:
            return self.store.search(term=term, status=status, agent_id=actor.id, limit=limit)
        return self.store.search(term=term, status=status, limit=limit)

    def feed(self, actor: Actor, *, limit: int = 200) -> Sequence[Appraisal]:
        if actor.role not in (Role.agent, Role.admin):
            raise Forbidden("only agents can browse the appraisal feed")
        return self.store.feed(limit=limit)

    def events(self, actor: Actor, appraisal_id: str) -> Sequence[AppraisalEvent]:
        self.get_for_actor(actor, appraisal_id)
        q = (
            select(AppraisalEvent)
            .where(AppraisalEvent.appraisal_id == str(appraisal_id))
            .order_by(AppraisalEvent.id.asc())
        )
        return self.db.scalars(q).all()

    # ------------------------------------------------------------------
    # create / edit
    # ------------------------------------------------------------------
    def create(
        self,
        actor: Actor,
        *,
        property_address: Optional[str],
        property_type: Optional[str] = None,
        bedrooms: Optional[int] = None,
        bathrooms: Optional[float] = None,
        land_size: Optional[float] = None,
        additional_notes: Optional[str] = None,
    ) -> Appraisal:
        if actor.role != Role.customer:
            self._deny(actor, "create", None, "only customers request appraisals")

        address = (property_address or "").strip()
        if not address:
            raise ValidationError("property_address is required", details={"field": "property_address"})
        self._validate_attributes(bedrooms=bedrooms, bathrooms=bathrooms, land_size=land_size)

        row = self.store.insert(
            status=DRAFT,
            customer_id=actor.id,
            property_address=address,
            property_type=property_type,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            land_size=land_size,
            additional_notes=additional_notes,
        )
        after = appraisal_dict(row)
        self._record(actor, row.id, "create", None, DRAFT, after=after, before=None)
        self.db.commit()

        log.info("appraisal created", extra={"appraisal_id": row.id, "user_id": actor.id, "transition": "create"})
        self._emit(INSERT, after)
        return row

    def update_details(self, actor: Actor, appraisal_id: str, fields: dict[str, Any]) -> Appraisal:
        row = self.store.get(appraisal_id)
        if actor.role != Role.customer or row.customer_id != actor.id:
            self._deny(actor, "update", row, "only the owning customer may edit details")
        if row.status != DRAFT:
            raise InvalidTransition("update", row.status)

        values = {k: v for k, v in fields.items() if k in DESCRIPTIVE_FIELDS}
        if not values:
            return row
        if "property_address" in values:
            values["property_address"] = (values["property_address"] or "").strip()
            if not values["property_address"]:
                raise ValidationError("property_address is required", details={"field": "property_address"})
        self._validate_attributes(
            bedrooms=values.get("bedrooms"),
            bathrooms=values.get("bathrooms"),
            land_size=values.get("land_size"),
        )

        before = appraisal_dict(row)
        n = self.store.conditional_update(row.id, where_status=DRAFT, values=values)
        if n == 0:
            row = self.store.reload(row.id)
            raise InvalidTransition("update", row.status)
        return self._finish(actor, row, "update", before)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def submit(self, actor: Actor, appraisal_id: str) -> Appraisal:
        rule = get_rule("submit")
        row = self.store.get(appraisal_id)
        self._check(rule, actor, row)

        before = appraisal_dict(row)
        n = self.store.conditional_update(row.id, where_status=DRAFT, values={"status": rule.to_status})
        self._ensure_applied(n, rule.name, row)
        row = self._finish(actor, row, rule.name, before)

        if self.valuation_trigger is not None:
            # after commit: the worker must be able to see the processing row
            self.valuation_trigger(row.id)
        return row

    def record_valuation(
        self,
        actor: Actor,
        appraisal_id: str,
        *,
        estimated_value_min: float,
        estimated_value_max: float,
    ) -> Appraisal:
        if actor.role != Role.admin:
            self._deny(actor, "record_valuation", None, "only admins or the valuation worker record valuations")

        if not (_positive(estimated_value_min) and _positive(estimated_value_max)):
            raise ValidationError(
                "estimated values must be positive finite numbers",
                details={"estimated_value_min": str(estimated_value_min), "estimated_value_max": str(estimated_value_max)},
            )
        lo, hi = float(estimated_value_min), float(estimated_value_max)
        if lo > hi:
            raise ValidationError(
                "estimated_value_min must not exceed estimated_value_max",
                details={"estimated_value_min": lo, "estimated_value_max": hi},
            )

        row = self.store.get(appraisal_id)
        if row.status != PROCESSING:
            raise InvalidTransition("record_valuation", row.status)

        before = appraisal_dict(row)
        n = self.store.conditional_update(
            row.id,
            where_status=PROCESSING,
            values={"estimated_value_min": lo, "estimated_value_max": hi},
        )
        self._ensure_applied(n, "record_valuation", row)
        row = self._finish(actor, row, "record_valuation", before)

        if settings.valuation_auto_publish:
            row = self.publish(actor, row.id)
        return row

    def run_valuation(self, actor: Actor, appraisal_id: str) -> ValuationResult:
        """Values the appraisal from its comparables and records the range."""
        row = self.store.get(appraisal_id)
        if row.status != PROCESSING:
            raise InvalidTransition("record_valuation", row.status)

        result = estimate_value(row, self.store.list_comparables(row.id))
        self.record_valuation(
            actor,
            row.id,
            estimated_value_min=result.estimated_value_min,
            estimated_value_max=result.estimated_value_max,
        )
        return result

    def publish(self, actor: Actor, appraisal_id: str) -> Appraisal:
        rule = get_rule("publish")
        row = self.store.get(appraisal_id)
        self._check(rule, actor, row)

        if row.estimated_value_min is None or row.estimated_value_max is None:
            raise InvalidTransition(rule.name, row.status, reason="valuation_missing")

        before = appraisal_dict(row)
        n = self.store.conditional_update(row.id, where_status=PROCESSING, values={"status": rule.to_status})
        self._ensure_applied(n, rule.name, row)
        return self._finish(actor, row, rule.name, before)

    def claim(self, actor: Actor, appraisal_id: str) -> Appraisal:
        rule = get_rule("claim")
        row = self.store.get(appraisal_id)

        if actor.role not in rule.roles:
            self._deny(actor, rule.name, row, "only agents may claim")
        if row.agent_id is not None:
            raise AlreadyClaimed(row.id)
        self._check(rule, actor, row)

        before = appraisal_dict(row)
        n = self.store.conditional_update(
            row.id,
            where_status=PUBLISHED,
            agent_id=None,
            values={"status": rule.to_status, "agent_id": actor.id, "claimed_at": _utcnow()},
        )
        if n == 0:
            # lost the race, or the row moved on since we read it
            self.db.rollback()
            row = self.store.reload(row.id)
            if row.agent_id is not None:
                log.info(
                    "claim lost to another agent",
                    extra={"appraisal_id": row.id, "user_id": actor.id, "transition": rule.name},
                )
                raise AlreadyClaimed(row.id)
            raise InvalidTransition(rule.name, row.status)
        return self._finish(actor, row, rule.name, before)

    def complete(
        self,
        actor: Actor,
        appraisal_id: str,
        *,
        final_value: Optional[float],
        completion_notes: Optional[str] = None,
    ) -> Appraisal:
        rule = get_rule("complete")
        row = self.store.get(appraisal_id)
        self._check(rule, actor, row)

        if final_value is None or not _positive(final_value):
            raise ValidationError("final_value is required to complete an appraisal", details={"field": "final_value"})

        before = appraisal_dict(row)
        n = self.store.conditional_update(
            row.id,
            where_status=CLAIMED,
            agent_id=actor.id,
            values={
                "status": rule.to_status,
                "final_value": float(final_value),
                "completion_notes": completion_notes,
                "completed_at": _utcnow(),
            },
        )
        self._ensure_applied(n, rule.name, row)
        return self._finish(actor, row, rule.name, before)

    def cancel(self, actor: Actor, appraisal_id: str) -> Appraisal:
        rule = get_rule("cancel")
        row = self.store.get(appraisal_id)
        self._check(rule, actor, row)

        before = appraisal_dict(row)
        n = self.store.conditional_update(
            row.id,
            where_status=row.status,
            agent_id=None,
            values={"status": rule.to_status, "cancelled_at": _utcnow()},
        )
        self._ensure_applied(n, rule.name, row)
        return self._finish(actor, row, rule.name, before)

    # ------------------------------------------------------------------
    # comparables
    # ------------------------------------------------------------------
    def add_comparable(self, actor: Actor, appraisal_id: str, fields: dict[str, Any]) -> ComparableProperty:
        row = self.store.get(appraisal_id)
        allowed = actor.role == Role.admin or (
            actor.role == Role.agent and row.agent_id == actor.id and row.status == CLAIMED
        )
        if not allowed:
            self._deny(actor, "add_comparable", row, "only admins or the claiming agent add comparables")
        if row.status in TERMINAL:
            raise InvalidTransition("add_comparable", row.status)

        values = {k: fields.get(k) for k in COMPARABLE_FIELDS if fields.get(k) is not None}
        if not (values.get("address") or "").strip():
            raise ValidationError("comparable address is required", details={"field": "address"})
        if not _positive(values.get("sale_price")):
            raise ValidationError("comparable sale_price must be positive", details={"field": "sale_price"})

        comp = self.store.add_comparable(row.id, **values)
        audit_write(
            self.db,
            actor_id=_actor_id(actor),
            action="comparable_added",
            entity_type="comparable_property",
            entity_id=str(comp.id),
            after={"appraisal_id": row.id, **{k: str(v) for k, v in values.items()}},
        )
        self.db.commit()
        if self.relay is not None:
            self.relay.emit(INSERT, "comparable_properties", {"id": comp.id, "appraisal_id": row.id, **values})
        return comp

    def comparables(self, actor: Actor, appraisal_id: str) -> Sequence[ComparableProperty]:
        row = self.get_for_actor(actor, appraisal_id)
        return self.store.list_comparables(row.id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _validate_attributes(**attrs: Any) -> None:
        for k, v in attrs.items():
            if v is None:
                continue
            if not math.isfinite(float(v)) or float(v) < 0:
                raise ValidationError(f"{k} must be a non-negative number", details={"field": k})

    def _deny(self, actor: Actor, what: str, row: Optional[Appraisal], message: str) -> None:
        # wrong-actor attempts are security relevant; wrong-state ones are not
        log.warning(
            "forbidden %s: %s",
            what,
            message,
            extra={
                "user_id": actor.id or "system",
                "role": actor.role.value,
                "appraisal_id": row.id if row is not None else None,
                "transition": what,
            },
        )
        raise Forbidden(message, details={"transition": what})

    def _check(self, rule, actor: Actor, row: Appraisal) -> None:
        try:
            check_transition(rule, actor, _snapshot(row))
        except Forbidden as e:
            self._deny(actor, rule.name, row, e.message)

    def _ensure_applied(self, n: int, transition: str, row: Appraisal) -> None:
        if n == 1:
            return
        self.db.rollback()
        fresh = self.store.reload(row.id)
        raise InvalidTransition(transition, fresh.status)

    def _record(
        self,
        actor: Actor,
        appraisal_id: str,
        transition: str,
        from_status: Optional[str],
        to_status: str,
        *,
        before: Optional[dict[str, Any]],
        after: dict[str, Any],
    ) -> None:
        self.db.add(
            AppraisalEvent(
                appraisal_id=str(appraisal_id),
                actor_id=_actor_id(actor),
                transition=transition,
                from_status=from_status,
                to_status=to_status,
                payload_json=json.dumps({"role": actor.role.value}),
                created_at=_utcnow(),
            )
        )
        audit_write(
            self.db,
            actor_id=_actor_id(actor),
            action=f"appraisal_{transition}",
            entity_type="appraisal",
            entity_id=str(appraisal_id),
            before=before,
            after=after,
        )

    def _finish(self, actor: Actor, row: Appraisal, transition: str, before: dict[str, Any]) -> Appraisal:
        self.db.refresh(row)
        after = appraisal_dict(row)
        self._record(actor, row.id, transition, before.get("status"), row.status, before=before, after=after)
        self.db.commit()

        log.info(
            "appraisal %s: %s -> %s",
            transition,
            before.get("status"),
            row.status,
            extra={"appraisal_id": row.id, "user_id": actor.id or "system", "transition": transition},
        )
        self._emit(UPDATE, after, previous=before)
        return row

    def _emit(self, kind: str, record: dict[str, Any], previous: Optional[dict[str, Any]] = None) -> None:
        if self.relay is not None:
            self.relay.emit(kind, "appraisals", record, previous)
