# backend/app/domain/lifecycle.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import Forbidden, InvalidTransition, NotEligibleForReport

# -----------------------------------------------------------------------------
# Appraisal lifecycle
# -----------------------------------------------------------------------------
#   draft -> processing -> published -> claimed -> completed
#   draft | processing | published -> cancelled
#
# This module is pure: no session, no clock. The lifecycle service loads the
# row, asks this module whether the move is legal, then performs the write.
# -----------------------------------------------------------------------------


class Role(str, Enum):
    customer = "customer"
    agent = "agent"
    admin = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise Forbidden(f"unknown role: {value!r}")


DRAFT = "draft"
PROCESSING = "processing"
PUBLISHED = "published"
CLAIMED = "claimed"
COMPLETED = "completed"
CANCELLED = "cancelled"

STATUSES = (DRAFT, PROCESSING, PUBLISHED, CLAIMED, COMPLETED, CANCELLED)
TERMINAL: FrozenSet[str] = frozenset({COMPLETED, CANCELLED})
UNASSIGNED: FrozenSet[str] = frozenset({DRAFT, PROCESSING, PUBLISHED, CANCELLED})
ASSIGNED: FrozenSet[str] = frozenset({CLAIMED, COMPLETED})


@dataclass(frozen=True)
class TransitionRule:
    name: str
    from_statuses: FrozenSet[str]
    to_status: str
    roles: FrozenSet[Role]

    # customer-owned transitions must be performed by the owning customer
    owner_only_for_customer: bool = False
    # complete: only the agent recorded in agent_id
    claimant_only: bool = False


TRANSITIONS: Dict[str, TransitionRule] = {
    "submit": TransitionRule(
        name="submit",
        from_statuses=frozenset({DRAFT}),
        to_status=PROCESSING,
        roles=frozenset({Role.customer}),
        owner_only_for_customer=True,
    ),
    "publish": TransitionRule(
        name="publish",
        from_statuses=frozenset({PROCESSING}),
        to_status=PUBLISHED,
        roles=frozenset({Role.admin}),
    ),
    "claim": TransitionRule(
        name="claim",
        from_statuses=frozenset({PUBLISHED}),
        to_status=CLAIMED,
        roles=frozenset({Role.agent}),
    ),
    "complete": TransitionRule(
        name="complete",
        from_statuses=frozenset({CLAIMED}),
        to_status=COMPLETED,
        roles=frozenset({Role.agent}),
        claimant_only=True,
    ),
    "cancel": TransitionRule(
        name="cancel",
        from_statuses=frozenset({DRAFT, PROCESSING, PUBLISHED}),
        to_status=CANCELLED,
        roles=frozenset({Role.customer, Role.admin}),
        owner_only_for_customer=True,
    ),
}


def get_rule(transition: str) -> TransitionRule:
    rule = TRANSITIONS.get(transition)
    if rule is None:
        raise KeyError(f"unknown transition: {transition}")
    return rule


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_system(self) -> bool:
        return self.id == ""


# valuation worker: admin rights, no profile row behind it
SYSTEM_ACTOR = Actor(id="", role=Role.admin)


@dataclass(frozen=True)
class AppraisalSnapshot:
    """The fields the rules look at, detached from the ORM row."""

    id: str
    status: str
    customer_id: str
    agent_id: Optional[str]


def check_transition(rule: TransitionRule, actor: Actor, appraisal: AppraisalSnapshot) -> None:
    """
    Raises Forbidden or InvalidTransition; returns None when the move is legal.

    Order matters:
      1) role gate
      2) record ownership for customer-owned transitions
      3) state precondition
      4) claimant gate (complete)

    so a non-claimant agent completing a claimed appraisal is Forbidden, while
    any agent completing an unclaimed one is InvalidTransition.
    """
    if actor.role not in rule.roles:
        raise Forbidden(
            f"role {actor.role.value} may not {rule.name}",
            details={"transition": rule.name, "role": actor.role.value},
        )

    if rule.owner_only_for_customer and actor.role == Role.customer and actor.id != appraisal.customer_id:
        raise Forbidden(
            f"only the owning customer may {rule.name}",
            details={"transition": rule.name, "appraisal_id": appraisal.id},
        )

    if appraisal.status not in rule.from_statuses:
        raise InvalidTransition(rule.name, appraisal.status)

    if rule.claimant_only and actor.id != appraisal.agent_id:
        raise Forbidden(
            f"only the claiming agent may {rule.name}",
            details={"transition": rule.name, "appraisal_id": appraisal.id},
        )


def agent_matches_status(status: str, agent_id: Optional[str]) -> bool:
    if agent_id is None:
        return status in UNASSIGNED
    return status in ASSIGNED


# -----------------------------------------------------------------------------
# Reporting eligibility
# -----------------------------------------------------------------------------
REPORT_PREVIEW = "preview"
REPORT_FINAL = "final"


def report_kind_for(appraisal_id: str, status: str, *, preview: bool) -> str:
    """
    processing -> preview only
    completed  -> final (or a preview of it)
    anything else -> NotEligibleForReport
    """
    if status == COMPLETED:
        return REPORT_PREVIEW if preview else REPORT_FINAL
    if status == PROCESSING:
        if preview:
            return REPORT_PREVIEW
        raise NotEligibleForReport(appraisal_id, status, reason="preview_only")
    raise NotEligibleForReport(appraisal_id, status)
