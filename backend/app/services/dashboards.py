# backend/app/services/dashboards.py
from __future__ import annotations

from typing import Any, Dict, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..domain.lifecycle import CLAIMED, COMPLETED, STATUSES, Role
from ..models import Profile, Report
from .appraisal_store import AppraisalStore

RECENT_LIMIT = 5


def _status_counts(raw: dict[str, int]) -> dict[str, int]:
    return {s: int(raw.get(s, 0)) for s in STATUSES}


def _summary(row) -> dict[str, Any]:
    return {
        "id": row.id,
        "property_address": row.property_address,
        "status": row.status,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class Dashboard(Protocol):
    role: Role

    def build(self, db: Session, user_id: str) -> dict[str, Any]: ...


class CustomerDashboard:
    role = Role.customer

    def build(self, db: Session, user_id: str) -> dict[str, Any]:
        store = AppraisalStore(db)
        return {
            "role": self.role.value,
            "appraisals_by_status": _status_counts(store.count_by_status(customer_id=user_id)),
            "recent_appraisals": [_summary(r) for r in store.list_for_customer(user_id, limit=RECENT_LIMIT)],
        }


class AgentDashboard:
    role = Role.agent

    def build(self, db: Session, user_id: str) -> dict[str, Any]:
        store = AppraisalStore(db)
        mine = store.count_by_status(agent_id=user_id)
        return {
            "role": self.role.value,
            "feed_size": len(store.feed(limit=1000)),
            "claimed": int(mine.get(CLAIMED, 0)),
            "completed": int(mine.get(COMPLETED, 0)),
            "recent_claims": [_summary(r) for r in store.list_for_agent(user_id, limit=RECENT_LIMIT)],
        }


class AdminDashboard:
    role = Role.admin

    def build(self, db: Session, user_id: str) -> dict[str, Any]:
        store = AppraisalStore(db)
        users = {
            str(r): int(n)
            for r, n in db.execute(select(Profile.role, func.count(Profile.id)).group_by(Profile.role)).all()
        }
        return {
            "role": self.role.value,
            "appraisals_by_status": _status_counts(store.count_by_status()),
            "users_by_role": {r.value: users.get(r.value, 0) for r in Role},
            "reports": int(db.scalar(select(func.count(Report.id))) or 0),
        }


DASHBOARDS: Dict[Role, Dashboard] = {
    Role.customer: CustomerDashboard(),
    Role.agent: AgentDashboard(),
    Role.admin: AdminDashboard(),
}


def dashboard_for(role: Role) -> Dashboard:
    return DASHBOARDS[role]
