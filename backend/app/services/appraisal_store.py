# backend/app/services/appraisal_store.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Sequence

from sqlalchemy import desc, func, or_, select, update
from sqlalchemy.orm import Session

from ..domain.errors import NotFound
from ..domain.lifecycle import PUBLISHED
from ..models import Appraisal, ComparableProperty

_UNSET = object()

DESCRIPTIVE_FIELDS = ("property_address", "property_type", "bedrooms", "bathrooms", "land_size", "additional_notes")


def appraisal_dict(row: Appraisal) -> dict[str, Any]:
    """Flat JSON-safe view used for audit before/after and change events."""
    out: dict[str, Any] = {}
    for col in Appraisal.__table__.columns:
        v = getattr(row, col.name)
        out[col.name] = v.isoformat() if isinstance(v, (datetime, date)) else v
    return out


class AppraisalStore:
    """
    Persistence for appraisals and their comparables.

    Holds the session it was built with; it never commits. The lifecycle
    service owns the transaction boundary.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---- appraisals ----
    def get(self, appraisal_id: str) -> Appraisal:
        row = self.db.get(Appraisal, str(appraisal_id))
        if row is None:
            raise NotFound("appraisal not found", details={"appraisal_id": str(appraisal_id)})
        return row

    def reload(self, appraisal_id: str) -> Appraisal:
        row = self.get(appraisal_id)
        self.db.refresh(row)
        return row

    def insert(self, **fields: Any) -> Appraisal:
        now = datetime.utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        row = Appraisal(**fields)
        self.db.add(row)
        self.db.flush()
        return row

    def list_for_customer(self, customer_id: str, *, limit: int = 200) -> Sequence[Appraisal]:
        q = (
            select(Appraisal)
            .where(Appraisal.customer_id == customer_id)
            .order_by(desc(Appraisal.created_at), desc(Appraisal.id))
            .limit(int(limit))
        )
        return self.db.scalars(q).all()

    def list_for_agent(self, agent_id: str, *, limit: int = 200) -> Sequence[Appraisal]:
        q = (
            select(Appraisal)
            .where(Appraisal.agent_id == agent_id)
            .order_by(desc(Appraisal.created_at), desc(Appraisal.id))
            .limit(int(limit))
        )
        return self.db.scalars(q).all()

    def feed(self, *, limit: int = 200) -> Sequence[Appraisal]:
        q = (
            select(Appraisal)
            .where(Appraisal.status == PUBLISHED, Appraisal.agent_id.is_(None))
            .order_by(desc(Appraisal.created_at), desc(Appraisal.id))
            .limit(int(limit))
        )
        return self.db.scalars(q).all()

    def search(
        self,
        *,
        term: Optional[str] = None,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 200,
    ) -> Sequence[Appraisal]:
        """Case-insensitive match on address or property type, newest first."""
        q = select(Appraisal).order_by(desc(Appraisal.created_at), desc(Appraisal.id))
        if customer_id is not None:
            q = q.where(Appraisal.customer_id == customer_id)
        if agent_id is not None:
            q = q.where(Appraisal.agent_id == agent_id)
        if status:
            q = q.where(Appraisal.status == status)
        if term:
            q = q.where(
                or_(
                    Appraisal.property_address.icontains(term, autoescape=True),
                    Appraisal.property_type.icontains(term, autoescape=True),
                )
            )
        return self.db.scalars(q.limit(int(limit))).all()

    def count_by_status(self, **where: Any) -> dict[str, int]:
        q = select(Appraisal.status, func.count(Appraisal.id)).group_by(Appraisal.status)
        for k, v in where.items():
            q = q.where(getattr(Appraisal, k) == v)
        return {str(s): int(n) for s, n in self.db.execute(q).all()}

    def conditional_update(
        self,
        appraisal_id: str,
        *,
        where_status: str,
        agent_id: Any = _UNSET,
        values: dict[str, Any],
    ) -> int:
        """
        Single UPDATE ... WHERE id=? AND status=? [AND agent_id IS NULL | = ?].

        Returns the affected row count. The storage engine's row-level
        atomicity decides races; callers inspect 0 vs 1 instead of reading
        first.
        """
        stmt = update(Appraisal).where(
            Appraisal.id == str(appraisal_id),
            Appraisal.status == where_status,
        )
        if agent_id is None:
            stmt = stmt.where(Appraisal.agent_id.is_(None))
        elif agent_id is not _UNSET:
            stmt = stmt.where(Appraisal.agent_id == str(agent_id))

        vals = dict(values)
        vals.setdefault("updated_at", datetime.utcnow())
        res = self.db.execute(stmt.values(**vals).execution_options(synchronize_session=False))
        return int(res.rowcount or 0)

    # ---- comparables (insert + query only) ----
    def add_comparable(self, appraisal_id: str, **fields: Any) -> ComparableProperty:
        row = ComparableProperty(appraisal_id=str(appraisal_id), created_at=datetime.utcnow(), **fields)
        self.db.add(row)
        self.db.flush()
        return row

    def list_comparables(self, appraisal_id: str) -> Sequence[ComparableProperty]:
        q = (
            select(ComparableProperty)
            .where(ComparableProperty.appraisal_id == str(appraisal_id))
            .order_by(ComparableProperty.id.asc())
        )
        return self.db.scalars(q).all()
