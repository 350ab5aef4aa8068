# backend/app/routers/admin.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal, require_admin
from ..db import get_db
from ..deps import get_relay, get_reports
from ..domain.audit import audit_write
from ..domain.errors import NotFound, ValidationError
from ..domain.lifecycle import Role
from ..models import AuditEvent, Profile
from ..schemas import AuditEventOut, ProfileOut, RoleUpdate
from ..services.change_relay import UPDATE, ChangeRelay
from ..services.report_orchestrator import ReportOrchestrator

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=list[ProfileOut])
def list_users(
    role: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=500),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
):
    q = select(Profile).order_by(Profile.created_at.asc())
    if role:
        q = q.where(Profile.role == Role.parse(role).value)
    return list(db.scalars(q.limit(limit)).all())


@router.patch("/users/{user_id}/role", response_model=ProfileOut)
def change_role(
    user_id: str,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
    relay: ChangeRelay = Depends(get_relay),
):
    profile = db.get(Profile, user_id)
    if profile is None:
        raise NotFound("user not found", details={"user_id": user_id})

    new_role = Role.parse(payload.role)
    if profile.id == p.user_id and new_role != Role.admin:
        raise ValidationError("admins cannot demote themselves")

    before = {"role": profile.role}
    profile.role = new_role.value
    audit_write(
        db,
        actor_id=p.user_id,
        action="profile_role_changed",
        entity_type="profile",
        entity_id=profile.id,
        before=before,
        after={"role": profile.role},
    )
    db.commit()
    db.refresh(profile)

    log.info(
        "role changed %s -> %s",
        before["role"],
        profile.role,
        extra={"user_id": p.user_id, "role": p.role.value},
    )
    relay.emit(UPDATE, "profiles", {"id": profile.id, "email": profile.email, "role": profile.role})
    return profile


@router.delete("/reports/{report_id}")
def delete_report(
    report_id: str,
    p: Principal = Depends(require_admin),
    reports: ReportOrchestrator = Depends(get_reports),
):
    reports.delete_report(p.actor, report_id)
    return {"ok": True, "deleted": report_id}


@router.get("/audit", response_model=list[AuditEventOut])
def list_audit(
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=500),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
):
    q = select(AuditEvent).order_by(desc(AuditEvent.id))
    if entity_type:
        q = q.where(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.where(AuditEvent.entity_id == entity_id)
    if action:
        q = q.where(AuditEvent.action == action)
    return list(db.scalars(q.limit(limit)).all())
