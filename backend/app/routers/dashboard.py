# backend/app/routers/dashboard.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..services.dashboards import dashboard_for

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=dict)
def dashboard(db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return dashboard_for(p.role).build(db, p.user_id)
