# backend/app/deps.py
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .db import get_db
from .services.change_relay import ChangeRelay
from .services.lifecycle_service import AppraisalLifecycle, ValuationTrigger
from .services.property_service import PropertyService
from .services.report_orchestrator import ArtifactStorage, Renderer, ReportOrchestrator
from .services.team_service import TeamService

# Process-wide collaborators live on app.state (set in main.create_app);
# tests swap them there instead of patching modules.


def get_relay(request: Request) -> ChangeRelay:
    return request.app.state.change_relay


def get_renderer(request: Request) -> Renderer:
    return request.app.state.report_renderer


def get_storage(request: Request) -> ArtifactStorage:
    return request.app.state.report_storage


def get_valuation_trigger(request: Request) -> ValuationTrigger | None:
    return getattr(request.app.state, "valuation_trigger", None)


def get_lifecycle(
    db: Session = Depends(get_db),
    relay: ChangeRelay = Depends(get_relay),
    trigger: ValuationTrigger | None = Depends(get_valuation_trigger),
) -> AppraisalLifecycle:
    return AppraisalLifecycle(db, relay=relay, valuation_trigger=trigger)


def get_reports(
    db: Session = Depends(get_db),
    renderer: Renderer = Depends(get_renderer),
    storage: ArtifactStorage = Depends(get_storage),
    relay: ChangeRelay = Depends(get_relay),
) -> ReportOrchestrator:
    return ReportOrchestrator(db, renderer=renderer, storage=storage, relay=relay)


def get_properties(
    db: Session = Depends(get_db),
    storage: ArtifactStorage = Depends(get_storage),
) -> PropertyService:
    return PropertyService(db, storage=storage)


def get_teams(db: Session = Depends(get_db)) -> TeamService:
    return TeamService(db)
