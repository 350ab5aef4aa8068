# backend/app/routers/appraisals.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from ..auth import Principal, get_principal, require_admin
from ..deps import get_lifecycle, get_reports
from ..schemas import (
    AppraisalCreate,
    AppraisalEventOut,
    AppraisalOut,
    AppraisalUpdate,
    ComparableCreate,
    ComparableOut,
    CompleteIn,
    ReportCreate,
    ReportGeneratedOut,
    ReportOut,
    ValuationIn,
)
from ..services.lifecycle_service import AppraisalLifecycle
from ..services.report_orchestrator import ReportOptions, ReportOrchestrator

router = APIRouter(prefix="/appraisals", tags=["appraisals"])


@router.post("", response_model=AppraisalOut, status_code=201)
def create_appraisal(
    payload: AppraisalCreate,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.create(p.actor, **payload.model_dump())


@router.get("", response_model=list[AppraisalOut])
def list_appraisals(
    status: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=200),
    limit: int = Query(default=200, ge=1, le=500),
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return list(engine.list_for_actor(p.actor, status=status, q=q, limit=limit))


# declared before /{appraisal_id} so "feed" is not taken for an id
@router.get("/feed", response_model=list[AppraisalOut])
def appraisal_feed(
    limit: int = Query(default=200, ge=1, le=500),
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return list(engine.feed(p.actor, limit=limit))


@router.get("/{appraisal_id}", response_model=AppraisalOut)
def get_appraisal(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.get_for_actor(p.actor, appraisal_id)


@router.patch("/{appraisal_id}", response_model=AppraisalOut)
def update_appraisal(
    appraisal_id: str,
    payload: AppraisalUpdate,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.update_details(p.actor, appraisal_id, payload.model_dump(exclude_unset=True))


# -------------------- transitions --------------------

@router.post("/{appraisal_id}/submit", response_model=AppraisalOut)
def submit_appraisal(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.submit(p.actor, appraisal_id)


@router.post("/{appraisal_id}/valuation", response_model=AppraisalOut)
def record_valuation(
    appraisal_id: str,
    payload: Optional[ValuationIn] = Body(default=None),
    p: Principal = Depends(require_admin),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    """
    Records the estimated range. Without explicit bounds the range is
    computed from the appraisal's comparables.
    """
    if payload is not None and payload.estimated_value_min is not None:
        return engine.record_valuation(
            p.actor,
            appraisal_id,
            estimated_value_min=payload.estimated_value_min,
            estimated_value_max=payload.estimated_value_max,
        )
    engine.run_valuation(p.actor, appraisal_id)
    return engine.store.reload(appraisal_id)


@router.post("/{appraisal_id}/publish", response_model=AppraisalOut)
def publish_appraisal(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.publish(p.actor, appraisal_id)


@router.post("/{appraisal_id}/claim", response_model=AppraisalOut)
def claim_appraisal(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.claim(p.actor, appraisal_id)


@router.post("/{appraisal_id}/complete", response_model=AppraisalOut)
def complete_appraisal(
    appraisal_id: str,
    payload: CompleteIn,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.complete(
        p.actor,
        appraisal_id,
        final_value=payload.final_value,
        completion_notes=payload.completion_notes,
    )


@router.post("/{appraisal_id}/cancel", response_model=AppraisalOut)
def cancel_appraisal(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.cancel(p.actor, appraisal_id)


@router.get("/{appraisal_id}/events", response_model=list[AppraisalEventOut])
def appraisal_events(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return [AppraisalEventOut.model_validate(e) for e in engine.events(p.actor, appraisal_id)]


# -------------------- comparables --------------------

@router.post("/{appraisal_id}/comparables", response_model=ComparableOut, status_code=201)
def add_comparable(
    appraisal_id: str,
    payload: ComparableCreate,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return engine.add_comparable(p.actor, appraisal_id, payload.model_dump())


@router.get("/{appraisal_id}/comparables", response_model=list[ComparableOut])
def list_comparables(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    return list(engine.comparables(p.actor, appraisal_id))


# -------------------- reports --------------------

@router.post("/{appraisal_id}/reports", response_model=ReportGeneratedOut, status_code=201)
def generate_report(
    appraisal_id: str,
    payload: Optional[ReportCreate] = Body(default=None),
    p: Principal = Depends(get_principal),
    reports: ReportOrchestrator = Depends(get_reports),
):
    payload = payload or ReportCreate()
    result = reports.generate_report(
        p.actor,
        appraisal_id,
        ReportOptions(
            preview=payload.preview,
            branding=payload.branding,
            include_comparables=payload.include_comparables,
            include_ai_content=payload.include_ai_content,
        ),
    )
    if result.content is not None:
        return Response(content=result.content, media_type=result.content_type, status_code=200)
    return ReportGeneratedOut(
        report_id=result.report_id,
        download_url=result.download_url,
        generated_at=result.generated_at,
        kind=result.kind,
        sections=result.sections,
    )


@router.get("/{appraisal_id}/reports", response_model=list[ReportOut])
def list_reports(
    appraisal_id: str,
    p: Principal = Depends(get_principal),
    reports: ReportOrchestrator = Depends(get_reports),
):
    out = []
    for rep, url in reports.list_reports(p.actor, appraisal_id):
        item = ReportOut.model_validate(rep)
        item.download_url = url
        out.append(item)
    return out
