# backend/app/routers/functions.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import SQLAlchemyError

from ..auth import Principal, get_principal
from ..deps import get_lifecycle, get_reports
from ..domain.errors import UpstreamFailure, ValidationError
from ..schemas import AppraisalCreate, GenerateReportRequest
from ..services.lifecycle_service import AppraisalLifecycle
from ..services.report_orchestrator import ReportOptions, ReportOrchestrator

log = logging.getLogger(__name__)

# Function-style endpoints kept for web clients that call them by name.
router = APIRouter(prefix="/functions", tags=["functions"])


@router.post("/create-appraisal")
def create_appraisal_fn(
    payload: AppraisalCreate,
    p: Principal = Depends(get_principal),
    engine: AppraisalLifecycle = Depends(get_lifecycle),
):
    try:
        row = engine.create(p.actor, **payload.model_dump())
    except SQLAlchemyError as e:
        engine.db.rollback()
        log.error("create-appraisal insert failed: %s", e, extra={"user_id": p.user_id})
        raise UpstreamFailure("database", "could not create appraisal")
    return {"id": row.id}


@router.post("/generate-report")
def generate_report_fn(
    payload: GenerateReportRequest,
    p: Principal = Depends(get_principal),
    reports: ReportOrchestrator = Depends(get_reports),
):
    if not payload.appraisal_id:
        raise ValidationError("appraisalId is required", details={"field": "appraisalId"})

    branding = dict(payload.branding_config or {})
    if payload.customizations:
        branding.update(payload.customizations)

    result = reports.generate_report(
        p.actor,
        payload.appraisal_id,
        ReportOptions(
            preview=payload.preview,
            branding=branding or None,
            include_comparables=payload.include_comparables,
            include_ai_content=payload.include_ai_content,
        ),
    )
    if result.content is not None:
        return Response(
            content=result.content,
            media_type=result.content_type,
            headers={"Content-Disposition": f'inline; filename="appraisal-{payload.appraisal_id}-preview.pdf"'},
        )
    return {"success": True, "data": result.as_dict()}
