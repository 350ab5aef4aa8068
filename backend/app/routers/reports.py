# backend/app/routers/reports.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ..deps import get_reports
from ..services.report_orchestrator import ReportOrchestrator

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/{report_id}/download")
def download_report(
    report_id: str,
    token: str = Query(..., min_length=1),
    reports: ReportOrchestrator = Depends(get_reports),
):
    # the signed token is the credential; no session needed
    data, rep = reports.download(report_id, token=token)
    return Response(
        content=data,
        media_type=rep.content_type,
        headers={"Content-Disposition": f'attachment; filename="appraisal-{rep.appraisal_id}-{rep.kind}.pdf"'},
    )
