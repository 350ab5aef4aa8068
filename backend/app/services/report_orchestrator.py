# backend/app/services/report_orchestrator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.errors import Forbidden, NotFound, UpstreamFailure
from ..domain.lifecycle import REPORT_PREVIEW, Actor, Role, report_kind_for
from ..models import Appraisal, Report, new_id
from .appraisal_store import AppraisalStore, appraisal_dict
from .change_relay import DELETE, INSERT, ChangeRelay
from .report_renderer import Branding
from .report_storage import report_key

log = logging.getLogger(__name__)

T = TypeVar("T")

SECTION_PROPERTY = "property-details"
SECTION_VALUATION = "valuation"
SECTION_COMPARABLES = "comparables"
SECTION_NOTES = "completion-notes"


class Renderer(Protocol):
    content_type: str
    extension: str

    def render(self, template_data: dict[str, Any], branding: Optional[Branding] = None) -> bytes: ...


class ArtifactStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def signed_url(self, *, report_id: str, key: str, ttl_seconds: Optional[int] = None) -> str: ...

    def verify(self, token: str, *, report_id: str) -> str: ...


@dataclass(frozen=True)
class ReportOptions:
    preview: bool = False
    branding: Optional[dict[str, Any]] = None
    include_comparables: bool = True
    include_ai_content: bool = False


@dataclass(frozen=True)
class ReportResult:
    kind: str
    generated_at: datetime
    content_type: str
    sections: list[str] = field(default_factory=list)
    report_id: Optional[str] = None
    download_url: Optional[str] = None
    # preview only: the rendered bytes, never stored
    content: Optional[bytes] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "reportId": self.report_id,
            "reportUrl": self.download_url,
            "downloadUrl": self.download_url,
            "generatedAt": self.generated_at.isoformat(),
            "kind": self.kind,
            "sections": list(self.sections),
        }


def report_dict(r: Report) -> dict[str, Any]:
    return {
        "id": r.id,
        "appraisal_id": r.appraisal_id,
        "kind": r.kind,
        "storage_key": r.storage_key,
        "content_type": r.content_type,
        "size_bytes": r.size_bytes,
        "generated_by": r.generated_by,
        "generated_at": r.generated_at.isoformat() if r.generated_at else None,
    }


class ReportOrchestrator:
    """
    appraisal -> comparables -> branding -> render -> upload -> persist -> signed URL

    Any failing step aborts the whole generation. Render and upload are the
    only retried steps (transient upstream errors). An uploaded artifact whose
    Report row could not be persisted is deleted again.

    There is no per-appraisal lock: overlapping generations both run and the
    later commit supersedes the earlier report.
    """

    def __init__(
        self,
        db: Session,
        *,
        renderer: Renderer,
        storage: ArtifactStorage,
        relay: Optional[ChangeRelay] = None,
        retries: Optional[int] = None,
    ):
        self.db = db
        self.store = AppraisalStore(db)
        self.renderer = renderer
        self.storage = storage
        self.relay = relay
        self.retries = int(settings.report_upload_retries if retries is None else retries)

    # ------------------------------------------------------------------
    # access
    # ------------------------------------------------------------------
    @staticmethod
    def can_access(actor: Actor, row: Appraisal) -> bool:
        if actor.role == Role.admin:
            return True
        if actor.role == Role.customer:
            return row.customer_id == actor.id
        return row.agent_id is not None and row.agent_id == actor.id

    def _authorize(self, actor: Actor, row: Appraisal, what: str) -> None:
        if self.can_access(actor, row):
            return
        log.warning(
            "forbidden %s on appraisal reports",
            what,
            extra={"user_id": actor.id, "role": actor.role.value, "appraisal_id": row.id},
        )
        raise Forbidden(f"not allowed to {what} reports for this appraisal")

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------
    def _with_retry(self, step: str, fn: Callable[[], T], *, appraisal_id: str) -> T:
        attempts = 1 + max(0, self.retries)
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except UpstreamFailure as e:
                log.warning(
                    "report %s failed (attempt %d/%d): %s",
                    step,
                    attempt,
                    attempts,
                    e.message,
                    extra={"appraisal_id": appraisal_id},
                )
                if attempt >= attempts:
                    log.error("report %s gave up: %s", step, e.message, extra={"appraisal_id": appraisal_id})
                    raise

    def generate_report(self, actor: Actor, appraisal_id: str, options: Optional[ReportOptions] = None) -> ReportResult:
        options = options or ReportOptions()

        row = self.store.get(appraisal_id)
        self._authorize(actor, row, "generate")
        kind = report_kind_for(row.id, row.status, preview=options.preview)

        comps = self.store.list_comparables(row.id) if options.include_comparables else []
        branding = Branding.from_options(options.branding)
        generated_at = datetime.utcnow()

        sections = [SECTION_PROPERTY, SECTION_VALUATION]
        if comps:
            sections.append(SECTION_COMPARABLES)
        if row.completion_notes:
            sections.append(SECTION_NOTES)

        template_data = {
            "appraisal": appraisal_dict(row),
            "comparables": [
                {
                    "address": c.address,
                    "sale_price": c.sale_price,
                    "bedrooms": c.bedrooms,
                    "bathrooms": c.bathrooms,
                    "sold_date": c.sold_date.isoformat() if c.sold_date else None,
                }
                for c in comps
            ],
            "kind": kind,
            "generated_at": generated_at,
            "include_ai_content": bool(options.include_ai_content),
        }

        content = self._with_retry("render", lambda: self.renderer.render(template_data, branding), appraisal_id=row.id)

        if kind == REPORT_PREVIEW:
            log.info("report preview rendered", extra={"appraisal_id": row.id, "user_id": actor.id})
            return ReportResult(
                kind=kind,
                generated_at=generated_at,
                content_type=self.renderer.content_type,
                sections=sections,
                content=content,
            )

        report_id = new_id()
        key = report_key(row.id, report_id, self.renderer.extension)
        self._with_retry(
            "upload",
            lambda: self.storage.put(key, content, self.renderer.content_type),
            appraisal_id=row.id,
        )

        superseded = self._persist(
            actor,
            row,
            report_id=report_id,
            key=key,
            kind=kind,
            size=len(content),
            generated_at=generated_at,
            metadata={"branding": branding.as_dict(), "include_ai_content": bool(options.include_ai_content)},
        )

        for old in superseded:
            self.storage.delete(old["storage_key"])

        if self.relay is not None:
            for old in superseded:
                self.relay.emit(DELETE, "reports", old)
            self.relay.emit(INSERT, "reports", report_dict(self.db.get(Report, report_id)))

        log.info(
            "report generated",
            extra={"appraisal_id": row.id, "report_id": report_id, "user_id": actor.id},
        )
        return ReportResult(
            kind=kind,
            generated_at=generated_at,
            content_type=self.renderer.content_type,
            sections=sections,
            report_id=report_id,
            download_url=self.storage.signed_url(report_id=report_id, key=key),
        )

    def _persist(
        self,
        actor: Actor,
        row: Appraisal,
        *,
        report_id: str,
        key: str,
        kind: str,
        size: int,
        generated_at: datetime,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Inserts the new Report, drops the previous ones; returns what was superseded."""
        try:
            previous = self.db.scalars(select(Report).where(Report.appraisal_id == row.id)).all()
            superseded = [report_dict(r) for r in previous]

            rep = Report(
                id=report_id,
                appraisal_id=row.id,
                kind=kind,
                storage_key=key,
                content_type=self.renderer.content_type,
                size_bytes=size,
                generated_by=actor.id or None,
                generated_at=generated_at,
            )
            self.db.add(rep)
            for r in previous:
                self.db.delete(r)
            audit_write(
                self.db,
                actor_id=actor.id or None,
                action="report_generated",
                entity_type="report",
                entity_id=report_id,
                before={"superseded": [s["id"] for s in superseded]} if superseded else None,
                after={**report_dict(rep), **(metadata or {})},
            )
            self.db.commit()
            return superseded
        except SQLAlchemyError as e:
            self.db.rollback()
            self.storage.delete(key)
            log.error("persisting report failed: %s", e, extra={"appraisal_id": row.id, "report_id": report_id})
            raise UpstreamFailure("database", f"could not persist report: {e}")

    # ------------------------------------------------------------------
    # reads / moderation
    # ------------------------------------------------------------------
    def list_reports(self, actor: Actor, appraisal_id: str) -> list[tuple[Report, str]]:
        row = self.store.get(appraisal_id)
        self._authorize(actor, row, "view")
        rows: Sequence[Report] = self.db.scalars(
            select(Report).where(Report.appraisal_id == row.id).order_by(Report.generated_at.desc())
        ).all()
        return [(r, self.storage.signed_url(report_id=r.id, key=r.storage_key)) for r in rows]

    def download(self, report_id: str, *, token: str) -> tuple[bytes, Report]:
        rep = self.db.get(Report, str(report_id))
        if rep is None:
            raise NotFound("report not found", details={"report_id": str(report_id)})
        key = self.storage.verify(token, report_id=rep.id)
        if key != rep.storage_key:
            raise NotFound("report not found", details={"report_id": rep.id})
        return self.storage.get(key), rep

    def delete_report(self, actor: Actor, report_id: str) -> None:
        if actor.role != Role.admin:
            raise Forbidden("only admins can delete reports")
        rep = self.db.get(Report, str(report_id))
        if rep is None:
            raise NotFound("report not found", details={"report_id": str(report_id)})

        before = report_dict(rep)
        self.db.delete(rep)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="report_deleted",
            entity_type="report",
            entity_id=rep.id,
            before=before,
        )
        self.db.commit()
        self.storage.delete(before["storage_key"])
        if self.relay is not None:
            self.relay.emit(DELETE, "reports", before)
