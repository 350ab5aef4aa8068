# backend/app/workers/appraisal_tasks.py
from __future__ import annotations

import logging

from ..config import settings
from ..db import SessionLocal
from ..domain.errors import InvalidTransition, NotFound, ValidationError
from ..domain.lifecycle import SYSTEM_ACTOR
from ..services.lifecycle_service import AppraisalLifecycle
from .celery_app import celery_app

log = logging.getLogger(__name__)


def value_appraisal(appraisal_id: str) -> dict:
    """
    Worker body, callable without Celery.

    Idempotent: an appraisal that already left `processing` is reported and
    skipped, so redelivered tasks do nothing.
    """
    db = SessionLocal()
    try:
        engine = AppraisalLifecycle(db)
        try:
            result = engine.run_valuation(SYSTEM_ACTOR, appraisal_id)
        except (InvalidTransition, NotFound) as e:
            log.info("valuation skipped: %s", e.message, extra={"appraisal_id": appraisal_id})
            return {"ok": True, "skipped": e.code}
        except ValidationError as e:
            # no usable comparables yet: leave it in processing for an admin
            log.warning("valuation deferred: %s", e.message, extra={"appraisal_id": appraisal_id})
            return {"ok": False, "reason": e.code, "details": e.details}
        return {"ok": True, "valuation": result.as_dict()}
    finally:
        db.close()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    name="app.workers.appraisal_tasks.run_valuation",
)
def run_valuation(self, appraisal_id: str) -> dict:
    try:
        return value_appraisal(appraisal_id)
    except Exception as e:
        log.exception("valuation task crashed", extra={"appraisal_id": appraisal_id})
        raise self.retry(exc=e)


def enqueue_valuation(appraisal_id: str) -> None:
    """Default valuation trigger for submit."""
    if not settings.celery_broker_url:
        log.info(
            "no broker configured; valuation awaits POST /api/appraisals/{id}/valuation",
            extra={"appraisal_id": appraisal_id},
        )
        return
    run_valuation.delay(appraisal_id=str(appraisal_id))
