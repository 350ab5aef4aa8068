# backend/app/domain/errors.py
from __future__ import annotations

from typing import Any, Optional


class AppraisalHubError(Exception):
    """
    Base for every error the services raise on purpose.

    Routers never translate these by hand; main.py registers one handler
    that renders {"error": code, "message": ..., "details": {...}}.
    """

    code = "error"
    status_code = 500

    def __init__(self, message: str = "", *, details: Optional[dict[str, Any]] = None):
        self.message = message or self.code
        self.details = dict(details or {})
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class Unauthenticated(AppraisalHubError):
    code = "unauthenticated"
    status_code = 401


class Forbidden(AppraisalHubError):
    code = "forbidden"
    status_code = 403


class NotFound(AppraisalHubError):
    code = "not_found"
    status_code = 404


class ValidationError(AppraisalHubError):
    code = "validation_error"
    status_code = 400


class InvalidTransition(AppraisalHubError):
    """Right actor, wrong state."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, transition: str, current_status: str, *, reason: Optional[str] = None):
        details: dict[str, Any] = {"transition": transition, "current_status": current_status}
        if reason:
            details["reason"] = reason
        super().__init__(f"cannot {transition} an appraisal in status {current_status}", details=details)
        self.transition = transition
        self.current_status = current_status


class AlreadyClaimed(AppraisalHubError):
    code = "already_claimed"
    status_code = 409

    def __init__(self, appraisal_id: str):
        super().__init__(f"appraisal {appraisal_id} is already claimed", details={"appraisal_id": appraisal_id})


class NotEligibleForReport(AppraisalHubError):
    code = "not_eligible_for_report"
    status_code = 409

    def __init__(self, appraisal_id: str, current_status: str, *, reason: Optional[str] = None):
        details: dict[str, Any] = {"appraisal_id": appraisal_id, "current_status": current_status}
        if reason:
            details["reason"] = reason
        super().__init__(f"appraisal in status {current_status} is not eligible for a report", details=details)


class ProfileNotFound(AppraisalHubError):
    # authenticated user without a profile row: misconfiguration, never retried
    code = "profile_not_found"
    status_code = 500


class UpstreamFailure(AppraisalHubError):
    code = "upstream_failure"
    status_code = 500

    def __init__(self, service: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(message, details={"service": service})
        self.service = service
        if status_code is not None:
            self.status_code = status_code
