# backend/app/clients/appraisalhub.py
from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from ..config import settings
from ..domain.errors import AppraisalHubError, Unauthenticated
from ..services.session_refresh import SessionRefresher

log = logging.getLogger(__name__)


class ApiError(AppraisalHubError):
    """Non-2xx answer from the API; carries its status and error code."""

    def __init__(self, status_code: int, body: Any):
        body = body if isinstance(body, dict) else {"message": str(body)}
        super().__init__(str(body.get("message") or f"HTTP {status_code}"), details=body.get("details") or {})
        self.status_code = status_code
        self.code = str(body.get("error") or "http_error")


class AppraisalHubClient:
    """
    Thin HTTP client for the AppraisalHub API.

    login() stores the bearer token and starts a background refresher that
    calls /auth/refresh every `refresh_interval` seconds; logout() stops it.
    Any httpx.Client works as transport (including FastAPI's TestClient).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        http: Optional[httpx.Client] = None,
        refresh_interval: Optional[float] = None,
        timeout: float = 20.0,
    ) -> None:
        self.base = (base_url if base_url is not None else settings.public_base_url).rstrip("/")
        self._http = http or httpx.Client(timeout=timeout)
        self._owns_http = http is None
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self.user: Optional[dict[str, Any]] = None
        self.refresher = SessionRefresher(self.refresh, interval=refresh_interval)

    # -------------------- plumbing --------------------

    @property
    def token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def _headers(self) -> dict[str, str]:
        token = self.token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _request(self, method: str, path: str, **kw: Any) -> Any:
        r = self._http.request(method, f"{self.base}/api{path}", headers=self._headers(), **kw)
        if r.status_code >= 400:
            try:
                body = r.json()
            except ValueError:
                body = r.text
            raise ApiError(r.status_code, body)
        if r.headers.get("content-type", "").startswith("application/json"):
            return r.json()
        return r.content

    def _set_session(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._token = data["access_token"]
        self.user = {k: data.get(k) for k in ("user_id", "email", "role")}

    # -------------------- session --------------------

    def login(self, email: str, password: str) -> dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self._set_session(data)
        self.refresher.start()
        log.info("client signed in", extra={"user_id": data.get("user_id")})
        return data

    def refresh(self) -> dict[str, Any]:
        if not self.token:
            raise Unauthenticated("no session to refresh")
        data = self._request("POST", "/auth/refresh")
        self._set_session(data)
        return data

    def logout(self) -> None:
        self.refresher.stop()
        try:
            self._request("POST", "/auth/logout")
        finally:
            with self._lock:
                self._token = None
            self.user = None

    def close(self) -> None:
        self.refresher.stop()
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AppraisalHubClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------- appraisals --------------------

    def create_appraisal(self, **fields: Any) -> dict[str, Any]:
        return self._request("POST", "/appraisals", json=fields)

    def get_appraisal(self, appraisal_id: str) -> dict[str, Any]:
        return self._request("GET", f"/appraisals/{appraisal_id}")

    def list_appraisals(self, *, status: Optional[str] = None, q: Optional[str] = None) -> list[dict[str, Any]]:
        params = {k: v for k, v in (("status", status), ("q", q)) if v} or None
        return self._request("GET", "/appraisals", params=params)

    def feed(self) -> list[dict[str, Any]]:
        return self._request("GET", "/appraisals/feed")

    def transition(self, appraisal_id: str, name: str, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return self._request("POST", f"/appraisals/{appraisal_id}/{name}", json=body)

    def generate_report(self, appraisal_id: str, **options: Any) -> Any:
        return self._request("POST", f"/appraisals/{appraisal_id}/reports", json=options or None)
