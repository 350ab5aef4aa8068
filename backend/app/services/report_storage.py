# backend/app/services/report_storage.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import jwt  # PyJWT

from ..config import settings
from ..domain.errors import NotFound, Unauthenticated, UpstreamFailure

log = logging.getLogger(__name__)

DOWNLOAD_TOKEN_TYPE = "report_download"


def report_key(appraisal_id: str, report_id: str, extension: str = "pdf") -> str:
    return f"appraisals/{appraisal_id}/{report_id}.{extension}"


class LocalReportStorage:
    """
    Report artifacts on the local filesystem, with signed download URLs.

    The URL carries a short-lived JWT naming the report and its storage key;
    the download route verifies it instead of requiring a session.
    """

    def __init__(
        self,
        base_dir: Optional[str] = None,
        *,
        secret: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ):
        self.base = Path(base_dir or settings.report_storage_dir)
        self.secret = secret or settings.jwt_secret
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"invalid storage key: {key!r}")
        return self.base.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            log.error("report upload failed: %s", e)
            raise UpstreamFailure("storage", f"upload failed for {key}: {e}")
        log.info("stored artifact %s (%s, %d bytes)", key, content_type, len(data))

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound("report artifact not found", details={"key": key})
        except OSError as e:
            raise UpstreamFailure("storage", f"read failed for {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            # a stale artifact is harmless; the row pointing at it is already gone
            log.warning("could not delete report artifact %s: %s", key, e)

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    # ---- signed URLs ----
    def sign(self, *, report_id: str, key: str, ttl_seconds: Optional[int] = None) -> str:
        ttl = int(ttl_seconds if ttl_seconds is not None else settings.report_url_ttl_seconds)
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "typ": DOWNLOAD_TOKEN_TYPE,
            "rid": str(report_id),
            "key": key,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def signed_url(self, *, report_id: str, key: str, ttl_seconds: Optional[int] = None) -> str:
        token = self.sign(report_id=report_id, key=key, ttl_seconds=ttl_seconds)
        return f"{self.public_base_url}/api/reports/{report_id}/download?token={token}"

    def verify(self, token: str, *, report_id: str) -> str:
        """Returns the storage key the token grants, or raises Unauthenticated."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("download link expired")
        except jwt.InvalidTokenError:
            raise Unauthenticated("invalid download link")

        if claims.get("typ") != DOWNLOAD_TOKEN_TYPE or str(claims.get("rid")) != str(report_id):
            raise Unauthenticated("invalid download link")
        return str(claims["key"])
