# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile
import uuid

# settings are read at import time, so the environment goes first
_TMP = tempfile.mkdtemp(prefix="appraisalhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["REPORT_STORAGE_DIR"] = os.path.join(_TMP, "reports")
os.environ["AUTH_MODE"] = "dev"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_PBKDF2_ITERS"] = "1000"
os.environ.pop("CELERY_BROKER_URL", None)

import pytest  # noqa: E402

from app.db import SessionLocal, init_db  # noqa: E402
from app.domain.lifecycle import Actor, Role  # noqa: E402
from app.models import Profile  # noqa: E402

init_db()


def unique_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@test.local"


def dev_headers(email: str, role: str) -> dict[str, str]:
    return {"X-User-Email": email, "X-User-Role": role}


@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def make_actor(db):
    """Creates a profile and returns the matching Actor."""

    def _make(role: str, prefix: str | None = None) -> Actor:
        p = Profile(email=unique_email(prefix or role), full_name=prefix or role, role=role)
        db.add(p)
        db.commit()
        return Actor(id=p.id, role=Role(role))

    return _make


class FakeRenderer:
    content_type = "application/pdf"
    extension = "pdf"

    def __init__(self, fail_times: int = 0):
        self.calls = 0
        self.fail_times = fail_times
        self.last_data = None
        self.last_branding = None

    def render(self, template_data, branding=None) -> bytes:
        from app.domain.errors import UpstreamFailure

        self.calls += 1
        self.last_data = template_data
        self.last_branding = branding
        if self.calls <= self.fail_times:
            raise UpstreamFailure("renderer", "boom", status_code=502)
        return b"%PDF-1.7 fake " + template_data["appraisal"]["id"].encode()


@pytest.fixture()
def fake_renderer():
    return FakeRenderer()
