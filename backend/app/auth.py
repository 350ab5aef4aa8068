# backend/app/auth.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .domain.errors import Forbidden, ProfileNotFound, Unauthenticated
from .domain.lifecycle import Actor, Role
from .models import Profile
from .services.auth_service import decode_access_token

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role
    email: str
    full_name: str | None = None

    @property
    def actor(self) -> Actor:
        return Actor(id=self.user_id, role=self.role)


def _principal_from_profile(profile: Profile) -> Principal:
    return Principal(
        user_id=str(profile.id),
        role=Role.parse(profile.role),
        email=str(profile.email),
        full_name=profile.full_name,
    )


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def principal_from_token(db: Session, token: str) -> Principal:
    """
    token -> profile -> Principal. The role is read from the profile row on
    every call and never taken from the token.
    """
    claims = decode_access_token(token)
    profile = db.get(Profile, str(claims["sub"]))
    if profile is None:
        log.error("authenticated user has no profile", extra={"user_id": claims["sub"]})
        raise ProfileNotFound(f"no profile for user {claims['sub']}")
    return _principal_from_profile(profile)


def _dev_principal(db: Session, email: str, role_hint: str) -> Principal:
    email = email.strip().lower()
    profile = db.scalar(select(Profile).where(Profile.email == email))
    if profile is None:
        if not settings.dev_auto_provision:
            raise ProfileNotFound(f"no profile for {email}")
        role = Role.parse(role_hint or "customer")
        profile = Profile(
            email=email,
            full_name=email.split("@")[0],
            role=role.value,
            created_at=datetime.utcnow(),
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
    return _principal_from_profile(profile)


def resolve_principal(
    db: Session,
    *,
    token: Optional[str],
    dev_email: Optional[str] = None,
    dev_role: Optional[str] = None,
) -> Principal:
    if token:
        return principal_from_token(db, token)

    if (settings.auth_mode or "").strip().lower() == "dev" and dev_email and dev_email.strip():
        return _dev_principal(db, dev_email, dev_role or "customer")

    raise Unauthenticated("not authenticated")


def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth sources (in priority order):
      1) Authorization: Bearer <token>
      2) JWT cookie
      3) dev headers X-User-Email / X-User-Role (ONLY if settings.auth_mode == "dev")
    """
    token = _bearer(authorization)
    if not token and settings.jwt_cookie_name:
        token = request.cookies.get(settings.jwt_cookie_name)

    return resolve_principal(
        db,
        token=token,
        dev_email=request.headers.get(settings.dev_header_user_email),
        dev_role=request.headers.get(settings.dev_header_user_role),
    )


def require_role(*roles: Role) -> Callable[..., Principal]:
    allowed = frozenset(roles)

    def _dep(p: Principal = Depends(get_principal)) -> Principal:
        if p.role not in allowed:
            log.warning(
                "role gate rejected request",
                extra={"user_id": p.user_id, "role": p.role.value},
            )
            raise Forbidden(f"requires role in {sorted(r.value for r in allowed)}")
        return p

    return _dep


require_admin = require_role(Role.admin)
