# backend/app/services/auth_service.py
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt  # PyJWT

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.errors import Forbidden, ProfileNotFound, Unauthenticated, ValidationError
from ..domain.lifecycle import Role
from ..models import Profile

log = logging.getLogger(__name__)

SELF_REGISTER_ROLES = {Role.customer, Role.agent}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------
# Passwords
# -------------------------
def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    iters = int(os.getenv("AUTH_PBKDF2_ITERS", "210000"))
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iters)
    return f"pbkdf2_sha256${iters}${base64.b64encode(salt).decode()}${base64.b64encode(dk).decode()}"


def verify_password(password: str, stored: str | None) -> bool:
    if not stored:
        return False
    try:
        algo, iters_s, salt_b64, dk_b64 = stored.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        iters = int(iters_s)
        salt = base64.b64decode(salt_b64.encode())
        dk = base64.b64decode(dk_b64.encode())
    except ValueError:
        return False
    test = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iters)
    return hmac.compare_digest(test, dk)


# -------------------------
# Tokens
# -------------------------
def create_access_token(*, user_id: str, email: str, minutes: int | None = None) -> str:
    # role is deliberately absent: it is looked up from the profile per request
    now = _now()
    ttl = int(minutes if minutes is not None else settings.jwt_exp_minutes)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
        "typ": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("invalid token")

    if claims.get("typ") != "access" or not claims.get("sub"):
        raise Unauthenticated("invalid token")
    return claims


# -------------------------
# Registration / login
# -------------------------
@dataclass(frozen=True)
class LoginResult:
    access_token: str
    user_id: str
    email: str
    role: str
    expires_in: int


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


def get_profile_by_email(db: Session, email: str) -> Profile | None:
    return db.scalar(select(Profile).where(Profile.email == _norm_email(email)))


def register_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str | None = None,
    role: str = "customer",
) -> Profile:
    email = _norm_email(email)
    if not email or "@" not in email:
        raise ValidationError("a valid email is required")
    if len(password or "") < 8:
        raise ValidationError("password must be at least 8 characters")

    r = Role.parse(role)
    if r not in SELF_REGISTER_ROLES:
        raise Forbidden("admin accounts cannot be self-registered")

    if get_profile_by_email(db, email) is not None:
        raise ValidationError("email already registered")

    profile = Profile(
        email=email,
        full_name=(full_name or "").strip() or email.split("@")[0],
        role=r.value,
        password_hash=hash_password(password),
        created_at=datetime.utcnow(),
    )
    db.add(profile)
    db.flush()
    audit_write(
        db,
        actor_id=profile.id,
        action="profile_registered",
        entity_type="profile",
        entity_id=profile.id,
        after={"email": profile.email, "role": profile.role},
    )
    db.commit()
    log.info("profile registered", extra={"user_id": profile.id, "role": profile.role})
    return profile


def _login_result(profile: Profile) -> LoginResult:
    token = create_access_token(user_id=profile.id, email=profile.email)
    return LoginResult(
        access_token=token,
        user_id=profile.id,
        email=profile.email,
        role=profile.role,
        expires_in=int(settings.jwt_exp_minutes) * 60,
    )


def login(db: Session, *, email: str, password: str) -> LoginResult:
    profile = get_profile_by_email(db, email)
    if profile is None or not verify_password(password, profile.password_hash):
        raise Unauthenticated("invalid credentials")
    return _login_result(profile)


def refresh_access_token(db: Session, *, token: str) -> LoginResult:
    """
    Issues a fresh token for a still-valid one. The profile must still
    exist; a deleted profile cannot keep a session alive.
    """
    claims = decode_access_token(token)
    profile = db.get(Profile, str(claims["sub"]))
    if profile is None:
        raise ProfileNotFound(f"no profile for user {claims['sub']}")
    return _login_result(profile)
