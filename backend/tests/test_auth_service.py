# backend/tests/test_auth_service.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.auth import resolve_principal
from app.config import settings
from app.domain.errors import Forbidden, ProfileNotFound, Unauthenticated, ValidationError
from app.domain.lifecycle import Role
from app.models import Profile
from app.services.auth_service import (
    create_access_token,
    decode_access_token,
    hash_password,
    login,
    refresh_access_token,
    register_user,
    verify_password,
)

from conftest import unique_email


def test_password_hash_round_trip():
    h = hash_password("correct horse")
    assert h != "correct horse"
    assert verify_password("correct horse", h)
    assert not verify_password("wrong horse", h)
    assert not verify_password("anything", None)


def test_register_then_login(db):
    email = unique_email("Reg")
    profile = register_user(db, email=email.upper(), password="s3cret-pass", role="agent")
    assert profile.email == email.lower()
    assert profile.role == "agent"

    result = login(db, email=email, password="s3cret-pass")
    assert result.user_id == profile.id
    assert decode_access_token(result.access_token)["sub"] == profile.id

    with pytest.raises(Unauthenticated):
        login(db, email=email, password="nope-nope")


def test_register_rules(db):
    with pytest.raises(ValidationError):
        register_user(db, email="not-an-email", password="long-enough")
    with pytest.raises(ValidationError):
        register_user(db, email=unique_email("short"), password="short")
    with pytest.raises(Forbidden):
        register_user(db, email=unique_email("boss"), password="long-enough", role="admin")

    email = unique_email("dup")
    register_user(db, email=email, password="long-enough")
    with pytest.raises(ValidationError):
        register_user(db, email=email, password="long-enough")


def test_token_does_not_carry_role():
    claims = decode_access_token(create_access_token(user_id="u1", email="u1@test.local"))
    assert "role" not in claims
    assert claims["typ"] == "access"


def test_expired_and_forged_tokens_rejected():
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    expired = jwt.encode(
        {"sub": "u1", "typ": "access", "iat": int(past.timestamp()), "exp": int((past + timedelta(minutes=1)).timestamp())},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(Unauthenticated):
        decode_access_token(expired)

    forged = jwt.encode({"sub": "u1", "typ": "access"}, "other-secret", algorithm="HS256")
    with pytest.raises(Unauthenticated):
        decode_access_token(forged)


def test_role_is_read_from_profile_each_time(db):
    email = unique_email("promote")
    profile = register_user(db, email=email, password="long-enough")
    token = login(db, email=email, password="long-enough").access_token

    assert resolve_principal(db, token=token).role == Role.customer

    profile.role = "agent"
    db.commit()
    assert resolve_principal(db, token=token).role == Role.agent


def test_token_without_profile(db):
    token = create_access_token(user_id="ghost-user", email="ghost@test.local")
    with pytest.raises(ProfileNotFound):
        resolve_principal(db, token=token)
    with pytest.raises(ProfileNotFound):
        refresh_access_token(db, token=token)


def test_no_credentials_is_unauthenticated(db):
    with pytest.raises(Unauthenticated):
        resolve_principal(db, token=None)


def test_dev_headers_provision_profile(db):
    email = unique_email("dev")
    p = resolve_principal(db, token=None, dev_email=email, dev_role="agent")
    assert p.role == Role.agent
    assert db.get(Profile, p.user_id).email == email
