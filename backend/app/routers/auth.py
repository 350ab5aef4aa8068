# backend/app/routers/auth.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..config import settings
from ..db import get_db
from ..domain.errors import Unauthenticated
from ..schemas import LoginIn, PrincipalOut, RegisterIn, TokenOut
from ..services.auth_service import LoginResult, login, refresh_access_token, register_user

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        httponly=True,
        secure=bool(int(settings.jwt_cookie_secure)),
        samesite=settings.jwt_cookie_samesite,
        max_age=int(settings.jwt_exp_minutes) * 60,
        path="/",
    )


def _token_out(result: LoginResult) -> TokenOut:
    return TokenOut(
        access_token=result.access_token,
        user_id=result.user_id,
        email=result.email,
        role=result.role,
        expires_in=result.expires_in,
    )


@router.post("/register", response_model=TokenOut, status_code=201)
def register(payload: RegisterIn, response: Response, db: Session = Depends(get_db)):
    register_user(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=payload.role,
    )
    result = login(db, email=payload.email, password=payload.password)
    _set_cookie(response, result.access_token)
    return _token_out(result)


@router.post("/login", response_model=TokenOut)
def do_login(payload: LoginIn, response: Response, db: Session = Depends(get_db)):
    result = login(db, email=payload.email, password=payload.password)
    _set_cookie(response, result.access_token)
    return _token_out(result)


@router.post("/refresh", response_model=TokenOut)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
):
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    if not token:
        token = request.cookies.get(settings.jwt_cookie_name)
    if not token:
        raise Unauthenticated("no session to refresh")

    result = refresh_access_token(db, token=token)
    _set_cookie(response, result.access_token)
    return _token_out(result)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(settings.jwt_cookie_name, path="/")
    return {"ok": True}


@router.get("/me", response_model=PrincipalOut)
def me(p: Principal = Depends(get_principal)):
    return PrincipalOut(user_id=p.user_id, role=p.role.value, email=p.email, full_name=p.full_name)
