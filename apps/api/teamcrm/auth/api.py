from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from teamcrm.auth.schemas import (
    AcceptInviteRequest,
    InviteDetails,
    LoginRequest,
    RegisterRequest,
    UserRead,
    UserUpdate,
)
from teamcrm.auth.service import AuthService, IssuedTokens
from teamcrm.core.auth import AuthContext, get_current_user
from teamcrm.core.config import get_settings
from teamcrm.core.database import get_db
from teamcrm.core.security import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, access_token_ttl, refresh_token_ttl

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/v1/users", tags=["users"])
service = AuthService()


def _user_payload(user: Any) -> dict[str, Any]:
    return {"user": UserRead.model_validate(user).model_dump(mode="json", by_alias=True)}


def _set_access_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        max_age=int(access_token_ttl().total_seconds()),
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="lax",
        path="/",
    )


def _set_auth_cookies(response: Response, tokens: IssuedTokens) -> None:
    _set_access_cookie(response, tokens.access_token)
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        tokens.refresh_token,
        max_age=int(refresh_token_ttl().total_seconds()),
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="lax",
        path="/",
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(dto: RegisterRequest, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    user, tokens = service.register(db, dto)
    _set_auth_cookies(response, tokens)
    return {"data": _user_payload(user)}


@router.post("/login")
def login(dto: LoginRequest, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    user, tokens = service.login(db, dto.email, dto.password)
    _set_auth_cookies(response, tokens)
    return {"data": _user_payload(user)}


@router.post("/refresh")
def refresh(request: Request, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    access_token = service.refresh(db, request.cookies.get(REFRESH_TOKEN_COOKIE))
    _set_access_cookie(response, access_token)
    return {"data": {"message": "Token refreshed"}}


@router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    service.logout(db, request.cookies.get(REFRESH_TOKEN_COOKIE))
    response.delete_cookie(ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/")
    return {"data": {"message": "Logged out"}}


@router.get("/invite/{token}")
def get_invite(token: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    details = InviteDetails.model_validate(service.invite_details(db, token))
    return {"data": details.model_dump(mode="json", by_alias=True)}


@router.post("/accept-invite", status_code=status.HTTP_201_CREATED)
def accept_invite(dto: AcceptInviteRequest, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    user, tokens = service.accept_invite(db, dto)
    _set_auth_cookies(response, tokens)
    return {"data": _user_payload(user)}


@users_router.get("/me")
def get_me(user: AuthContext = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"data": _user_payload(service.get_user(db, user.user_id, user.team_id))}


@users_router.put("/me")
def update_me(
    dto: UserUpdate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": _user_payload(service.update_user(db, user.user_id, user.team_id, dto))}
