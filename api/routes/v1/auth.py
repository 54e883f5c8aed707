"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST /api/v1/auth/login             -- attempt + finalize login; session cookie (+ remember cookie)
  POST /api/v1/auth/logout            -- end session, revoke remember-me tokens
  GET  /api/v1/auth/me                -- current user info (requires auth)
  GET  /api/v1/auth/users             -- list users (role: admin)
  POST /api/v1/auth/users             -- create user (role: admin)
  GET  /api/v1/auth/login-attempts    -- audit log (role: admin)

Security:
  [H2] POST /login is rate-limited per IP (settings.login_rate_limit).
  [C1] Authenticator.validate() provides timing equalization.
  [C2] The post-login redirect is taken from the session and must be a
       relative path.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import LoginAttemptResponse, LoginRequest, LoginResponse, MeResponse, UserCreate, UserResponse
from auth.authorization import Authorization
from auth.dependencies import get_authenticator, get_authorization, get_current_user, require_roles
from auth.messages import lang
from auth.models import User
from auth.session import REDIRECT_KEY
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:           public
# - POST /api/v1/auth/logout:          public -- ending a session needs no prior auth
# - GET  /api/v1/auth/me:              requires auth (get_current_user)
# - GET  /api/v1/auth/users:           requires role admin (require_roles)
# - POST /api/v1/auth/users:           requires role admin (require_roles)
# - GET  /api/v1/auth/login-attempts:  requires role admin (require_roles)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _safe_next(next_url: Optional[str]) -> str:
    """Only accept relative, non protocol-relative redirect targets [C2]."""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email or username and password.

    attempt() only certifies the credentials. This service has no second
    factor, so the login is finalized right away; the remember flag travels
    from attempt() to login().
    """
    authenticator = get_authenticator(request)
    if not authenticator.attempt(body.credentials(), remember=body.remember):
        resp = JSONResponse(
            status_code=401,
            content={
                "error": {
                    "code": "login_failed",
                    "message": authenticator.error or lang("login.bad_attempt"),
                }
            },
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    authenticator.login()
    user = authenticator.user
    redirect = _safe_next(request.session.pop(REDIRECT_KEY, None))  # [C2]
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user_id=user.id,
            email=user.email,
            username=user.username,
            remembered=authenticator.remember_requested and authenticator.settings.remember_enabled,
            redirect=redirect,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
def logout(request: Request) -> dict:
    """End the session and revoke this user's remember-me tokens."""
    get_authenticator(request).logout()
    return {"message": "Logged out."}


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(
    current_user: User = Depends(get_current_user),
    authorization: Authorization = Depends(get_authorization),
) -> MeResponse:
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        username=current_user.username,
        roles=authorization.roles_for(current_user.id),
    )


# ---------------------------------------------------------------------------
# User management (role: admin)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, _admin: User = Depends(require_roles("admin"))) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    _admin: User = Depends(require_roles("admin")),
    authorization: Authorization = Depends(get_authorization),
) -> UserResponse:
    """Create an account. Roles named in the body must already exist."""
    user_store: UserStore = request.app.state.user_store
    for role in body.roles:
        if user_store.get_role(role) is None:
            raise HTTPException(
                status_code=400,
                detail={"code": "unknown_role", "message": f"Role {role!r} does not exist."},
            )

    new_user = User(
        email=body.email,
        username=body.username,
        password_hash=hash_password(body.password),
        active=body.active,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email or username already exists."},
        ) from exc

    for role in body.roles:
        authorization.add_user_to_role(user_id, role)

    created = user_store.get_by_id(user_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse.from_user(created)


@router.get("/auth/login-attempts", response_model=list[LoginAttemptResponse])
def list_login_attempts(
    request: Request,
    login: Optional[str] = None,
    limit: int = 100,
    _admin: User = Depends(require_roles("admin")),
) -> list[LoginAttemptResponse]:
    user_store: UserStore = request.app.state.user_store
    attempts = user_store.list_login_attempts(login=login, limit=max(1, min(limit, 500)))
    return [LoginAttemptResponse.from_attempt(a) for a in attempts]
