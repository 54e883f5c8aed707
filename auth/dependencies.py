"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every helper builds the per-request pieces explicitly:
  build_context()       Request -> RequestContext (session, cookies, ip, url)
  get_authenticator()   one Authenticator per request, cached on request.state
  get_current_user()    401 unless check() authenticates; 302 on forced reset
  require_roles(*roles) role gate as a dependency; 302 / 403 per silent mode

The RequestContext is stored on request.state.auth_context so the
remember-cookie middleware in api/main.py can write issued cookies on the
way out.

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.authenticator import Authenticator
from auth.authorization import Authorization
from auth.exceptions import RedirectRequired
from auth.gate import RoleGate
from auth.models import MustResetPassword, RequestContext, User


def build_context(request: Request) -> RequestContext:
    """Return the RequestContext for request, creating it once."""
    existing = getattr(request.state, "auth_context", None)
    if existing is not None:
        return existing
    context = RequestContext(
        session=request.session,
        cookies=dict(request.cookies),
        ip_address=request.client.host if request.client else "unknown",
        url=request.url.path + (f"?{request.url.query}" if request.url.query else ""),
    )
    request.state.auth_context = context
    return context


def get_authenticator(request: Request) -> Authenticator:
    existing = getattr(request.state, "authenticator", None)
    if existing is not None:
        return existing
    authenticator = Authenticator(
        request.app.state.user_store,
        build_context(request),
        request.app.state.settings,
    )
    request.state.authenticator = authenticator
    return authenticator


def get_authorization(request: Request) -> Authorization:
    return request.app.state.authorization


def get_current_user(request: Request) -> User:
    """Require an authenticated session (or remember-me cookie).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    status = get_authenticator(request).check()
    if isinstance(status, MustResetPassword):
        raise RedirectRequired(status.redirect_url)
    if not status:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return status.user


def require_roles(*roles: str):
    """Build a dependency that runs the role gate for roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        async def route(user: User = Depends(require_roles("admin"))): ...
    """

    def dependency(request: Request) -> User | None:
        authenticator = get_authenticator(request)
        RoleGate(authenticator, get_authorization(request)).enforce(roles)
        return authenticator.user

    return dependency
