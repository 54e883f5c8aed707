"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own
persistence, the authenticator and gate own behaviour.

The result types at the bottom are small sum types: each call that used to
return "bool or object" returns one of a closed set of variants instead.
Truthiness is kept meaningful so `if result:` still reads naturally.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass
class User:
    """A registered identity capable of authenticating.

    email and username are both unique; settings.valid_fields decides which
    of them a login form may submit. active is the "account activated" flag,
    banned blocks login outright. force_pass_reset makes every session check
    redirect to the reset flow carrying reset_hash until the flag is cleared.
    """

    email: str
    password_hash: str
    username: str | None = None
    id: int | None = None
    active: bool = False
    banned: bool = False
    status_message: str | None = None  # optional ban reason
    force_pass_reset: bool = False
    reset_hash: str | None = None
    activate_hash: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Role:
    """A named group of users checked by the role gate."""

    name: str
    description: str = ""
    id: int | None = None


@dataclass
class RememberToken:
    """A persistent "remember me" token row.

    selector is looked up in the clear; hashed_validator is SHA-256 of the
    secret half that only the browser cookie holds. Each selector is
    single-use: a successful re-authentication replaces the row.
    """

    selector: str
    hashed_validator: str
    user_id: int
    expires: str  # ISO 8601 UTC
    id: int | None = None


@dataclass
class LoginAttempt:
    """One append-only audit entry per Authenticator.attempt() call."""

    login: str
    ip_address: str
    success: bool
    info: str
    user_id: int | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class RememberCookie:
    """A remember-me cookie the HTTP layer must write (or expire) on the response.

    value is "selector:validator". An empty value with max_age=0 deletes it.
    """

    name: str
    value: str
    max_age: int


# ---------------------------------------------------------------------------
# Credential validation results
# ---------------------------------------------------------------------------


@dataclass
class Valid:
    user: User

    def __bool__(self) -> bool:
        return True


@dataclass
class Invalid:
    reason: str = ""

    def __bool__(self) -> bool:
        return False


ValidateResult = Union[Valid, Invalid]


# ---------------------------------------------------------------------------
# Session check results
# ---------------------------------------------------------------------------


@dataclass
class Authenticated:
    user: User
    via_remember: bool = False

    def __bool__(self) -> bool:
        return True


@dataclass
class Unauthenticated:
    def __bool__(self) -> bool:
        return False


@dataclass
class MustResetPassword:
    """The session is valid but the account must reset its password first."""

    user: User
    redirect_url: str

    def __bool__(self) -> bool:
        return False


CheckResult = Union[Authenticated, Unauthenticated, MustResetPassword]


# ---------------------------------------------------------------------------
# Role gate results
# ---------------------------------------------------------------------------


@dataclass
class Allow:
    def __bool__(self) -> bool:
        return True


@dataclass
class RedirectTo:
    url: str
    flash: str | None = None

    def __bool__(self) -> bool:
        return False


@dataclass
class Deny:
    reason: str

    def __bool__(self) -> bool:
        return False


GateResult = Union[Allow, RedirectTo, Deny]


@dataclass
class RequestContext:
    """Per-request inputs handed explicitly to the authenticator and gate.

    session is any mutable mapping (Starlette's request.session in the app, a
    plain dict in tests). cookies is read-only. issued_cookies collects
    remember-me cookies the HTTP layer must write on the outgoing response.
    """

    session: dict
    cookies: dict = field(default_factory=dict)
    ip_address: str = "unknown"
    url: str = "/"
    issued_cookies: list[RememberCookie] = field(default_factory=list)
