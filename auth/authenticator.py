"""
auth/authenticator.py -- Credential verification and session checks.

One Authenticator is built per request (see auth/dependencies.py) from the
shared UserStore and an explicit RequestContext. It never reaches for a
global request or session.

Public surface:
  validate(credentials)          -> Valid(user) | Invalid(reason)
  attempt(credentials, remember) -> bool; always writes one LoginAttempt
  check()                        -> Authenticated | Unauthenticated | MustResetPassword
  login(...) / logout()          -> finalize / end a session via LoginSession
  id(), silent(), error

Security notes:
  [C1] An unknown identity still costs one bcrypt verification, so response
       time does not reveal whether the account exists.

  The "bad attempt" and "invalid password" messages are deliberately
  distinct. That lets a caller tell an unknown account from a wrong
  password (an enumeration risk) and is kept for compatibility pending
  product review; see DESIGN.md.

  check() compares remember-me validators with hmac.compare_digest and
  never says which half of a cookie was wrong.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from urllib.parse import urlencode

from auth.exceptions import InvalidFieldError, TooManyCredentialsError
from auth.messages import lang, not_activated_message
from auth.models import (
    Authenticated,
    CheckResult,
    Invalid,
    LoginAttempt,
    MustResetPassword,
    RequestContext,
    Unauthenticated,
    User,
    Valid,
    ValidateResult,
)
from auth.session import LoginSession
from auth.store import UserStore
from auth.tokens import (
    dummy_verify,
    hash_password,
    hash_validator,
    needs_rehash,
    parse_remember_cookie,
    validators_match,
    verify_password,
)
from core.config import IDENTITY_FIELDS, Settings, get_settings

logger = logging.getLogger("sessiongate.auth")


class Authenticator:
    """Request-scoped authentication service."""

    def __init__(self, store: UserStore, context: RequestContext, settings: Settings | None = None) -> None:
        self.store = store
        self.context = context
        self.settings = settings or get_settings()
        self.session = LoginSession(store, context, self.settings)
        self.user: User | None = None
        self.error: str | None = None
        # Carried from attempt() to the finalize step in login().
        self.remember_requested = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def validate(self, credentials: Mapping[str, str]) -> ValidateResult:
        """Check credentials without touching the session.

        Raises TooManyCredentialsError / InvalidFieldError when the caller
        passes a malformed mapping. Otherwise returns Invalid with a reason,
        or Valid carrying the user. May rehash and save the user's password.
        """
        password = credentials.get("password")
        if not password or len(credentials) < 2:
            return Invalid("missing credentials")

        identity = {key: value for key, value in credentials.items() if key != "password"}
        if len(identity) > 1:
            raise TooManyCredentialsError()

        field, value = next(iter(identity.items()))
        if field not in self.settings.valid_fields or field not in IDENTITY_FIELDS:
            raise InvalidFieldError(field)

        user = self.store.find_user(field, value)
        if user is None:
            dummy_verify(password, self.settings.bcrypt_rounds)  # [C1]
            self.error = lang("login.bad_attempt")
            return Invalid("bad attempt")

        if not verify_password(password, user.password_hash):
            self.error = lang("login.invalid_password")
            return Invalid("invalid password")

        if needs_rehash(user.password_hash, self.settings.hash_algorithm, self.settings.bcrypt_rounds):
            user.password_hash = hash_password(password, rounds=self.settings.bcrypt_rounds)
            self.store.save_user(user)
            logger.info("Rehashed password for user id=%d at cost %d", user.id, self.settings.bcrypt_rounds)

        return Valid(user)

    def attempt(self, credentials: Mapping[str, str], remember: bool = False) -> bool:
        """Certify credentials for a login; does NOT create a session.

        Exactly one LoginAttempt is recorded per call. On success the user is
        held on self.user and the caller finalizes with login() once any
        second factor has passed.
        """
        self.error = None
        self.user = None
        login = _identity_of(credentials)

        result = self.validate(credentials)
        if not result:
            self._record(login, None, False, "User unknown")
            return False

        user = result.user
        if user.banned:
            self._record(login, user.id, False, "User banned")
            self.error = lang("user.is_banned")
            return False

        if not user.active:
            self._record(login, user.id, False, "User inactive")
            self.error = not_activated_message(self.settings.resend_activation_url, login)
            return False

        self._record(login, user.id, True, "Credentials ok")
        self.user = user
        self.remember_requested = remember
        return True

    def _record(self, login: str, user_id: int | None, success: bool, info: str) -> None:
        self.store.record_login_attempt(
            LoginAttempt(
                login=login,
                ip_address=self.context.ip_address,
                user_id=user_id,
                success=success,
                info=info,
            )
        )
        if success:
            logger.info("Login attempt for %r from %s succeeded", login, self.context.ip_address)
        else:
            logger.warning("Login attempt for %r from %s failed: %s", login, self.context.ip_address, info)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def check(self) -> CheckResult:
        """Return whether this request has an authenticated user.

        Session first; otherwise a valid remember-me cookie silently logs the
        owner in and rotates the token. A user flagged for a forced password
        reset yields MustResetPassword instead of Authenticated.
        """
        if self.session.is_logged_in():
            self.user = self.session.user
            return self._authenticated(self.user)

        parsed = parse_remember_cookie(self.context.cookies.get(self.settings.remember_cookie_name))
        if parsed is None:
            return Unauthenticated()
        selector, validator = parsed

        token = self.store.get_remember_token(selector)
        if token is None:
            return Unauthenticated()

        if not validators_match(token.hashed_validator, hash_validator(validator)):
            logger.warning("Remember-me cookie rejected from %s", self.context.ip_address)
            return Unauthenticated()

        user = self.store.get_by_id(token.user_id)
        if user is None:
            return Unauthenticated()

        # Single use: consume before logging in so a racing duplicate fails.
        if not self.session.refresh_remember(user.id, selector, token.hashed_validator):
            return Unauthenticated()

        self.session.login(user)
        self.user = user
        logger.info("User id=%d restored from remember-me cookie", user.id)
        return self._authenticated(user, via_remember=True)

    def _authenticated(self, user: User, via_remember: bool = False) -> CheckResult:
        if user.force_pass_reset:
            query = urlencode({"token": user.reset_hash or ""})
            return MustResetPassword(user=user, redirect_url=f"{self.settings.reset_password_url}?{query}")
        return Authenticated(user=user, via_remember=via_remember)

    def login(self, user: User | None = None, remember: bool | None = None) -> bool:
        """Finalize the login certified by attempt() (or log in user directly)."""
        target = user or self.user
        if target is None:
            raise ValueError("no certified user to log in; call attempt() first")
        if remember is None:
            remember = self.remember_requested
        self.user = target
        return self.session.login(target, remember)

    def logout(self) -> None:
        self.session.logout()
        self.user = None

    def is_logged_in(self) -> bool:
        return self.session.is_logged_in()

    def id(self) -> int | None:
        if self.user is not None:
            return self.user.id
        return self.session.id()

    def silent(self) -> bool:
        return self.settings.silent


def _identity_of(credentials: Mapping[str, str]) -> str:
    """The identity string recorded in the audit log (email, else username)."""
    for key in ("email", "username"):
        if credentials.get(key):
            return str(credentials[key])
    for key, value in credentials.items():
        if key != "password" and value:
            return str(value)
    return ""
