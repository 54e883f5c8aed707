"""
auth/session.py -- Login Session Manager.

Owns the "current authenticated user" for one request. The user id lives in
the session mapping under SESSION_KEY; everything else (the User object) is
re-read from the store on first access in each request.

Login side effects live here and nowhere else:
  - session write (logged_in = user id)
  - last_login timestamp
  - expired remember-me rows purged
  - remember-me cookie issued when requested and enabled

Cookies are not written here. Issued cookies are appended to
RequestContext.issued_cookies and the HTTP layer writes them on the
response (see api/main.py apply_issued_cookies).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import RememberCookie, RequestContext, User
from auth.store import UserStore, remember_expiry
from auth.tokens import format_remember_cookie, generate_selector, generate_validator, hash_validator
from core.config import Settings, get_settings

logger = logging.getLogger("sessiongate.auth.session")

SESSION_KEY = "logged_in"
REDIRECT_KEY = "redirect_url"
FLASH_ERROR_KEY = "error"


class LoginSession:
    """Session-backed login state for a single request."""

    def __init__(self, store: UserStore, context: RequestContext, settings: Settings | None = None) -> None:
        self.store = store
        self.context = context
        self.settings = settings or get_settings()
        self.user: User | None = None

    @property
    def session(self) -> dict:
        return self.context.session

    def id(self) -> int | None:
        return self.user.id if self.user is not None else None

    def is_logged_in(self) -> bool:
        """Return True if the session names a user that still exists.

        A session pointing at a deleted account is cleared so later checks
        fall through to the remember-me cookie.
        """
        user_id = self.session.get(SESSION_KEY)
        if user_id is None:
            return False
        if self.user is not None and self.user.id == user_id:
            return True
        user = self.store.get_by_id(user_id)
        if user is None:
            logger.warning("Session referenced missing user id=%s; clearing", user_id)
            self.session.pop(SESSION_KEY, None)
            self.user = None
            return False
        self.user = user
        return True

    def login(self, user: User, remember: bool = False) -> bool:
        """Finalize a login for user: write the session and run side effects.

        Called after Authenticator.attempt() certified the credentials (and
        after any second factor), or by the remember-me path of check().
        """
        if user is None or user.id is None:
            raise ValueError("user must be persisted before it can log in")
        self.user = user
        self.session[SESSION_KEY] = user.id
        self.store.update_last_login(user.id)
        purged = self.store.purge_expired_remember_tokens()
        if purged:
            logger.info("Purged %d expired remember-me token(s)", purged)
        if remember and self.settings.remember_enabled:
            self.remember_user(user.id)
        logger.info("User id=%d logged in from %s (remember=%s)", user.id, self.context.ip_address, remember)
        return True

    def login_by_id(self, user_id: int, remember: bool = False) -> bool:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise LookupError(f"User {user_id} does not exist")
        return self.login(user, remember)

    def remember_user(self, user_id: int) -> RememberCookie:
        """Issue a fresh remember-me token for user_id and queue its cookie."""
        selector = generate_selector()
        validator = generate_validator()
        self.store.create_remember_token(
            user_id,
            selector,
            hash_validator(validator),
            remember_expiry(self.settings.remember_length_seconds),
        )
        return self._issue_cookie(format_remember_cookie(selector, validator))

    def refresh_remember(self, user_id: int, old_selector: str, old_hashed_validator: str) -> bool:
        """Consume the presented token and issue its single-use successor.

        Returns False if a concurrent request consumed the token first.
        """
        selector = generate_selector()
        validator = generate_validator()
        replaced = self.store.replace_remember_token(
            user_id,
            old_selector,
            old_hashed_validator,
            selector,
            hash_validator(validator),
            remember_expiry(self.settings.remember_length_seconds),
        )
        if not replaced:
            logger.warning("Remember-me token for user id=%d was already consumed", user_id)
            return False
        self._issue_cookie(format_remember_cookie(selector, validator))
        return True

    def logout(self) -> None:
        """End the session, revoke remember-me tokens and expire the cookie."""
        if self.user is None:
            self.is_logged_in()
        if self.user is not None:
            self.store.purge_remember_tokens(self.user.id)
            logger.info("User id=%d logged out", self.user.id)
        self.session.clear()
        self.user = None
        self.context.issued_cookies.append(RememberCookie(name=self.settings.remember_cookie_name, value="", max_age=0))

    def _issue_cookie(self, value: str) -> RememberCookie:
        cookie = RememberCookie(
            name=self.settings.remember_cookie_name,
            value=value,
            max_age=self.settings.remember_length_seconds,
        )
        self.context.issued_cookies.append(cookie)
        return cookie
