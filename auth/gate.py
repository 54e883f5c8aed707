"""
auth/gate.py -- Role gate (access filter) for protected routes.

States and terminal actions:

  Unauthenticated          -> RedirectTo(login_url)      (redirect_url saved)
  MustResetPassword        -> RedirectTo(reset url)
  Authenticated-NoRole     -> RedirectTo(error_url, flash)   when silent
                           -> Deny(reason)                    otherwise
  Authenticated-Authorized -> Allow

before() only returns results. enforce() is the raising variant used by the
HTTP layer: Deny becomes PermissionDenied, RedirectTo becomes
RedirectRequired.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.authenticator import Authenticator
from auth.authorization import Authorization
from auth.exceptions import PermissionDenied, RedirectRequired
from auth.messages import lang
from auth.models import Allow, Deny, GateResult, MustResetPassword, RedirectTo
from auth.session import FLASH_ERROR_KEY, REDIRECT_KEY

logger = logging.getLogger("sessiongate.auth.gate")


class RoleGate:
    """Requires a session, then at least one of a set of roles."""

    def __init__(self, authenticator: Authenticator, authorization: Authorization) -> None:
        self.authenticator = authenticator
        self.authorization = authorization

    @property
    def _session(self) -> dict:
        return self.authenticator.context.session

    def before(self, required_roles: Iterable[str | int] | str | int | None = None) -> GateResult:
        if isinstance(required_roles, (str, int)):
            required_roles = [required_roles]
        roles = list(required_roles or [])
        if not roles:
            return Allow()

        settings = self.authenticator.settings
        status = self.authenticator.check()
        if isinstance(status, MustResetPassword):
            return RedirectTo(status.redirect_url)
        if not status:
            self._session[REDIRECT_KEY] = self.authenticator.context.url
            return RedirectTo(settings.login_url)

        user_id = self.authenticator.id()
        for role in roles:
            if self.authorization.in_role(role, user_id):
                return Allow()

        message = lang("exception.insufficient_permissions")
        logger.warning("User id=%s denied; requires one of %s", user_id, roles)
        if self.authenticator.silent():
            self._session.pop(REDIRECT_KEY, None)
            self._session[FLASH_ERROR_KEY] = message
            return RedirectTo(settings.error_url, flash=message)
        return Deny(message)

    def after(self, response=None):
        """Post-response hook. Nothing to do for role checks."""
        return response

    def enforce(self, required_roles: Iterable[str | int] | str | int | None = None) -> None:
        """Run before() and raise for anything other than Allow."""
        result = self.before(required_roles)
        if isinstance(result, Deny):
            raise PermissionDenied(result.reason)
        if isinstance(result, RedirectTo):
            raise RedirectRequired(result.url)
