"""
auth/exceptions.py -- Exceptions raised by the authentication engine.

Two families:
  AuthError subclasses signal a misconfigured caller (a login form posting
  the wrong fields). They propagate to the framework boundary, where
  api/main.py logs them at ERROR and answers 400. They are never a failed
  login.

  PermissionDenied / RedirectRequired are access-control outcomes the HTTP
  layer turns into 403 and 302 responses (see api/main.py handlers).
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication programming errors."""


class TooManyCredentialsError(AuthError):
    """Credentials carried more than one identity field besides the password."""

    def __init__(self) -> None:
        super().__init__("You may only validate against 1 credential other than a password.")


class InvalidFieldError(AuthError):
    """Credentials named an identity field outside settings.valid_fields."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"The '{field}' field cannot be used to validate credentials.")


class PermissionDenied(PermissionError):
    """An authenticated user lacks every role a route requires."""


class RedirectRequired(Exception):
    """Raised from FastAPI dependencies to short-circuit into a 302 redirect."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(url)
