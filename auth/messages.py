"""
auth/messages.py -- User-facing message catalog.

Translation is the host application's concern; this module ships the English
strings and a single lookup function so every message shown to a user comes
from one whitelist [M3]. Raw request data is never interpolated without
escaping.
"""

from __future__ import annotations

import html
from urllib.parse import urlencode

MESSAGES: dict[str, str] = {
    "login.bad_attempt": "Unable to log you in. Please check your credentials.",
    "login.invalid_password": "Unable to log you in. Please check your password.",
    "user.is_banned": "This account has been banned. Contact an administrator.",
    "activation.not_activated": "This account is not yet activated.",
    "activation.resend": "Resend the activation message.",
    "exception.insufficient_permissions": "You do not have the necessary permission to perform the desired operation.",
    "exception.not_logged_in": "You must be logged in to access that page.",
}


def lang(key: str) -> str:
    """Return the message for key, or the key itself when it is unknown."""
    return MESSAGES.get(key, key)


def not_activated_message(resend_url: str, login: str) -> str:
    """Inactivity notice followed by a resend-activation link for login."""
    href = f"{resend_url}?{urlencode({'login': login})}"
    return (
        f"{html.escape(lang('activation.not_activated'))}<br>"
        f'<a href="{html.escape(href)}">{html.escape(lang("activation.resend"))}</a>'
    )
