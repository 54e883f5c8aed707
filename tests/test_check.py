"""
tests/test_check.py -- Session checks and remember-me re-authentication.

The remember-me cookie is single use: a successful check consumes the
presented token and issues a replacement, so replaying the old cookie fails.
"""

from __future__ import annotations

from unittest.mock import patch

from auth.models import Authenticated, MustResetPassword, Unauthenticated
from auth.session import SESSION_KEY, LoginSession
from auth.store import remember_expiry
from auth.tokens import format_remember_cookie, hash_validator


def _remember_cookie_for(store, settings, make_context, user_id: int) -> str:
    """Issue a remember-me token the way a login with remember=True does."""
    return LoginSession(store, make_context(), settings).remember_user(user_id).value


class TestSessionPath:
    def test_no_session_no_cookie(self, make_authenticator):
        result = make_authenticator().check()
        assert isinstance(result, Unauthenticated)
        assert not result

    def test_session_user_is_authenticated(self, make_authenticator, make_context, make_user):
        user = make_user()
        auth = make_authenticator(make_context(session={SESSION_KEY: user.id}))
        result = auth.check()
        assert result == Authenticated(user=user, via_remember=False)
        assert auth.id() == user.id

    def test_session_for_missing_user_is_cleared(self, make_authenticator, make_context):
        context = make_context(session={SESSION_KEY: 9999})
        assert not make_authenticator(context).check()
        assert SESSION_KEY not in context.session


class TestRememberCookie:
    def test_valid_cookie_logs_in_and_rotates(self, store, settings, make_authenticator, make_context, make_user):
        user = make_user()
        cookie = _remember_cookie_for(store, settings, make_context, user.id)

        context = make_context(cookies={"remember": cookie})
        result = make_authenticator(context).check()
        assert isinstance(result, Authenticated)
        assert result.via_remember is True
        assert result.user.id == user.id
        assert context.session[SESSION_KEY] == user.id

        assert len(context.issued_cookies) == 1
        rotated = context.issued_cookies[0].value
        assert rotated != cookie
        assert store.get_remember_token(cookie.split(":", 1)[0]) is None
        assert store.get_remember_token(rotated.split(":", 1)[0]).user_id == user.id

    def test_replayed_cookie_fails(self, store, settings, make_authenticator, make_context, make_user):
        user = make_user()
        cookie = _remember_cookie_for(store, settings, make_context, user.id)
        assert make_authenticator(make_context(cookies={"remember": cookie})).check()

        replay = make_context(cookies={"remember": cookie})
        assert not make_authenticator(replay).check()
        assert replay.session == {}

    def test_rotated_cookie_works_next_time(self, store, settings, make_authenticator, make_context, make_user):
        user = make_user()
        cookie = _remember_cookie_for(store, settings, make_context, user.id)
        first = make_context(cookies={"remember": cookie})
        make_authenticator(first).check()

        second = make_context(cookies={"remember": first.issued_cookies[0].value})
        assert make_authenticator(second).check()

    def test_tampered_validator_changes_nothing(self, store, settings, make_authenticator, make_context, make_user):
        user = make_user()
        cookie = _remember_cookie_for(store, settings, make_context, user.id)
        selector = cookie.split(":", 1)[0]
        before = store.get_remember_token(selector)

        context = make_context(cookies={"remember": format_remember_cookie(selector, "0" * 40)})
        assert isinstance(make_authenticator(context).check(), Unauthenticated)
        assert context.session == {}
        assert context.issued_cookies == []
        assert store.get_remember_token(selector) == before

    def test_malformed_cookie_is_ignored(self, make_authenticator, make_context):
        for value in ("", "garbage", ":", "selector:", ":validator"):
            assert not make_authenticator(make_context(cookies={"remember": value})).check()

    def test_unknown_selector_is_ignored(self, make_authenticator, make_context):
        context = make_context(cookies={"remember": "nope:nope"})
        assert not make_authenticator(context).check()

    def test_expired_token_is_ignored(self, store, make_authenticator, make_context, make_user):
        user = make_user()
        store.create_remember_token(user.id, "oldsel", hash_validator("oldval"), remember_expiry(-60))
        context = make_context(cookies={"remember": "oldsel:oldval"})
        assert not make_authenticator(context).check()

    def test_losing_a_replace_race_fails(self, store, make_authenticator, make_context, make_user):
        user = make_user()
        hashed = hash_validator("v1")
        store.create_remember_token(user.id, "sel1", hashed, remember_expiry(3600))

        # Another request already rotated this token.
        assert store.replace_remember_token(user.id, "sel1", hashed, "sel2", hash_validator("v2"), remember_expiry(3600))
        assert not store.replace_remember_token(
            user.id, "sel1", hashed, "sel3", hash_validator("v3"), remember_expiry(3600)
        )
        assert store.get_remember_token("sel3") is None

        context = make_context(cookies={"remember": "sel1:v1"})
        assert not make_authenticator(context).check()
        assert context.session == {}

    def test_race_lost_inside_check_creates_no_session(self, store, make_authenticator, make_context, make_user):
        user = make_user()
        store.create_remember_token(user.id, "sel1", hash_validator("v1"), remember_expiry(3600))
        context = make_context(cookies={"remember": "sel1:v1"})

        # The row is still visible but a concurrent request deletes it first.
        with patch.object(store, "replace_remember_token", return_value=False):
            assert not make_authenticator(context).check()
        assert context.session == {}
        assert context.issued_cookies == []
        assert store.get_by_id(user.id).last_login is None


class TestForcedPasswordReset:
    def test_reset_is_required_until_cleared(self, store, make_authenticator, make_context, make_user):
        user = make_user(force_pass_reset=True, reset_hash="abc123")
        for _ in range(2):
            result = make_authenticator(make_context(session={SESSION_KEY: user.id})).check()
            assert isinstance(result, MustResetPassword)
            assert result.redirect_url == "/reset-password?token=abc123"
            assert not result

        store.update_user(user.id, force_pass_reset=False, reset_hash=None)
        assert isinstance(make_authenticator(make_context(session={SESSION_KEY: user.id})).check(), Authenticated)

    def test_reset_applies_to_remember_path(self, store, settings, make_authenticator, make_context, make_user):
        user = make_user(force_pass_reset=True, reset_hash="r1")
        cookie = _remember_cookie_for(store, settings, make_context, user.id)
        result = make_authenticator(make_context(cookies={"remember": cookie})).check()
        assert isinstance(result, MustResetPassword)
        assert result.user.id == user.id
