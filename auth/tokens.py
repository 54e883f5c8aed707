"""
auth/tokens.py -- Password hashing and remember-me token utilities.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor is
       settings.bcrypt_rounds. needs_rehash() compares a stored hash's
       identifier and cost against that policy so the authenticator can
       upgrade hashes transparently on the next successful login.

  Timing equalization: dummy_verify() runs a bcrypt check against a throwaway
       hash of the configured cost, so "unknown account" costs the same as
       "wrong password" [C1].

  Remember-me: the cookie carries "selector:validator". The selector is a
       public lookup key; only SHA-256(validator) is persisted. A stolen
       database therefore cannot be replayed as a cookie. The digest is fixed
       (not keyed) so rows remain valid across SECRET_KEY rotation.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from functools import lru_cache

import bcrypt

from core.config import get_settings

BCRYPT_IDENTIFIER = "2b"

# bcrypt refuses input longer than this many bytes.
MAX_PASSWORD_BYTES = 72

SELECTOR_BYTES = 12
VALIDATOR_BYTES = 20


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    rounds defaults to settings.bcrypt_rounds. bcrypt only considers the first
    72 bytes of input; the API layer caps password length well below that.
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Malformed hashes and oversized
    inputs are treated as a mismatch.
    """
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def hash_cost(hashed: str) -> int | None:
    """Return the log2 cost encoded in a bcrypt hash, or None if unparseable."""
    parts = hashed.split("$") if hashed else []
    if len(parts) != 4:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


def needs_rehash(hashed: str, algorithm: str = "bcrypt", rounds: int | None = None) -> bool:
    """Return True if hashed was not produced under the current hash policy.

    A hash needs upgrading when it is not a "$2b$" bcrypt hash (older "$2a$"
    and "$2y$" variants included) or its cost is below rounds. A stronger
    hash is left alone.
    """
    if algorithm != "bcrypt":
        raise ValueError(f"Unsupported hash algorithm {algorithm!r}")
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    if not hashed or not hashed.startswith(f"${BCRYPT_IDENTIFIER}$"):
        return True
    stored = hash_cost(hashed)
    return stored is None or stored < cost


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    return hash_password("sessiongate_timing_dummy", rounds=rounds)


def dummy_verify(plain: str, rounds: int | None = None) -> None:
    """Spend one bcrypt verification without a real account [C1]."""
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    verify_password(plain or "x", _dummy_hash(cost))


# ---------------------------------------------------------------------------
# Remember-me tokens
# ---------------------------------------------------------------------------


def generate_selector() -> str:
    return secrets.token_hex(SELECTOR_BYTES)


def generate_validator() -> str:
    return secrets.token_hex(VALIDATOR_BYTES)


def hash_validator(validator: str) -> str:
    """Return the SHA-256 hex digest stored in place of the validator."""
    return hashlib.sha256(validator.encode("utf-8")).hexdigest()


def validators_match(stored_hash: str, candidate_hash: str) -> bool:
    """Constant-time comparison of two hashed validators."""
    return hmac.compare_digest(stored_hash.encode("utf-8"), candidate_hash.encode("utf-8"))


def format_remember_cookie(selector: str, validator: str) -> str:
    return f"{selector}:{validator}"


def parse_remember_cookie(value: str | None) -> tuple[str, str] | None:
    """Split a "selector:validator" cookie on the first colon.

    Returns None for empty values or when either half is missing.
    """
    if not value or ":" not in value:
        return None
    selector, validator = value.split(":", 1)
    if not selector or not validator:
        return None
    return selector, validator


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_remember_cookie(response, name: str, value: str, max_age: int) -> None:
    """Write (or expire, when max_age is 0) the remember-me cookie on response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    if max_age <= 0:
        response.delete_cookie(name)
        return
    response.set_cookie(
        name,
        value=value,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=max_age,
    )
