"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, valid_fields -> VALID_FIELDS as JSON).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the SECRET_KEY policy and the password hashing policy.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session
       cookie is signed with it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  Hash policy: only bcrypt is supported. bcrypt_rounds is the cost every
       stored hash is compared against on login; hashes at a different cost
       are transparently rehashed (see auth/authenticator.py).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")

SUPPORTED_HASH_ALGORITHMS = ("bcrypt",)

# User columns a login form may be matched against (see auth/store.py).
IDENTITY_FIELDS = ("email", "username")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Empty string selects the default SQLite file next to auth/store.py.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Identity fields a login form may submit alongside the password.
    valid_fields: list[str] = ["email", "username"]
    hash_algorithm: str = "bcrypt"
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Sessions and remember-me
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    remember_enabled: bool = True
    remember_cookie_name: str = "remember"
    remember_length_seconds: int = 30 * 24 * 3600

    # ------------------------------------------------------------------
    # Authorization failures
    # ------------------------------------------------------------------

    # silent=True redirects to error_url with a flash message when a role
    # check fails; silent=False raises PermissionDenied (HTTP 403).
    silent: bool = True

    # ------------------------------------------------------------------
    # Redirect destinations
    # ------------------------------------------------------------------

    login_url: str = "/login"
    error_url: str = "/error"
    reset_password_url: str = "/reset-password"
    resend_activation_url: str = "/resend-activate-account"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_hash_policy(self) -> "Settings":
        """Reject unknown hash algorithms and out-of-range bcrypt costs.

        bcrypt accepts log2 rounds between 4 and 31. An empty valid_fields
        list would make every login raise InvalidFieldError, so it is refused.
        Every entry must be an identity column the user store can look up.
        """
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported HASH_ALGORITHM {self.hash_algorithm!r}.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if not self.valid_fields:
            raise ValueError("VALID_FIELDS must name at least one identity field.")
        if "password" in self.valid_fields:
            raise ValueError("VALID_FIELDS must not include 'password'.")
        unknown = [f for f in self.valid_fields if f not in IDENTITY_FIELDS]
        if unknown:
            raise ValueError(f"VALID_FIELDS may only name {list(IDENTITY_FIELDS)}; got {unknown}.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. Tests build their own Settings(...) and pass it explicitly.
    """
    return Settings()
