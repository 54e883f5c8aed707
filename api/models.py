"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from auth.models import LoginAttempt, User
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Exactly one of email / username is expected. Sending both is passed
    through to the authenticator, which rejects it as a caller error.
    """

    email: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=30)
    password: str = Field(min_length=1, max_length=72)
    remember: bool = False

    @field_validator("email", "username")
    @classmethod
    def strip_identity(cls, v: Optional[str]) -> Optional[str]:
        # Passwords are never stripped.
        return v.strip() if v is not None else v

    @model_validator(mode="after")
    def require_identity(self) -> "LoginRequest":
        if not self.email and not self.username:
            raise ValueError("email or username is required")
        return self

    def credentials(self) -> dict[str, str]:
        """Credentials mapping in the shape Authenticator.attempt() expects."""
        creds = {"password": self.password}
        if self.email:
            creds["email"] = self.email
        if self.username:
            creds["username"] = self.username
        return creds


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (admin only)."""

    email: str = Field(min_length=3, max_length=255)
    username: Optional[str] = Field(default=None, max_length=30)
    password: str = Field(min_length=8, max_length=72)
    active: bool = True
    roles: list[str] = Field(default_factory=list)

    @field_validator("email", "username")
    @classmethod
    def strip_identity(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
        return v


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    user_id: int
    email: str
    username: Optional[str]
    remembered: bool
    redirect: str


class MeResponse(BaseModel):
    user_id: int
    email: str
    username: Optional[str]
    roles: list[str]


class UserResponse(BaseModel):
    id: int
    email: str
    username: Optional[str]
    active: bool
    banned: bool
    force_pass_reset: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            active=user.active,
            banned=user.banned,
            force_pass_reset=user.force_pass_reset,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class LoginAttemptResponse(BaseModel):
    id: int
    login: str
    ip_address: str
    user_id: Optional[int]
    success: bool
    info: str
    created_at: str

    @classmethod
    def from_attempt(cls, attempt: LoginAttempt) -> "LoginAttemptResponse":
        return cls(
            id=attempt.id,
            login=attempt.login,
            ip_address=attempt.ip_address,
            user_id=attempt.user_id,
            success=attempt.success,
            info=attempt.info,
            created_at=attempt.created_at or "",
        )


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
