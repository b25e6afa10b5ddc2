"""Auth request and response models.

Wire names are camelCase (``refreshToken``, ``newPassword``); the Python
attributes are snake_case. Semantic checks (email format, password length,
password confirmation) happen in AuthService so every entry point applies
them in the same order.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from exposureshield.models.user import PublicUser


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_CamelModel):
    """Registration payload.

    Attributes:
        email: Account email (normalized to lowercase)
        password: Plain-text password (min 6 chars, checked by the service)
        username: Optional display name; defaults to the email's local part
    """

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    username: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Trim and lowercase the email."""
        return v.strip().lower()

    @property
    def display_name(self) -> Optional[str]:
        return (self.username or self.name or "").strip() or None


class LoginRequest(_CamelModel):
    """Login credentials."""

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Trim and lowercase the email."""
        return v.strip().lower()


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = None


class EmailRequest(_CamelModel):
    """Body for forgot-password and send-verification."""

    email: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Trim and lowercase the email."""
        return v.strip().lower()


class ResetPasswordRequest(_CamelModel):
    """Password reset completion.

    Attributes:
        token: Raw reset token from the emailed link
        new_password: Replacement password (min 8 chars, checked by the service)
        confirm_password: Must equal new_password
    """

    token: str = ""
    new_password: str = ""
    confirm_password: str = ""


class AuthResponse(_CamelModel):
    """Successful register/login response."""

    ok: bool = True
    token: str
    refresh_token: Optional[str] = None
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")
    user: PublicUser


class RefreshResponse(_CamelModel):
    ok: bool = True
    token: str
    refresh_token: Optional[str] = None
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")


class UserResponse(_CamelModel):
    ok: bool = True
    user: PublicUser


class MessageResponse(_CamelModel):
    ok: bool = True
    message: Optional[str] = None
