"""Models package exports."""

from exposureshield.models.auth import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from exposureshield.models.response import ErrorResponse
from exposureshield.models.user import PublicUser, TokenPurpose, TokenRecord, User

__all__ = [
    "AuthResponse",
    "EmailRequest",
    "ErrorResponse",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "PublicUser",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "ResetPasswordRequest",
    "TokenPurpose",
    "TokenRecord",
    "User",
    "UserResponse",
]
