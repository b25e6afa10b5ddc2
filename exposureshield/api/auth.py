"""Authentication API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from exposureshield.api.dependencies import get_auth_service, get_current_user
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
from exposureshield.models.user import PublicUser, User
from exposureshield.services.auth_service import AuthService, IssuedTokens

router = APIRouter(prefix="/auth", tags=["Auth"])


def _auth_response(issued: IssuedTokens) -> AuthResponse:
    """Convert issued tokens into the register/login response body."""
    return AuthResponse(
        token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
        user=PublicUser.from_user(issued.user),
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create an account.

    Returns:
        201 with access token, refresh token and the new user

    Raises:
        400: Invalid email or password shorter than 6 characters
        409: Email already registered
    """
    issued = await auth_service.register(
        email=request.email,
        password=request.password,
        name=request.display_name,
    )
    return _auth_response(issued)


@router.post("/login")
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Login with email and password.

    Raises:
        401: Unknown email or wrong password (identical message)
    """
    issued = await auth_service.login(request.email, request.password)
    return _auth_response(issued)


@router.post("/refresh")
async def refresh(
    request: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> RefreshResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The presented refresh token is consumed.

    Raises:
        401: Refresh token invalid, expired or already used
    """
    issued = await auth_service.refresh(request.refresh_token)
    return RefreshResponse(
        token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
    )


@router.post("/logout")
async def logout(
    request: Optional[LogoutRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke a refresh token. Always succeeds."""
    await auth_service.logout(request.refresh_token if request is not None else None)
    return MessageResponse(message="Logged out successfully")


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Get the authenticated user."""
    return UserResponse(user=PublicUser.from_user(current_user))


@router.get("/verify-email")
async def verify_email(
    token: Optional[str] = Query(default=None),
    email: Optional[str] = Query(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Confirm an email address from the emailed link.

    Raises:
        400: Missing parameters or invalid/expired token
        404: No account for the email
    """
    message = await auth_service.verify_email(token, email)
    return MessageResponse(message=message)


@router.post("/send-verification")
async def send_verification(
    request: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Re-send the verification email. Same response for any email."""
    await auth_service.send_verification(request.email)
    return MessageResponse()


@router.post("/forgot-password")
async def forgot_password(
    request: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Request a password reset link. Same response for any email."""
    message = await auth_service.request_password_reset(request.email)
    return MessageResponse(message=message)


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password using a reset token.

    Raises:
        400: Missing fields, mismatch, too short, or invalid/expired token
    """
    await auth_service.reset_password(
        request.token, request.new_password, request.confirm_password
    )
    return MessageResponse(
        message="Password reset successful. You can now login with your new password."
    )
