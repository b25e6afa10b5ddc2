"""FastAPI dependencies for services and authentication."""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from exposureshield.models.user import User
from exposureshield.services.auth_service import AuthService
from exposureshield.services.kv_store import KeyValueStore

# auto_error=False so a missing header becomes our own 401 JSON body
bearer_scheme = HTTPBearer(auto_error=False)


def get_kv_store(request: Request) -> KeyValueStore:
    """Store backend attached to the app at startup."""
    return request.app.state.kv_store


def get_auth_service(request: Request) -> AuthService:
    """Build an AuthService bound to the app's settings, store and mailer."""
    state = request.app.state
    return AuthService(state.settings, state.kv_store, mailer=state.mailer)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the user from an ``Authorization: Bearer <token>`` header.

    Raises:
        ConfigurationError: JWT secret missing (500)
        Unauthorized: Missing or invalid token (401)
        NotFound: User no longer exists (404)
    """
    token = credentials.credentials if credentials is not None else None
    return await auth_service.get_current_user(token)
