"""Services package exports."""

from exposureshield.services.auth_service import AuthService
from exposureshield.services.logging_service import configure_logging, get_logger

__all__ = [
    "AuthService",
    "configure_logging",
    "get_logger",
]
