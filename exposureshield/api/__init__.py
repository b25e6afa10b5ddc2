"""API package exports."""

from exposureshield.api.auth import router as auth_router
from exposureshield.api.middleware import CorrelationIdMiddleware
from exposureshield.api.routes import router

__all__ = ["auth_router", "router", "CorrelationIdMiddleware"]
