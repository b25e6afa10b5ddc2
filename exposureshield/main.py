"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exposureshield.api.auth import router as auth_router
from exposureshield.api.middleware import CORRELATION_HEADER, CorrelationIdMiddleware
from exposureshield.api.routes import router
from exposureshield.config import Settings, get_settings
from exposureshield.exceptions import ExposureShieldError
from exposureshield.models.response import ErrorResponse
from exposureshield.services.email_service import EmailService, await_pending_emails
from exposureshield.services.kv_store import KeyValueStore, build_kv_store
from exposureshield.services.logging_service import configure_logging, get_logger

logger = structlog.get_logger(__name__)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


def _error_response(
    request: Request, status_code: int, error: str, detail: Optional[str] = None
) -> JSONResponse:
    correlation_id = _correlation_id(request)
    body = ErrorResponse(error=error, detail=detail, correlation_id=correlation_id)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers={CORRELATION_HEADER: correlation_id},
    )


async def exposureshield_error_handler(
    request: Request, exc: ExposureShieldError
) -> JSONResponse:
    """Map service errors to JSON. 5xx details go to the log only."""
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            error_type=type(exc).__name__,
            detail=exc.detail,
            path=request.url.path,
        )
    else:
        logger.info(
            "request_rejected",
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            path=request.url.path,
        )
    return _error_response(request, exc.status_code, exc.public_message)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors (including malformed JSON) as 400."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning("validation_error", detail=detail, path=request.url.path)
    return _error_response(request, 400, "Validation error", detail)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Keep framework errors (unknown route, wrong method) in the JSON shape."""
    response = _error_response(request, exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: never send a stack trace or an empty body."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return _error_response(request, 500, "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    kv_store: Optional[KeyValueStore] = None,
    mailer: Optional[EmailService] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        kv_store: Store backend; defaults to one selected from settings at startup
        mailer: Email sender; defaults to an SMTP EmailService

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        configure_logging(settings.log_level)
        log = get_logger("main")

        if not settings.jwt_secret.strip():
            log.error(
                "jwt_secret_missing",
                note="Token endpoints will return 500 until JWT_SECRET is set",
            )

        store = kv_store or build_kv_store(settings)
        if not await store.ping():
            log.warning(
                "kv_store_unreachable",
                backend=store.name,
                note="Requests touching accounts or tokens will fail until it recovers",
            )

        app.state.settings = settings
        app.state.kv_store = store
        app.state.mailer = mailer or EmailService(settings)

        log.info("application_started", backend=store.name, log_level=settings.log_level)

        yield

        await await_pending_emails(timeout=5.0)

        if kv_store is None:
            await store.close()

        log.info("application_shutdown")

    app = FastAPI(
        title="ExposureShield Auth API",
        description="Account registration, login and token lifecycle",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(ExposureShieldError, exposureshield_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", CORRELATION_HEADER],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth_router)
    app.include_router(router)

    return app


app = create_app()
