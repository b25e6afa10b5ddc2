"""Structured logging for the auth service.

Log lines are JSON on stdout. Credentials never reach them: values under
sensitive keys are replaced outright, and string values elsewhere are
scrubbed of anything shaped like a JWT or a stored password hash.
"""

import logging
import re
import sys
from typing import Any, Dict

import structlog

SERVICE_NAME = "exposureshield-auth"

SENSITIVE_KEYS = (
    "api_key",
    "authorization",
    "secret",
    "password",
    "token",
)

REDACTED = "REDACTED"

_JWT_PATTERN = re.compile(r"eyJ[\w-]*\.[\w-]+\.[\w-]+")
_HASH_PREFIXES = ("scrypt$", "pbkdf2$", "$2a$", "$2b$", "$2y$")


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive_key(str(k)) else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, str):
        if value.startswith(_HASH_PREFIXES):
            return REDACTED
        return _JWT_PATTERN.sub("[jwt]", value)
    return value


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact credentials from a log entry.

    Keys containing any of SENSITIVE_KEYS (password_hash, jwt_secret,
    refresh_token, Authorization, ...) are replaced with REDACTED, including
    inside nested dicts. Other string values have embedded JWTs masked and
    whole password hashes replaced. The event name is left alone.
    """
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_sensitive_key(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _scrub(event_dict[key])

    return event_dict


def add_service_name(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Tag every entry with the service name."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output with correlation ID support.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR); unknown
            names fall back to INFO
    """
    level = logging.getLevelName(str(log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to a component name."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
