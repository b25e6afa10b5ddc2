"""Signed token issuance and verification (HS256 JWT)."""

import time
from typing import Any, Mapping

import jwt
import structlog

from exposureshield.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "iat", "exp"]


class TokenError(ValueError):
    """Base class for token verification failures."""


class InvalidTokenFormat(TokenError):
    """The token is not three well-formed dot-separated segments."""


class BadSignature(TokenError):
    """The signature does not match the header and payload."""


class TokenExpired(TokenError):
    """The token's exp claim is in the past."""


def _require_secret(secret: str) -> str:
    if not secret or not str(secret).strip():
        raise ConfigurationError(detail="Token signing secret is not configured")
    return str(secret).strip()


def sign_token(claims: Mapping[str, Any], secret: str, ttl_seconds: int) -> str:
    """Create a signed token carrying the given claims.

    ``iat`` and ``exp`` are always injected (Unix seconds) and override any
    values present in ``claims``.

    Args:
        claims: Claims to embed, normally including ``sub``
        secret: HMAC secret
        ttl_seconds: Lifetime in seconds from now

    Returns:
        Encoded token string

    Raises:
        ConfigurationError: If the secret is empty
    """
    key = _require_secret(secret)
    now = int(time.time())
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + int(ttl_seconds)
    return jwt.encode(payload, key, algorithm=JWT_ALGORITHM)


def verify_token(token: str, secret: str) -> dict:
    """Verify a token's signature and expiry and return its claims.

    Args:
        token: Encoded token string
        secret: HMAC secret the token must have been signed with

    Returns:
        Decoded claims dict

    Raises:
        ConfigurationError: If the secret is empty
        InvalidTokenFormat: If the token is not a well-formed JWT
        BadSignature: If the signature does not verify
        TokenExpired: If the token has expired
    """
    key = _require_secret(secret)

    if not isinstance(token, str) or token.count(".") != 2:
        raise InvalidTokenFormat("Invalid token format")

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            options={"require": REQUIRED_CLAIMS, "verify_exp": False},
        )
    except jwt.InvalidSignatureError:
        raise BadSignature("Invalid signature")
    except jwt.DecodeError:
        raise InvalidTokenFormat("Invalid token format")
    except jwt.InvalidTokenError as e:
        raise InvalidTokenFormat(f"Invalid token claims: {e}")

    try:
        exp = int(claims["exp"])
    except (TypeError, ValueError):
        raise InvalidTokenFormat("Invalid exp claim")

    # Whole seconds: a token is still valid during the second named by exp
    if int(time.time()) > exp:
        raise TokenExpired("Token expired")

    return claims
