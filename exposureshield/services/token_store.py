"""Single-use token storage (email verification, password reset, refresh).

Only the SHA-256 of a raw token is ever persisted. The raw value goes to the
user (in an emailed link, or inside a signed refresh token) and is consumed
at most once.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from exposureshield.models.user import TokenPurpose, TokenRecord
from exposureshield.services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

# Constants
TOKEN_BYTES = 32
KEY_PREFIX = "token"


def hash_token(raw_token: str) -> str:
    """Return the hex SHA-256 of a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class TokenStore:
    """Creates and consumes single-use tokens on top of a KeyValueStore."""

    def __init__(self, kv_store: KeyValueStore):
        self.kv_store = kv_store

    @staticmethod
    def _key(purpose: TokenPurpose, raw_token: str) -> str:
        return f"{KEY_PREFIX}:{TokenPurpose(purpose).value}:{hash_token(raw_token)}"

    async def create(
        self, purpose: TokenPurpose, subject_id: str, ttl_seconds: int
    ) -> str:
        """Generate and store a new single-use token.

        Args:
            purpose: What the token authorizes
            subject_id: User ID the token acts for
            ttl_seconds: Lifetime; the backend deletes the record afterwards

        Returns:
            The raw token (never stored)
        """
        raw_token = secrets.token_hex(TOKEN_BYTES)
        record = TokenRecord(
            purpose=purpose,
            subject_id=subject_id,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        await self.kv_store.set(
            self._key(purpose, raw_token),
            record.model_dump_json(by_alias=True),
            ttl_seconds=ttl_seconds,
        )
        logger.debug("single_use_token_created", purpose=record.purpose.value, subject_id=subject_id)
        return raw_token

    async def consume(self, raw_token: str, purpose: TokenPurpose) -> Optional[str]:
        """Redeem a token, deleting it in the same backend operation.

        Safe on bogus, expired or already-consumed tokens.

        Args:
            raw_token: Token value presented by the user
            purpose: Purpose the token must have been created for

        Returns:
            The subject user ID, or None if the token is not redeemable
        """
        if not raw_token or not isinstance(raw_token, str):
            return None

        data = await self.kv_store.get_and_delete(self._key(purpose, raw_token))
        if data is None:
            return None

        try:
            record = TokenRecord.model_validate_json(data)
        except PydanticValidationError:
            logger.warning("single_use_token_malformed", purpose=TokenPurpose(purpose).value)
            return None

        if record.purpose != purpose or record.expires_at <= datetime.now(timezone.utc):
            return None

        return record.subject_id

    async def revoke(self, raw_token: str, purpose: TokenPurpose) -> bool:
        """Delete a token without redeeming it. Returns True if it existed."""
        if not raw_token or not isinstance(raw_token, str):
            return False
        return await self.kv_store.delete(self._key(purpose, raw_token))
