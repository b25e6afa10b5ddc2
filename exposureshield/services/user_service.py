"""Account Directory: user records keyed by normalized email."""

import re
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError as PydanticValidationError

from exposureshield.exceptions import Conflict, NotFound, UpstreamError
from exposureshield.models.user import User
from exposureshield.services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

IMMUTABLE_FIELDS = frozenset({"id", "email", "created_at"})


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return str(email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Loose shape check: something@something.tld with no whitespace."""
    return bool(EMAIL_PATTERN.match(email or ""))


def _email_key(email: str) -> str:
    return f"user:{normalize_email(email)}"


def _id_key(user_id: str) -> str:
    return f"user_id:{user_id}"


class UserService:
    """Service for user record storage and lookup."""

    def __init__(self, kv_store: KeyValueStore):
        self.kv_store = kv_store

    @staticmethod
    def _decode(data: Optional[str]) -> Optional[User]:
        if data is None:
            return None
        try:
            return User.model_validate_json(data)
        except PydanticValidationError as e:
            logger.error("user_record_malformed", error=str(e))
            raise UpstreamError(detail="Stored user record is malformed") from e

    @staticmethod
    def _encode(user: User) -> str:
        return user.model_dump_json(by_alias=True)

    def build_user(self, email: str, password_hash: str, name: Optional[str] = None) -> User:
        """Build a new, unsaved user record.

        Args:
            email: Account email
            password_hash: Encoded password hash
            name: Display name; defaults to the local part of the email

        Returns:
            User with a fresh ID and timestamps
        """
        email = normalize_email(email)
        now = datetime.now(timezone.utc)
        return User(
            id=str(uuid4()),
            email=email,
            name=name or email.split("@", 1)[0],
            password_hash=password_hash,
            email_verified=False,
            created_at=now,
            updated_at=now,
        )

    async def create(self, user: User) -> User:
        """Persist a new user.

        Uniqueness relies on the store's set-if-absent, which is atomic on
        Redis and within a single process for the in-memory store.

        Raises:
            Conflict: If the email is already registered
        """
        stored = await self.kv_store.set_if_absent(_email_key(user.email), self._encode(user))
        if not stored:
            raise Conflict("Email already registered")

        try:
            await self.kv_store.set(_id_key(user.id), normalize_email(user.email))
        except Exception:
            # Without its id index the account is unreachable; release the email
            await self.kv_store.delete(_email_key(user.email))
            logger.error("user_create_rolled_back", user_id=user.id)
            raise

        logger.info("user_created", user_id=user.id)
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get a user by email (case-insensitive)."""
        email = normalize_email(email)
        if not email:
            return None
        return self._decode(await self.kv_store.get(_email_key(email)))

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        if not user_id:
            return None
        email = await self.kv_store.get(_id_key(str(user_id)))
        if email is None:
            return None
        return self._decode(await self.kv_store.get(_email_key(email)))

    async def update(self, user_id: str, **fields: Any) -> User:
        """Merge fields into a user record and bump updated_at.

        Args:
            user_id: User to update
            **fields: Attribute values to replace (snake_case names)

        Returns:
            The updated User

        Raises:
            ValueError: If an immutable or unknown field is given
            NotFound: If no user has that ID
        """
        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Cannot update immutable fields: {sorted(forbidden)}")
        unknown = set(fields) - set(User.model_fields)
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")

        user = await self.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")

        fields["updated_at"] = datetime.now(timezone.utc)
        updated = user.model_copy(update=fields)
        await self.kv_store.set(_email_key(updated.email), self._encode(updated))

        logger.info("user_updated", user_id=user_id, fields=sorted(fields))
        return updated
