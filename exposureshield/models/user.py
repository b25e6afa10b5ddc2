"""User and single-use token models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class User(BaseModel):
    """A registered account as persisted in the Account Directory.

    Stored with camelCase keys. Never returned to clients directly; use
    ``PublicUser.from_user``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: str
    password_hash: str
    email_verified: bool = False
    created_at: datetime
    updated_at: datetime


class PublicUser(BaseModel):
    """User fields safe to serialize to clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: str
    email_verified: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            email_verified=user.email_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenPurpose(str, Enum):
    """What a single-use token authorizes."""

    EMAIL_VERIFY = "email-verify"
    PASSWORD_RESET = "password-reset"
    REFRESH = "refresh"


class TokenRecord(BaseModel):
    """Server-side record of a single-use token, keyed by the token's hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    purpose: TokenPurpose
    subject_id: str
    expires_at: datetime
