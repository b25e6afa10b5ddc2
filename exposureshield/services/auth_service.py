"""Authentication flows: register, login, refresh, logout, email verification
and password reset.

Each flow runs its checks in a fixed order and stops at the first failure by
raising an ``ExposureShieldError`` subclass. Credential and token failures use
one generic message per flow so responses do not reveal which check failed.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from exposureshield.config import Settings
from exposureshield.exceptions import (
    ConfigurationError,
    Conflict,
    NotFound,
    Unauthorized,
    ValidationError,
)
from exposureshield.models.user import TokenPurpose, User
from exposureshield.services.email_service import EmailService, schedule_email
from exposureshield.services.kv_store import KeyValueStore
from exposureshield.services.password_hasher import PasswordHasher
from exposureshield.services.token_service import (
    InvalidTokenFormat,
    TokenError,
    sign_token,
    verify_token,
)
from exposureshield.services.token_store import TokenStore
from exposureshield.services.user_service import UserService, is_valid_email, normalize_email

logger = structlog.get_logger(__name__)

# Constants
MIN_REGISTER_PASSWORD_LENGTH = 6
MIN_RESET_PASSWORD_LENGTH = 8
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_TOKEN = "Invalid or expired token"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"
RESET_REQUESTED_MESSAGE = "If an account exists, a reset email has been sent."

# Timing-equalizer hashes for unknown-email logins, one per hasher cost setting
_DUMMY_HASHES: dict[tuple[int, int, int], str] = {}


@dataclass
class IssuedTokens:
    """Tokens issued to a client by register, login or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: Optional[User] = None


class AuthService:
    """Composes password hashing, signed tokens, the token store and the
    account directory into the auth flows."""

    def __init__(
        self,
        settings: Settings,
        kv_store: KeyValueStore,
        mailer: Optional[EmailService] = None,
        hasher: Optional[PasswordHasher] = None,
    ):
        self.settings = settings
        self.users = UserService(kv_store)
        self.tokens = TokenStore(kv_store)
        self.hasher = hasher or PasswordHasher()
        self.mailer = mailer or EmailService(settings)

    # ------------------------------------------------------------------
    # Secrets and signed tokens
    # ------------------------------------------------------------------

    def _access_secret(self) -> str:
        secret = self.settings.jwt_secret.strip()
        if not secret:
            logger.error("jwt_secret_missing")
            raise ConfigurationError(detail="JWT_SECRET not configured")
        return secret

    def _refresh_secret(self) -> str:
        secret = self.settings.refresh_secret
        if not secret:
            logger.error("jwt_refresh_secret_missing")
            raise ConfigurationError(detail="JWT_REFRESH_SECRET not configured")
        return secret

    def create_access_token(self, user: User) -> str:
        """Create a signed access token for a user.

        The email claim is a snapshot taken at issuance.
        """
        return sign_token(
            {"sub": user.id, "email": user.email, "typ": ACCESS_TOKEN_TYPE},
            self._access_secret(),
            self.settings.access_token_ttl_seconds,
        )

    def validate_access_token(self, token: str) -> dict:
        """Verify an access token and return its claims.

        Raises:
            ConfigurationError: If JWT_SECRET is missing
            TokenError: If the token is malformed, forged, expired or not an
                access token
        """
        claims = verify_token(token, self._access_secret())
        if claims.get("typ") != ACCESS_TOKEN_TYPE:
            raise InvalidTokenFormat("Not an access token")
        return claims

    async def create_refresh_token(self, user: User) -> str:
        """Create a refresh token backed by a single-use store record.

        The signed token carries the raw single-use token as its ``jti``;
        only the store record's hash is persisted.
        """
        secret = self._refresh_secret()
        ttl = self.settings.refresh_token_ttl_seconds
        jti = await self.tokens.create(TokenPurpose.REFRESH, user.id, ttl)
        return sign_token(
            {"sub": user.id, "jti": jti, "typ": REFRESH_TOKEN_TYPE}, secret, ttl
        )

    def _refresh_claims(self, refresh_token: str) -> Optional[dict]:
        try:
            claims = verify_token(refresh_token, self._refresh_secret())
        except TokenError as e:
            logger.warning("refresh_token_rejected", reason=str(e))
            return None
        if claims.get("typ") != REFRESH_TOKEN_TYPE or not claims.get("jti"):
            logger.warning("refresh_token_rejected", reason="wrong token type")
            return None
        return claims

    async def consume_refresh_token(self, refresh_token: str) -> Optional[str]:
        """Redeem a refresh token once.

        Returns:
            The user ID, or None if the token is invalid, expired, revoked or
            already used
        """
        claims = self._refresh_claims(refresh_token)
        if claims is None:
            return None
        subject_id = await self.tokens.consume(claims["jti"], TokenPurpose.REFRESH)
        if subject_id is None or subject_id != claims["sub"]:
            return None
        return subject_id

    async def revoke_refresh_token(self, refresh_token: str) -> bool:
        """Revoke a refresh token. Returns True if it was still active."""
        claims = self._refresh_claims(refresh_token)
        if claims is None:
            return False
        return await self.tokens.revoke(claims["jti"], TokenPurpose.REFRESH)

    async def _issue_tokens(self, user: User) -> IssuedTokens:
        return IssuedTokens(
            access_token=self.create_access_token(user),
            refresh_token=await self.create_refresh_token(user),
            expires_in=self.settings.access_token_ttl_seconds,
            user=user,
        )

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def register(
        self, email: str, password: str, name: Optional[str] = None
    ) -> IssuedTokens:
        """Create an account and sign it in.

        Verification email is sent in the background; its failure does not
        affect registration.

        Raises:
            ValidationError: Bad email format or password shorter than 6
            Conflict: Email already registered
            ConfigurationError: Signing secrets missing
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        if len(password or "") < MIN_REGISTER_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_REGISTER_PASSWORD_LENGTH} characters"
            )

        self._access_secret()
        self._refresh_secret()

        if await self.users.get_by_email(email) is not None:
            raise Conflict("Email already registered")

        user = self.users.build_user(email, self.hasher.hash(password), name)
        await self.users.create(user)

        issued = await self._issue_tokens(user)
        schedule_email(self._send_verification(user))

        logger.info("user_registered", user_id=user.id)
        return issued

    async def login(self, email: str, password: str) -> IssuedTokens:
        """Authenticate with email and password.

        Legacy password hashes are upgraded to the current format before
        returning.

        Raises:
            ValidationError: Email or password missing
            Unauthorized: Unknown email or wrong password (same message)
        """
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Missing email or password")

        self._access_secret()

        user = await self.users.get_by_email(email)
        if user is None:
            # Spend the same hashing time as a real check.
            self.hasher.verify(password, self._get_dummy_hash())
            raise Unauthorized(INVALID_CREDENTIALS)

        if not self.hasher.verify(password, user.password_hash):
            logger.info("login_failed", user_id=user.id)
            raise Unauthorized(INVALID_CREDENTIALS)

        if self.hasher.needs_rehash(user.password_hash):
            user = await self.users.update(user.id, password_hash=self.hasher.hash(password))
            logger.info("password_hash_migrated", user_id=user.id)

        issued = await self._issue_tokens(user)
        logger.info("user_logged_in", user_id=user.id)
        return issued

    async def refresh(self, refresh_token: str) -> IssuedTokens:
        """Exchange a refresh token for a new access token and refresh token.

        The presented refresh token is consumed, so each one works once.

        Raises:
            ValidationError: Token missing
            Unauthorized: Token invalid, expired, used, or its user is gone
        """
        if not refresh_token:
            raise ValidationError("Refresh token required")

        self._access_secret()

        user_id = await self.consume_refresh_token(refresh_token)
        if user_id is None:
            raise Unauthorized(INVALID_REFRESH_TOKEN)

        user = await self.users.get_by_id(user_id)
        if user is None:
            raise Unauthorized(INVALID_REFRESH_TOKEN)

        issued = await self._issue_tokens(user)
        logger.info("refresh_token_rotated", user_id=user.id)
        return issued

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the given refresh token, if any. Always succeeds."""
        if not refresh_token:
            return
        revoked = await self.revoke_refresh_token(refresh_token)
        logger.info("user_logged_out", revoked=revoked)

    async def get_current_user(self, access_token: Optional[str]) -> User:
        """Resolve the user behind a bearer access token.

        Raises:
            ConfigurationError: JWT_SECRET missing (checked first)
            Unauthorized: Missing, malformed, forged or expired token
            NotFound: Token is valid but the user no longer exists
        """
        self._access_secret()

        if not access_token:
            raise Unauthorized("Missing Authorization: Bearer <token>")

        try:
            claims = self.validate_access_token(access_token)
        except TokenError as e:
            logger.info("access_token_rejected", reason=str(e))
            raise Unauthorized(INVALID_TOKEN)

        user = await self.users.get_by_id(claims["sub"])
        if user is None:
            raise NotFound("User not found")
        return user

    async def verify_email(self, token: Optional[str], email: Optional[str]) -> str:
        """Mark an account's email as verified using an emailed token.

        Idempotent for already-verified accounts.

        Returns:
            Message for the client

        Raises:
            ValidationError: Token/email missing, or token invalid or expired
            NotFound: No account for the email
        """
        if not token or not email:
            raise ValidationError("Token and email required")

        user = await self.users.get_by_email(email)
        if user is None:
            raise NotFound("User not found")

        if user.email_verified:
            return "Email already verified"

        subject_id = await self.tokens.consume(token, TokenPurpose.EMAIL_VERIFY)
        if subject_id != user.id:
            raise ValidationError(INVALID_VERIFICATION_TOKEN)

        await self.users.update(user.id, email_verified=True)
        logger.info("email_verified", user_id=user.id)
        return "Email successfully verified! You can now log in."

    async def send_verification(self, email: str) -> None:
        """Re-send the verification email for an unverified account.

        Silent for unknown or already-verified emails.
        """
        if not email:
            raise ValidationError("Email required")

        user = await self.users.get_by_email(email)
        if user is None or user.email_verified:
            return

        schedule_email(self._send_verification(user))

    async def request_password_reset(self, email: str) -> str:
        """Start a password reset.

        The response is the same whether or not the account exists; the
        token is created and mailed in the background only if it does.
        """
        if not email:
            raise ValidationError("Email is required")

        user = await self.users.get_by_email(email)
        if user is not None:
            schedule_email(self._send_password_reset(user))
            logger.info("password_reset_requested", user_id=user.id)

        return RESET_REQUESTED_MESSAGE

    async def reset_password(
        self, token: str, new_password: str, confirm_password: str
    ) -> None:
        """Complete a password reset with an emailed token.

        Raises:
            ValidationError: Missing fields, mismatch, password shorter than
                8, or invalid/expired/used token
        """
        if not token or not new_password or not confirm_password:
            raise ValidationError("All fields are required")
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(new_password) < MIN_RESET_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_RESET_PASSWORD_LENGTH} characters"
            )

        user_id = await self.tokens.consume(token, TokenPurpose.PASSWORD_RESET)
        if user_id is None:
            raise ValidationError(INVALID_RESET_TOKEN)

        try:
            await self.users.update(user_id, password_hash=self.hasher.hash(new_password))
        except NotFound:
            raise ValidationError(INVALID_RESET_TOKEN)

        logger.info("password_reset_completed", user_id=user_id)

    # ------------------------------------------------------------------
    # Background email
    # ------------------------------------------------------------------

    async def _send_verification(self, user: User) -> bool:
        raw_token = await self.tokens.create(
            TokenPurpose.EMAIL_VERIFY,
            user.id,
            self.settings.verification_token_ttl_seconds,
        )
        return await self.mailer.send_verification_email(user.email, raw_token)

    async def _send_password_reset(self, user: User) -> bool:
        raw_token = await self.tokens.create(
            TokenPurpose.PASSWORD_RESET,
            user.id,
            self.settings.reset_token_ttl_seconds,
        )
        return await self.mailer.send_password_reset_email(user.email, raw_token)

    def _get_dummy_hash(self) -> str:
        params = (self.hasher.n, self.hasher.r, self.hasher.p)
        if params not in _DUMMY_HASHES:
            _DUMMY_HASHES[params] = self.hasher.hash("exposureshield-timing-equalizer")
        return _DUMMY_HASHES[params]
