"""Password hashing with scrypt and verification of legacy formats.

Stored hashes are self-describing strings. The current format is::

    scrypt$<n>$<r>$<p>$<salt-hex>$<key-hex>

Older accounts may still carry one of the legacy formats below. They verify
normally, and ``needs_rehash`` tells the caller to replace them with a
current hash once the plaintext is known (i.e. on a successful login).

    pbkdf2$sha256$<iterations>$<salt>$<hash-hex>
    <salt>:<hmac-sha256-hex>
    $2b$... (bcrypt)
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import bcrypt
import structlog

logger = structlog.get_logger(__name__)

# Constants
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_KEY_LENGTH = 64
SALT_BYTES = 16

PBKDF2_KEY_LENGTH = 32
PBKDF2_MIN_ITERATIONS = 10000

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class HashFormat(str, Enum):
    """Recognized stored-hash formats."""

    SCRYPT = "scrypt"
    PBKDF2 = "pbkdf2"
    HMAC_LEGACY = "hmac-legacy"
    BCRYPT = "bcrypt"


CURRENT_FORMAT = HashFormat.SCRYPT


@dataclass(frozen=True)
class HashRecord:
    """A parsed stored hash.

    Only the fields relevant to ``format`` are populated.
    """

    format: HashFormat
    salt: str = ""
    key: str = ""
    iterations: int = 0
    n: int = 0
    r: int = 0
    p: int = 0
    raw: str = ""


def _scrypt(password: str, salt: bytes, n: int, r: int, p: int, dklen: int) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=n,
        r=r,
        p=p,
        maxmem=256 * r * n + 1024 * 1024,
        dklen=dklen,
    )


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value, 10)
    except ValueError:
        return None


def parse_hash(stored: object) -> Optional[HashRecord]:
    """Parse a stored hash string into a HashRecord.

    Args:
        stored: Value read from the user record

    Returns:
        HashRecord, or None if the value is not in any recognized format
    """
    if not isinstance(stored, str) or not stored:
        return None

    if stored.startswith(BCRYPT_PREFIXES):
        return HashRecord(format=HashFormat.BCRYPT, raw=stored)

    if stored.startswith("scrypt$"):
        parts = stored.split("$")
        if len(parts) != 6:
            return None
        _, n_str, r_str, p_str, salt, key = parts
        n, r, p = _parse_int(n_str), _parse_int(r_str), _parse_int(p_str)
        if not n or not r or not p or not salt or not key:
            return None
        return HashRecord(format=HashFormat.SCRYPT, salt=salt, key=key, n=n, r=r, p=p)

    if stored.startswith("pbkdf2"):
        # Older writers occasionally produced empty "$$" segments.
        parts = [part for part in stored.split("$") if part]
        if len(parts) != 5:
            return None
        scheme, algorithm, iterations_str, salt, key = parts
        iterations = _parse_int(iterations_str)
        if scheme != "pbkdf2" or algorithm != "sha256":
            return None
        if not iterations or iterations < PBKDF2_MIN_ITERATIONS:
            return None
        return HashRecord(
            format=HashFormat.PBKDF2, salt=salt, key=key, iterations=iterations
        )

    if ":" in stored:
        salt, _, key = stored.partition(":")
        if not salt or not key:
            return None
        return HashRecord(format=HashFormat.HMAC_LEGACY, salt=salt, key=key)

    return None


class PasswordHasher:
    """Hashes new passwords with scrypt and verifies every supported format."""

    def __init__(
        self,
        n: int = SCRYPT_N,
        r: int = SCRYPT_R,
        p: int = SCRYPT_P,
    ):
        self.n = n
        self.r = r
        self.p = p

    def hash(self, password: str) -> str:
        """Hash a password with a fresh random salt.

        Args:
            password: Plain-text password

        Returns:
            Encoded scrypt hash string
        """
        salt = secrets.token_bytes(SALT_BYTES)
        key = _scrypt(password, salt, self.n, self.r, self.p, SCRYPT_KEY_LENGTH)
        return f"scrypt${self.n}${self.r}${self.p}${salt.hex()}${key.hex()}"

    def verify(self, password: str, stored: object) -> bool:
        """Verify a password against a stored hash of any supported format.

        Never raises for malformed input; anything unrecognized is a mismatch.

        Args:
            password: Plain-text candidate password
            stored: Stored hash string

        Returns:
            True if the password matches, False otherwise
        """
        if not isinstance(password, str):
            return False

        record = parse_hash(stored)
        if record is None:
            return False

        try:
            return _VERIFIERS[record.format](password, record)
        except (ValueError, TypeError, MemoryError) as e:
            logger.warning(
                "password_verify_failed",
                hash_format=record.format.value,
                error=str(e),
            )
            return False

    def needs_rehash(self, stored: object) -> bool:
        """Check whether a stored hash should be replaced by a current one."""
        record = parse_hash(stored)
        if record is None or record.format is not CURRENT_FORMAT:
            return True
        return (record.n, record.r, record.p) != (self.n, self.r, self.p)


def _verify_scrypt(password: str, record: HashRecord) -> bool:
    expected = bytes.fromhex(record.key)
    computed = _scrypt(
        password, bytes.fromhex(record.salt), record.n, record.r, record.p, len(expected)
    )
    return hmac.compare_digest(computed, expected)


def _verify_pbkdf2(password: str, record: HashRecord) -> bool:
    # The salt is used as its literal text, not hex-decoded.
    computed = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        record.salt.encode("utf-8"),
        record.iterations,
        dklen=PBKDF2_KEY_LENGTH,
    )
    return hmac.compare_digest(computed, bytes.fromhex(record.key))


def _verify_hmac_legacy(password: str, record: HashRecord) -> bool:
    computed = hmac.new(
        record.salt.encode("utf-8"), password.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(computed, record.key.lower())


def _verify_bcrypt(password: str, record: HashRecord) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), record.raw.encode("utf-8"))


_VERIFIERS = {
    HashFormat.SCRYPT: _verify_scrypt,
    HashFormat.PBKDF2: _verify_pbkdf2,
    HashFormat.HMAC_LEGACY: _verify_hmac_legacy,
    HashFormat.BCRYPT: _verify_bcrypt,
}
