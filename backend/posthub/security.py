"""Password and refresh-token hashing helpers."""
import asyncio
import hashlib
import hmac
from functools import lru_cache

from passlib.context import CryptContext

from .config import get_settings

settings = get_settings()

# Use PBKDF2-SHA256 instead of bcrypt to avoid bcrypt backend issues
password_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__rounds=settings.password_hash_rounds,
)


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return password_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain password against the stored hash."""
    return password_context.verify(password, password_hash)


async def hash_password_async(password: str) -> str:
    """Hash off the event loop; PBKDF2 is deliberately slow."""
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password, password, password_hash)


def hash_refresh_token(token: str) -> str:
    """SHA-256 digest of a refresh token.

    Refresh tokens are long random-bearing JWTs, so a fast digest is enough to
    keep the raw value out of storage.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def refresh_token_matches(token: str, token_hash: str) -> bool:
    """Constant-time comparison of a presented token against its stored hash."""
    return hmac.compare_digest(hash_refresh_token(token), token_hash)


@lru_cache
def dummy_password_hash() -> str:
    """Hash checked against when no account matches, so misses cost a full verify."""
    return hash_password("posthub-no-such-account")
