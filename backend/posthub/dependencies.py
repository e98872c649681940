"""Reusable FastAPI dependencies."""
from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .credentials import CredentialStore
from .database import get_session
from .errors import ForbiddenError, UnauthorizedError
from .mailer import EmailService
from .sessions import SessionManager
from .tokens import TokenCodec, TokenError, TokenKind

# Use simple Bearer auth instead of OAuth2 password flow
bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields an AsyncSession."""
    async for session in get_session():
        yield session


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(get_settings())


def get_email_service(request: Request) -> EmailService:
    """Return the mailer created at startup, or one built from settings."""

    service = getattr(request.app.state, "email_service", None)
    if service is None:
        service = EmailService.from_settings(get_settings())
    return service


def get_credential_store(
    session: AsyncSession = Depends(get_db_session),
) -> CredentialStore:
    return CredentialStore(session)


def get_session_manager(
    store: CredentialStore = Depends(get_credential_store),
    codec: TokenCodec = Depends(get_token_codec),
    mailer: EmailService = Depends(get_email_service),
) -> SessionManager:
    return SessionManager(store, codec, mailer)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    codec: TokenCodec = Depends(get_token_codec),
) -> int:
    """
    Return the user id carried by the access token
    taken from the Authorization: Bearer <token> header.
    """

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("Access token not found")

    try:
        payload = codec.verify(TokenKind.ACCESS, credentials.credentials)
    except TokenError as exc:
        raise UnauthorizedError("Invalid or expired access token") from exc

    return payload.user_id


def require_owner(current_user_id: int, owner_id: int, message: str) -> None:
    """Raise if the authenticated user does not own the resource."""

    if current_user_id != owner_id:
        raise ForbiddenError(message)
