"""Signed, expiring tokens for sessions and email verification.

Four token kinds share one payload shape (``userId`` plus optional extras) but
each is signed with its own secret and carries its own TTL:

* ``access``: short-lived bearer credential
* ``refresh``: long-lived, stored hashed server-side, rotated on use
* ``activation``: proves control of the signup address
* ``email_change``: proves control of a newly requested address

A token of one kind never verifies as another: the secrets differ and the
``kind`` claim is checked as well.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

import jwt

from .config import Settings

ALGORITHM = "HS256"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    ACTIVATION = "activation"
    EMAIL_CHANGE = "email_change"


class TokenError(Exception):
    """Base class for token verification failures."""


class ExpiredToken(TokenError):
    """Signature is valid but the token is past its expiry."""


class InvalidToken(TokenError):
    """Bad signature, wrong kind or malformed payload."""


@dataclass(frozen=True)
class TokenPayload:
    """Claims the application cares about once a token is verified."""

    user_id: int
    new_email: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class _KindConfig:
    secret: str
    ttl: timedelta


class TokenCodec:
    """Issues and verifies the four token kinds from one settings object."""

    def __init__(self, settings: Settings) -> None:
        self._kinds: Dict[TokenKind, _KindConfig] = {
            TokenKind.ACCESS: _KindConfig(
                settings.jwt_access_secret,
                timedelta(minutes=settings.access_token_ttl_minutes),
            ),
            TokenKind.REFRESH: _KindConfig(
                settings.jwt_refresh_secret,
                timedelta(days=settings.refresh_token_ttl_days),
            ),
            TokenKind.ACTIVATION: _KindConfig(
                settings.jwt_activation_secret,
                timedelta(hours=settings.activation_token_ttl_hours),
            ),
            TokenKind.EMAIL_CHANGE: _KindConfig(
                settings.jwt_email_change_secret,
                timedelta(hours=settings.email_change_token_ttl_hours),
            ),
        }

    def ttl(self, kind: TokenKind) -> timedelta:
        return self._kinds[kind].ttl

    def issue(self, kind: TokenKind, payload: TokenPayload) -> str:
        """Sign ``payload`` as a token of ``kind``."""

        if kind is TokenKind.EMAIL_CHANGE and not payload.new_email:
            raise ValueError("email_change tokens require new_email")
        if kind is not TokenKind.EMAIL_CHANGE and payload.new_email is not None:
            raise ValueError(f"{kind.value} tokens do not carry new_email")

        config = self._kinds[kind]
        issued_at = datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "userId": payload.user_id,
            "kind": kind.value,
            "iat": issued_at,
            "exp": issued_at + config.ttl,
            # Two tokens minted in the same second must still differ
            "jti": uuid.uuid4().hex,
        }
        if payload.new_email is not None:
            claims["new_email"] = payload.new_email
        return jwt.encode(claims, config.secret, algorithm=ALGORITHM)

    def verify(self, kind: TokenKind, token: str) -> TokenPayload:
        """Return the payload of a valid ``kind`` token or raise TokenError."""

        config = self._kinds[kind]
        try:
            claims = jwt.decode(
                token,
                config.secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken(f"{kind.value} token expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidToken(f"invalid {kind.value} token") from exc

        if claims.get("kind") != kind.value:
            raise InvalidToken(f"invalid {kind.value} token")

        user_id = claims.get("userId")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise InvalidToken(f"invalid {kind.value} token")

        new_email = claims.get("new_email")
        if kind is TokenKind.EMAIL_CHANGE:
            if not isinstance(new_email, str) or not new_email:
                raise InvalidToken(f"invalid {kind.value} token")
            return TokenPayload(user_id=user_id, new_email=new_email)
        return TokenPayload(user_id=user_id)

    def issue_pair(self, user_id: int) -> TokenPair:
        """Mint a fresh access/refresh pair for ``user_id``."""

        payload = TokenPayload(user_id=user_id)
        return TokenPair(
            access_token=self.issue(TokenKind.ACCESS, payload),
            refresh_token=self.issue(TokenKind.REFRESH, payload),
        )
