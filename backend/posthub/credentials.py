"""Storage access for the authentication-relevant fields of a user."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import NoReturn, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError, integrity_violation
from .models import User
from .security import hash_refresh_token


@dataclass(frozen=True)
class Availability:
    username_available: bool = True
    email_available: bool = True


class CredentialStore:
    """Reads and writes user rows on behalf of the session manager.

    Uniqueness of username and email is enforced by the database; the
    ``availability`` probe only exists to give friendlier messages up front.
    A constraint violation on write is translated to ``ConflictError`` here so
    no driver error travels further up.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id, populate_existing=True)

    async def exists(self, user_id: int) -> bool:
        result = await self.session.execute(
            select(User.id).where(User.id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def find_for_login(self, identifier: str) -> Optional[User]:
        """Match on email (lowercased) or username (case-insensitive)."""

        needle = identifier.strip().lower()
        result = await self.session.execute(
            select(User).where(
                or_(User.email == needle, func.lower(User.username) == needle)
            )
        )
        return result.scalars().first()

    async def availability(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
        exclude_user_id: Optional[int] = None,
    ) -> Availability:
        username_available = True
        email_available = True

        if username:
            query = select(User.id).where(func.lower(User.username) == username.lower())
            if exclude_user_id is not None:
                query = query.where(User.id != exclude_user_id)
            result = await self.session.execute(query.limit(1))
            username_available = result.scalar_one_or_none() is None

        if email:
            query = select(User.id).where(func.lower(User.email) == email.lower())
            if exclude_user_id is not None:
                query = query.where(User.id != exclude_user_id)
            result = await self.session.execute(query.limit(1))
            email_available = result.scalar_one_or_none() is None

        return Availability(username_available, email_available)

    async def create_user(
        self,
        *,
        name: str,
        username: str,
        description: Optional[str],
        email: str,
        password_hash: str,
    ) -> User:
        """Persist an inactive account."""

        user = User(
            name=name,
            username=username,
            description=description or None,
            email=email.lower(),
            password_hash=password_hash,
            is_active=False,
        )
        self.session.add(user)
        await self._commit("Username or email already exists")
        await self.session.refresh(user)
        return user

    async def delete_user(self, user_id: int) -> bool:
        result = await self.session.execute(delete(User).where(User.id == user_id))
        await self.session.commit()
        return result.rowcount > 0

    async def activate(self, user_id: int) -> None:
        await self.session.execute(
            update(User).where(User.id == user_id).values(is_active=True)
        )
        await self.session.commit()

    async def set_refresh_token(self, user_id: int, refresh_token: Optional[str]) -> None:
        """Store the hash of ``refresh_token``; ``None`` ends the session."""

        token_hash = hash_refresh_token(refresh_token) if refresh_token else None
        await self.session.execute(
            update(User).where(User.id == user_id).values(refresh_token_hash=token_hash)
        )
        await self.session.commit()

    async def rotate_refresh_token(
        self, user_id: int, *, previous_token: str, new_token: str
    ) -> bool:
        """Swap the stored hash only if it still belongs to ``previous_token``.

        Returns False when another rotation or a logout got there first.
        """

        result = await self.session.execute(
            update(User)
            .where(
                User.id == user_id,
                User.refresh_token_hash == hash_refresh_token(previous_token),
            )
            .values(refresh_token_hash=hash_refresh_token(new_token))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def set_password_hash(self, user_id: int, password_hash: str) -> None:
        await self.session.execute(
            update(User).where(User.id == user_id).values(password_hash=password_hash)
        )
        await self.session.commit()

    async def set_email(self, user_id: int, email: str) -> bool:
        """Write a verified email address; returns False if the user is gone."""

        try:
            result = await self.session.execute(
                update(User).where(User.id == user_id).values(email=email.lower())
            )
            await self.session.commit()
        except IntegrityError as exc:
            await self._translate_integrity_error(exc, "Email already exists")
        return result.rowcount > 0

    async def delete_unactivated(self, created_before: datetime) -> int:
        """Remove accounts never activated and created before the cutoff."""

        result = await self.session.execute(
            delete(User).where(
                User.is_active.is_(False),
                User.created_at < created_before,
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    async def _commit(self, conflict_message: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self._translate_integrity_error(exc, conflict_message)

    async def _translate_integrity_error(self, exc: IntegrityError, conflict_message: str) -> NoReturn:
        await self.session.rollback()
        if integrity_violation(exc) == "unique":
            raise ConflictError(conflict_message) from exc
        raise exc
