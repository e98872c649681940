"""User account model."""
from sqlalchemy import Boolean, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class User(TimestampMixin, Base):
    """Account with the credential fields used by the session lifecycle."""

    __tablename__ = "users"

    __table_args__ = (
        Index("ix_users_inactive_created", "is_active", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    username: Mapped[str] = mapped_column(String(15), unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Always stored lowercased, so the plain unique constraint is case-insensitive
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(510))
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    refresh_token_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)


Index("uq_users_username_lower", func.lower(User.username), unique=True)
