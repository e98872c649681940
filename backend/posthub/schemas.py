"""Pydantic schemas used across the backend API."""
import math
import re
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# 3-15 chars, starts with a letter, ends with a letter or digit, no "__"
USERNAME_PATTERN = re.compile(r"^(?!.*__)[A-Za-z][A-Za-z0-9_]{1,13}[A-Za-z0-9]$")
USERNAME_RULES = (
    "Username must be 3-15 characters, start with a letter, and can only contain "
    "letters, numbers, and underscores (no consecutive underscores)"
)

Password = Annotated[str, Field(min_length=4, max_length=20)]


def _check_username(value: str) -> str:
    if not USERNAME_PATTERN.match(value):
        raise ValueError(USERNAME_RULES)
    return value


class MessageResponse(BaseModel):
    message: str


class SignUpRequest(BaseModel):
    """Payload for account registration."""

    name: str = Field(min_length=2, max_length=50)
    username: str
    description: str | None = Field(default=None, max_length=255)
    email: EmailStr
    password: Password
    confirm_password: Password

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        return _check_username(value)


class LoginRequest(BaseModel):
    """Credentials supplied during login."""

    identifier: str = Field(min_length=1, max_length=255)
    password: Password


class AccessTokenResponse(BaseModel):
    """Body returned by login and refresh; the refresh token travels as a cookie."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")


class UpdatePasswordRequest(BaseModel):
    current_password: Password
    new_password: Password
    confirm_new_password: Password


class UpdatePasswordResponse(BaseModel):
    success: bool
    message: str


class UpdateEmailRequest(BaseModel):
    new_email: EmailStr


class UserUpdate(BaseModel):
    """Profile fields a user may change directly."""

    name: str | None = Field(default=None, min_length=2, max_length=50)
    username: str | None = None
    description: str | None = Field(default=None, max_length=255)

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str | None) -> str | None:
        return None if value is None else _check_username(value)


class UserRead(BaseModel):
    """Profile representation of a user; never includes credential hashes."""

    id: int
    name: str
    username: str
    description: str | None = None
    email: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    name: str
    username: str
    description: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserSearchPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    users: list[UserSummary]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class AvailabilityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username_available: bool = Field(alias="usernameAvailable")
    email_available: bool = Field(alias="emailAvailable")


class Author(BaseModel):
    id: int
    username: str


class PostCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1020)


class PostUpdate(BaseModel):
    text: str | None = Field(default=None, min_length=1, max_length=1020)


class PostRead(BaseModel):
    id: int
    text: str
    edited: bool
    viewed_times: int
    created_at: datetime
    updated_at: datetime
    user: Author


class PostPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    posts: list[PostRead]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class CommentCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1020)


class CommentUpdate(BaseModel):
    text: str | None = Field(default=None, min_length=1, max_length=1020)


class CommentRead(BaseModel):
    id: int
    text: str
    edited: bool
    created_at: datetime
    updated_at: datetime
    post_id: int
    user: Author


class CommentPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    comments: list[CommentRead]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class Liker(BaseModel):
    id: int
    username: str
    name: str


class LikeRead(BaseModel):
    user: Liker
    liked_at: datetime


class LikePage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    likes: list[LikeRead]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class LikedPostRead(PostRead):
    liked_at: datetime


class LikedPostPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    posts: list[LikedPostRead]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class LikeStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_liked: bool = Field(alias="isLiked")


class LikeCount(BaseModel):
    count: int


class FollowUser(BaseModel):
    id: int
    name: str
    username: str
    description: str | None = None
    followed_at: datetime


class FollowersPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    followers: list[FollowUser]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class FollowingPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    following: list[FollowUser]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class FollowStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_following: bool = Field(alias="isFollowing")


class FollowCounts(BaseModel):
    followers: int
    following: int


def page_window(page: int, page_size: int) -> tuple[int, int]:
    """Clamp ``page`` to at least 1 and return it with the row offset."""

    page = max(1, page)
    return page, (page - 1) * page_size


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)
