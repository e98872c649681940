"""Follow endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..credentials import CredentialStore
from ..dependencies import get_credential_store, get_current_user_id, get_db_session
from ..errors import ConflictError, NotFoundError, ValidationError, integrity_violation
from ..models import Follow, User
from ..schemas import (
    FollowCounts,
    FollowersPage,
    FollowingPage,
    FollowStatus,
    FollowUser,
    MessageResponse,
    page_window,
    total_pages,
)

router = APIRouter(prefix="/follows", tags=["follows"])

PAGE_SIZE = 20


async def ensure_user_exists(store: CredentialStore, user_id: int) -> None:
    if not await store.exists(user_id):
        raise NotFoundError("User not found")


@router.post("/{user_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def follow_user(
    user_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    """Start following another user."""

    if user_id == current_user_id:
        raise ValidationError("You cannot follow yourself")

    # The foreign key rejects unknown users
    session.add(Follow(follower_id=current_user_id, followed_id=user_id))
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        violation = integrity_violation(exc)
        if violation == "foreign_key":
            raise NotFoundError("User not found") from exc
        if violation == "unique":
            raise ConflictError("You are already following this user") from exc
        raise
    return {"message": "Successfully followed user"}


@router.delete("/{user_id}", response_model=MessageResponse)
async def unfollow_user(
    user_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    if user_id == current_user_id:
        raise ValidationError("Invalid operation")

    result = await session.execute(
        delete(Follow).where(
            Follow.follower_id == current_user_id,
            Follow.followed_id == user_id,
        )
    )
    await session.commit()
    if result.rowcount == 0:
        raise NotFoundError("Follow relationship not found")
    return {"message": "Successfully unfollowed user"}


async def _follow_page(
    session: AsyncSession,
    *,
    match_column,
    other_column,
    user_id: int,
    page: int,
) -> tuple[list[FollowUser], int, int]:
    page, offset = page_window(page, PAGE_SIZE)
    total = (
        await session.execute(select(func.count(Follow.id)).where(match_column == user_id))
    ).scalar_one()
    result = await session.execute(
        select(User, Follow.created_at)
        .join(Follow, other_column == User.id)
        .where(match_column == user_id)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .offset(offset)
        .limit(PAGE_SIZE)
    )
    users = [
        FollowUser(
            id=user.id,
            name=user.name,
            username=user.username,
            description=user.description,
            followed_at=followed_at,
        )
        for user, followed_at in result.all()
    ]
    return users, total, page


@router.get("/followers/{user_id}", response_model=FollowersPage)
async def list_followers(
    user_id: int,
    page: int = Query(default=1),
    store: CredentialStore = Depends(get_credential_store),
) -> FollowersPage:
    await ensure_user_exists(store, user_id)
    users, total, page = await _follow_page(
        store.session,
        match_column=Follow.followed_id,
        other_column=Follow.follower_id,
        user_id=user_id,
        page=page,
    )
    return FollowersPage(followers=users, total=total, page=page, total_pages=total_pages(total, PAGE_SIZE))


@router.get("/following/{user_id}", response_model=FollowingPage)
async def list_following(
    user_id: int,
    page: int = Query(default=1),
    store: CredentialStore = Depends(get_credential_store),
) -> FollowingPage:
    await ensure_user_exists(store, user_id)
    users, total, page = await _follow_page(
        store.session,
        match_column=Follow.follower_id,
        other_column=Follow.followed_id,
        user_id=user_id,
        page=page,
    )
    return FollowingPage(following=users, total=total, page=page, total_pages=total_pages(total, PAGE_SIZE))


@router.get("/status/{user_id}", response_model=FollowStatus)
async def follow_status(
    user_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> FollowStatus:
    """Whether the caller follows ``user_id``; always false for oneself."""

    if user_id == current_user_id:
        return FollowStatus(is_following=False)
    result = await session.execute(
        select(Follow.id).where(
            Follow.follower_id == current_user_id,
            Follow.followed_id == user_id,
        )
    )
    return FollowStatus(is_following=result.scalar_one_or_none() is not None)


@router.get("/counts/{user_id}", response_model=FollowCounts)
async def follow_counts(
    user_id: int,
    store: CredentialStore = Depends(get_credential_store),
) -> FollowCounts:
    await ensure_user_exists(store, user_id)
    session = store.session
    followers = (
        await session.execute(select(func.count(Follow.id)).where(Follow.followed_id == user_id))
    ).scalar_one()
    following = (
        await session.execute(select(func.count(Follow.id)).where(Follow.follower_id == user_id))
    ).scalar_one()
    return FollowCounts(followers=followers, following=following)
