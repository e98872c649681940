"""User profile endpoints."""
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import clear_refresh_cookie
from ..credentials import CredentialStore
from ..dependencies import get_credential_store, get_current_user_id, get_db_session
from ..errors import ConflictError, NotFoundError, ValidationError, integrity_violation
from ..logging import get_logger
from ..models import User
from ..schemas import (
    AvailabilityResponse,
    MessageResponse,
    UserRead,
    UserSearchPage,
    UserSummary,
    UserUpdate,
    page_window,
    total_pages,
)

router = APIRouter(prefix="/users", tags=["users"])
logger = get_logger(__name__)

PAGE_SIZE = 20


@router.get("/search", response_model=UserSearchPage)
async def search_users(
    search: str | None = Query(default=None),
    page: int = Query(default=1),
    session: AsyncSession = Depends(get_db_session),
) -> UserSearchPage:
    """Find active users by username or name, newest first."""

    term = (search or "").strip()
    if not term:
        raise ValidationError("Search query is required")

    page, offset = page_window(page, PAGE_SIZE)
    pattern = f"%{term.lower()}%"
    condition = (
        User.is_active.is_(True),
        or_(func.lower(User.username).like(pattern), func.lower(User.name).like(pattern)),
    )

    total = (await session.execute(select(func.count(User.id)).where(*condition))).scalar_one()
    result = await session.execute(
        select(User)
        .where(*condition)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset(offset)
        .limit(PAGE_SIZE)
    )
    return UserSearchPage(
        users=[UserSummary.model_validate(user) for user in result.scalars().all()],
        total=total,
        page=page,
        total_pages=total_pages(total, PAGE_SIZE),
    )


@router.get("/available", response_model=AvailabilityResponse)
async def check_availability(
    username: str | None = Query(default=None),
    email: str | None = Query(default=None),
    store: CredentialStore = Depends(get_credential_store),
) -> AvailabilityResponse:
    """Report whether a username and/or email is still free."""

    available = await store.availability(username=username, email=email)
    return AvailabilityResponse(
        username_available=available.username_available,
        email_available=available.email_available,
    )


@router.get("/me", response_model=UserRead)
async def read_me(
    current_user_id: int = Depends(get_current_user_id),
    store: CredentialStore = Depends(get_credential_store),
) -> User:
    user = await store.get_by_id(current_user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.patch("/me", response_model=UserRead)
async def update_me(
    payload: UserUpdate,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Change name, username or description of the caller's profile."""

    user = await session.get(User, current_user_id)
    if user is None:
        raise NotFoundError("User not found")

    changes = payload.model_dump(exclude_unset=True)
    username = changes.get("username")
    if username and username.lower() != user.username.lower():
        taken = await session.execute(
            select(User.id).where(
                func.lower(User.username) == username.lower(),
                User.id != user.id,
            )
        )
        if taken.scalar_one_or_none() is not None:
            raise ConflictError("Username already taken")

    for field, value in changes.items():
        if field in ("name", "username") and value is None:
            continue
        setattr(user, field, value)

    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if integrity_violation(exc) == "unique":
            raise ConflictError("Username already taken") from exc
        raise
    await session.refresh(user)
    return user


@router.delete("/me", response_model=MessageResponse)
async def delete_me(
    response: Response,
    current_user_id: int = Depends(get_current_user_id),
    store: CredentialStore = Depends(get_credential_store),
) -> dict[str, str]:
    """Delete the caller's account together with everything it owns."""

    if not await store.delete_user(current_user_id):
        raise NotFoundError("User not found")
    clear_refresh_cookie(response)
    logger.info("user_deleted", user_id=current_user_id)
    return {"message": "Deleted successfully"}


@router.get("/{user_id}", response_model=UserRead)
async def read_user(
    user_id: int,
    store: CredentialStore = Depends(get_credential_store),
) -> User:
    user = await store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user
