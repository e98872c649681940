"""Like endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user_id, get_db_session
from ..errors import ConflictError, NotFoundError, ValidationError, integrity_violation
from ..models import Like, Post, User
from ..schemas import (
    Author,
    LikeCount,
    LikedPostPage,
    LikedPostRead,
    LikePage,
    LikeRead,
    Liker,
    LikeStatus,
    MessageResponse,
    page_window,
    total_pages,
)

router = APIRouter(prefix="/likes", tags=["likes"])

PAGE_SIZE = 10


@router.post("/{post_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def like_post(
    post_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    """Like someone else's post once."""

    post = await session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    if post.user_id == current_user_id:
        raise ValidationError("You cannot like your own post")

    session.add(Like(user_id=current_user_id, post_id=post_id))
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        violation = integrity_violation(exc)
        if violation == "unique":
            raise ConflictError("You have already liked this post") from exc
        if violation == "foreign_key":
            raise NotFoundError("User or post not found") from exc
        raise
    return {"message": "Post liked successfully"}


@router.delete("/{post_id}", response_model=MessageResponse)
async def unlike_post(
    post_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    result = await session.execute(
        delete(Like).where(Like.user_id == current_user_id, Like.post_id == post_id)
    )
    await session.commit()
    if result.rowcount == 0:
        raise NotFoundError("Like not found")
    return {"message": "Post unliked successfully"}


@router.get("/post/{post_id}", response_model=LikePage)
async def likes_for_post(
    post_id: int,
    page: int = Query(default=1),
    session: AsyncSession = Depends(get_db_session),
) -> LikePage:
    """Users who liked a post, most recent first."""

    page, offset = page_window(page, PAGE_SIZE)
    total = (
        await session.execute(select(func.count(Like.id)).where(Like.post_id == post_id))
    ).scalar_one()
    result = await session.execute(
        select(Like.created_at, User.id, User.username, User.name)
        .join(User, Like.user_id == User.id)
        .where(Like.post_id == post_id)
        .order_by(Like.created_at.desc(), Like.id.desc())
        .offset(offset)
        .limit(PAGE_SIZE)
    )
    likes = [
        LikeRead(user=Liker(id=user_id, username=username, name=name), liked_at=liked_at)
        for liked_at, user_id, username, name in result.all()
    ]
    return LikePage(likes=likes, total=total, page=page, total_pages=total_pages(total, PAGE_SIZE))


@router.get("/user/{user_id}", response_model=LikedPostPage)
async def liked_posts(
    user_id: int,
    page: int = Query(default=1),
    session: AsyncSession = Depends(get_db_session),
) -> LikedPostPage:
    """Posts a user has liked, most recent like first."""

    page, offset = page_window(page, PAGE_SIZE)
    total = (
        await session.execute(select(func.count(Like.id)).where(Like.user_id == user_id))
    ).scalar_one()
    result = await session.execute(
        select(Like.created_at, Post, User.username)
        .join(Post, Like.post_id == Post.id)
        .join(User, Post.user_id == User.id)
        .where(Like.user_id == user_id)
        .order_by(Like.created_at.desc(), Like.id.desc())
        .offset(offset)
        .limit(PAGE_SIZE)
    )
    posts = [
        LikedPostRead(
            id=post.id,
            text=post.text,
            edited=post.edited,
            viewed_times=post.viewed_times,
            created_at=post.created_at,
            updated_at=post.updated_at,
            user=Author(id=post.user_id, username=username),
            liked_at=liked_at,
        )
        for liked_at, post, username in result.all()
    ]
    return LikedPostPage(posts=posts, total=total, page=page, total_pages=total_pages(total, PAGE_SIZE))


@router.get("/status/{post_id}", response_model=LikeStatus)
async def like_status(
    post_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> LikeStatus:
    result = await session.execute(
        select(Like.id).where(Like.user_id == current_user_id, Like.post_id == post_id)
    )
    return LikeStatus(is_liked=result.scalar_one_or_none() is not None)


@router.get("/count/{post_id}", response_model=LikeCount)
async def like_count(post_id: int, session: AsyncSession = Depends(get_db_session)) -> LikeCount:
    if await session.get(Post, post_id) is None:
        raise NotFoundError("Post not found")
    count = (
        await session.execute(select(func.count(Like.id)).where(Like.post_id == post_id))
    ).scalar_one()
    return LikeCount(count=count)
