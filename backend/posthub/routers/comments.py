"""Comment endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user_id, get_db_session, require_owner
from ..errors import NotFoundError, integrity_violation
from ..models import Comment, Post, User
from ..schemas import (
    Author,
    CommentCreate,
    CommentPage,
    CommentRead,
    CommentUpdate,
    MessageResponse,
    page_window,
    total_pages,
)

router = APIRouter(prefix="/comments", tags=["comments"])

PAGE_SIZE = 20


def comment_read(comment: Comment, username: str) -> CommentRead:
    return CommentRead(
        id=comment.id,
        text=comment.text,
        edited=comment.edited,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        post_id=comment.post_id,
        user=Author(id=comment.user_id, username=username),
    )


async def get_comment_or_404(session: AsyncSession, comment_id: int) -> Comment:
    comment = await session.get(Comment, comment_id)
    if comment is None:
        raise NotFoundError("Comment not found")
    return comment


async def author_name(session: AsyncSession, user_id: int) -> str:
    result = await session.execute(select(User.username).where(User.id == user_id))
    username = result.scalar_one_or_none()
    if username is None:
        raise NotFoundError("User not found")
    return username


@router.post("/", response_model=CommentRead, status_code=status.HTTP_201_CREATED)
async def create_comment(
    payload: CommentCreate,
    post_id: int = Query(..., alias="postId"),
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> CommentRead:
    """Comment on an existing post."""

    if await session.get(Post, post_id) is None:
        raise NotFoundError("Post not found")
    username = await author_name(session, current_user_id)

    comment = Comment(text=payload.text, user_id=current_user_id, post_id=post_id)
    session.add(comment)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        # Post deleted between the lookup and the insert
        if integrity_violation(exc) == "foreign_key":
            raise NotFoundError("Post not found") from exc
        raise
    await session.refresh(comment)
    return comment_read(comment, username)


@router.get("/", response_model=CommentPage)
async def list_comments(
    post_id: int = Query(..., alias="postId"),
    page: int = Query(default=1),
    session: AsyncSession = Depends(get_db_session),
) -> CommentPage:
    """Return the comments of a post, newest first."""

    page, offset = page_window(page, PAGE_SIZE)
    total = (
        await session.execute(select(func.count(Comment.id)).where(Comment.post_id == post_id))
    ).scalar_one()
    result = await session.execute(
        select(Comment, User.username)
        .join(User, Comment.user_id == User.id)
        .where(Comment.post_id == post_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset(offset)
        .limit(PAGE_SIZE)
    )
    return CommentPage(
        comments=[comment_read(comment, username) for comment, username in result.all()],
        total=total,
        page=page,
        total_pages=total_pages(total, PAGE_SIZE),
    )


@router.get("/{comment_id}", response_model=CommentRead)
async def read_comment(
    comment_id: int, session: AsyncSession = Depends(get_db_session)
) -> CommentRead:
    comment = await get_comment_or_404(session, comment_id)
    return comment_read(comment, await author_name(session, comment.user_id))


@router.patch("/{comment_id}", response_model=CommentRead)
async def update_comment(
    comment_id: int,
    payload: CommentUpdate,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> CommentRead:
    """Edit a comment the caller wrote."""

    comment = await get_comment_or_404(session, comment_id)
    require_owner(current_user_id, comment.user_id, "You can only update your own comments")

    if payload.text is not None:
        comment.text = payload.text
        comment.edited = True
    await session.commit()
    await session.refresh(comment)
    return comment_read(comment, await author_name(session, comment.user_id))


@router.delete("/{comment_id}", response_model=MessageResponse)
async def delete_comment(
    comment_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    comment = await get_comment_or_404(session, comment_id)
    require_owner(current_user_id, comment.user_id, "You can only delete your own comments")

    await session.delete(comment)
    await session.commit()
    return {"message": "Deleted successfully"}
