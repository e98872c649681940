"""Post endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user_id, get_db_session, require_owner
from ..errors import NotFoundError
from ..models import Post, User
from ..schemas import (
    Author,
    MessageResponse,
    PostCreate,
    PostPage,
    PostRead,
    PostUpdate,
    page_window,
    total_pages,
)

router = APIRouter(prefix="/posts", tags=["posts"])

PAGE_SIZE = 20


def post_read(post: Post, username: str) -> PostRead:
    return PostRead(
        id=post.id,
        text=post.text,
        edited=post.edited,
        viewed_times=post.viewed_times,
        created_at=post.created_at,
        updated_at=post.updated_at,
        user=Author(id=post.user_id, username=username),
    )


async def get_post_or_404(session: AsyncSession, post_id: int) -> Post:
    post = await session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


@router.post("/", response_model=PostRead, status_code=status.HTTP_201_CREATED)
async def create_post(
    payload: PostCreate,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> PostRead:
    """Publish a post as the authenticated user."""

    author = await session.get(User, current_user_id)
    if author is None:
        raise NotFoundError("User not found")

    post = Post(text=payload.text, user_id=author.id)
    session.add(post)
    await session.commit()
    await session.refresh(post)
    return post_read(post, author.username)


@router.get("/", response_model=PostPage)
async def list_posts(
    user_id: int | None = Query(default=None, alias="userId"),
    page: int = Query(default=1),
    session: AsyncSession = Depends(get_db_session),
) -> PostPage:
    """Return posts newest first, optionally only those of one user."""

    page, offset = page_window(page, PAGE_SIZE)
    count_query = select(func.count(Post.id))
    query = select(Post, User.username).join(User, Post.user_id == User.id)
    if user_id is not None:
        count_query = count_query.where(Post.user_id == user_id)
        query = query.where(Post.user_id == user_id)

    total = (await session.execute(count_query)).scalar_one()
    result = await session.execute(
        query.order_by(Post.created_at.desc(), Post.id.desc()).offset(offset).limit(PAGE_SIZE)
    )
    return PostPage(
        posts=[post_read(post, username) for post, username in result.all()],
        total=total,
        page=page,
        total_pages=total_pages(total, PAGE_SIZE),
    )


@router.get("/{post_id}", response_model=PostRead)
async def read_post(post_id: int, session: AsyncSession = Depends(get_db_session)) -> PostRead:
    """Return one post and count the view."""

    result = await session.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(viewed_times=Post.viewed_times + 1, updated_at=Post.updated_at)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount == 0:
        raise NotFoundError("Post not found")

    row = (
        await session.execute(
            select(Post, User.username)
            .join(User, Post.user_id == User.id)
            .where(Post.id == post_id)
            .execution_options(populate_existing=True)
        )
    ).one_or_none()
    if row is None:
        raise NotFoundError("Post not found")
    post, username = row
    return post_read(post, username)


@router.patch("/{post_id}", response_model=PostRead)
async def update_post(
    post_id: int,
    payload: PostUpdate,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> PostRead:
    """Edit the text of a post the caller owns."""

    post = await get_post_or_404(session, post_id)
    require_owner(current_user_id, post.user_id, "You can only update your own posts")

    if payload.text is not None:
        post.text = payload.text
        post.edited = True
    await session.commit()
    await session.refresh(post)

    author = await session.get(User, post.user_id)
    return post_read(post, author.username)


@router.delete("/{post_id}", response_model=MessageResponse)
async def delete_post(
    post_id: int,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    post = await get_post_or_404(session, post_id)
    require_owner(current_user_id, post.user_id, "You can only delete your own posts")

    await session.delete(post)
    await session.commit()
    return {"message": "Deleted successfully"}
