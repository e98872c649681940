"""SQLAlchemy models exposed by the backend."""
from .base import Base, utcnow
from .comment import Comment
from .follow import Follow
from .like import Like
from .post import Post
from .user import User

__all__ = ["Base", "Comment", "Follow", "Like", "Post", "User", "utcnow"]
