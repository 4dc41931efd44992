"""SQLAlchemy models for the forum service.

Defines two tables:
- Post: A discussion topic with its vote count and answered flag.
- Reply: A response that belongs to a post.
"""

from datetime import datetime

from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import Boolean, DateTime, Integer, Text, ForeignKey

from .store import utcnow

Base = declarative_base()


class PostRow(Base):
    """Discussion topic row.

    Attributes:
        id: Primary key, exposed to clients as a decimal string.
        title: Post title.
        content: Post body in plain text.
        author: Display name; "Anonymous" when not given.
        votes: Upvote counter.
        created_at: Creation time (UTC).
        is_answered: One-way flag set when an answer is accepted.
        replies: Replies in creation order.
    """

    __tablename__ = "posts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text)
    author: Mapped[str] = mapped_column(Text, default="Anonymous")
    votes: Mapped[int] = mapped_column(Integer, default=0, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    is_answered: Mapped[bool] = mapped_column(Boolean, default=False)
    replies = relationship("ReplyRow", back_populates="post", order_by="ReplyRow.id")


class ReplyRow(Base):
    """Reply row that belongs to a PostRow.

    Attributes:
        id: Primary key, exposed to clients as a decimal string.
        post_id: Foreign key referencing posts.id.
        content: Reply body.
        author: Display name; "Anonymous" when not given.
        created_at: Creation time (UTC).
        is_answer: One-way flag set when this reply is accepted.
        post: Backreference to the owning PostRow.
    """

    __tablename__ = "replies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), index=True)
    content: Mapped[str] = mapped_column(Text)
    author: Mapped[str] = mapped_column(Text, default="Anonymous")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    is_answer: Mapped[bool] = mapped_column(Boolean, default=False)
    post = relationship("PostRow", back_populates="replies")
