"""Repository layer for the forum service.

Database-backed `ForumStore` built on async SQLAlchemy. One session per
operation; single-statement updates rely on the database for atomicity.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from packages.common.config import StorageBackend
from packages.common.errors import BackendError, NotFoundError
from packages.common.metrics import store_errors
from packages.schemas.forum import Post, Reply
from .models import Base, PostRow, ReplyRow
from .store import author_or_anonymous, matches, require_text, utcnow

log = logging.getLogger(__name__)


# ids are signed 32-bit INTEGER columns on every supported database
_MAX_PK = 2**31 - 1


def _pk(raw: Any) -> Optional[int]:
    """Parse a client-supplied id.

    Only canonical decimal strings name a row ("7", never "07", "+7", " 7" or
    "0_7"), matching the string keys of the memory store. Anything else, or a
    value outside the column range, returns None and reads as not found.
    """
    text = str(raw)
    if not (text.isascii() and text.isdigit()) or len(text) > len(str(_MAX_PK)):
        return None
    if text != str(int(text)):
        return None
    n = int(text)
    return n if 0 < n <= _MAX_PK else None


def _aware(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _reply_from_row(row: ReplyRow) -> Reply:
    return Reply(
        id=str(row.id),
        post_id=str(row.post_id),
        content=row.content,
        author=row.author,
        created_at=_aware(row.created_at),
        is_answer=bool(row.is_answer),
    )


def _post_from_row(row: PostRow, replies: Optional[List[ReplyRow]] = None) -> Post:
    return Post(
        id=str(row.id),
        title=row.title,
        content=row.content,
        author=row.author,
        votes=row.votes,
        created_at=_aware(row.created_at),
        is_answered=bool(row.is_answered),
        replies=[_reply_from_row(r) for r in (row.replies if replies is None else replies)],
    )


class SqlForumStore:
    """Async SQLAlchemy implementation of `ForumStore`."""

    backend = StorageBackend.PERSISTENT

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "SqlForumStore":
        return cls(create_async_engine(url, echo=echo))

    async def init_db(self) -> None:
        """Create database schema if it doesn't exist.

        Raises:
            BackendError: If the database cannot be reached.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            store_errors.labels(kind="init").inc()
            raise BackendError(f"database unavailable: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except SQLAlchemyError as e:
            store_errors.labels(kind=op).inc()
            log.error("store operation %s failed: %s", op, e)
            raise BackendError(f"{op} failed: {e}") from e

    async def _fetch(self, session: AsyncSession, pk: Optional[int]) -> Optional[PostRow]:
        if pk is None:
            return None
        stmt = (
            select(PostRow)
            .where(PostRow.id == pk)
            .options(selectinload(PostRow.replies))
            .execution_options(populate_existing=True)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def create_post(self, title: Any, content: Any, author: Any = None) -> Post:
        title = require_text(title, "title")
        content = require_text(content, "content")
        async with self._session("create_post") as session:
            row = PostRow(
                title=title,
                content=content,
                author=author_or_anonymous(author),
                votes=0,
                created_at=utcnow(),
                is_answered=False,
            )
            session.add(row)
            await session.commit()
            return _post_from_row(row, replies=[])

    async def create_reply(self, post_id: str, content: Any, author: Any = None) -> Reply:
        pk = _pk(post_id)
        async with self._session("create_reply") as session:
            post = await session.get(PostRow, pk) if pk is not None else None
            if post is None:
                raise NotFoundError("Post", post_id)
            content = require_text(content, "content")
            row = ReplyRow(
                post_id=post.id,
                content=content,
                author=author_or_anonymous(author),
                created_at=utcnow(),
                is_answer=False,
            )
            session.add(row)
            await session.commit()
            return _reply_from_row(row)

    async def list_posts(self, search: Optional[str] = None) -> List[Post]:
        stmt = (
            select(PostRow)
            .options(selectinload(PostRow.replies))
            .order_by(PostRow.votes.desc(), PostRow.created_at.desc(), PostRow.id.desc())
        )
        # SQLite lower() folds ASCII only, so there the match happens in Python alone
        if search and self._engine.dialect.name != "sqlite":
            stmt = stmt.where(
                or_(
                    PostRow.title.icontains(search, autoescape=True),
                    PostRow.content.icontains(search, autoescape=True),
                )
            )
        async with self._session("list_posts") as session:
            res = await session.execute(stmt)
            posts = [_post_from_row(row) for row in res.scalars().all()]
        return [p for p in posts if matches(search, p.title, p.content)]

    async def get_post(self, post_id: str) -> Post:
        async with self._session("get_post") as session:
            row = await self._fetch(session, _pk(post_id))
            if row is None:
                raise NotFoundError("Post", post_id)
            return _post_from_row(row)

    async def upvote_post(self, post_id: str) -> Post:
        pk = _pk(post_id)
        async with self._session("upvote_post") as session:
            if pk is None:
                raise NotFoundError("Post", post_id)
            res = await session.execute(
                update(PostRow).where(PostRow.id == pk).values(votes=PostRow.votes + 1)
            )
            if res.rowcount == 0:
                await session.rollback()
                raise NotFoundError("Post", post_id)
            await session.commit()
            row = await self._fetch(session, pk)
            return _post_from_row(row)

    async def mark_answered(self, post_id: str, reply_id: Optional[str] = None) -> Post:
        async with self._session("mark_answered") as session:
            row = await self._fetch(session, _pk(post_id))
            if row is None:
                raise NotFoundError("Post", post_id)
            row.is_answered = True
            if reply_id:
                rpk = _pk(reply_id)
                reply = await session.get(ReplyRow, rpk) if rpk is not None else None
                if reply is None:
                    log.debug("mark_answered: reply %s not found, skipping flag", reply_id)
                else:
                    reply.is_answer = True
            await session.commit()
            return _post_from_row(row)
