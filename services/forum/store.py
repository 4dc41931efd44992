"""Storage adapter for the forum service.

Defines the `ForumStore` contract shared by both backends, the memory-resident
implementation, and `build_store`, which binds the process to one backend at
startup. The database-backed implementation lives in `repo.py`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from packages.common.config import Settings, StorageBackend
from packages.common.errors import BackendError, NotFoundError, ValidationError
from packages.schemas.forum import ANONYMOUS, Post, Reply

log = logging.getLogger(__name__)


class ForumStore(Protocol):
    """Operations every backend exposes; results have the same shape on both."""

    backend: StorageBackend

    async def create_post(self, title: Any, content: Any, author: Any = None) -> Post: ...

    async def create_reply(self, post_id: str, content: Any, author: Any = None) -> Reply: ...

    async def list_posts(self, search: Optional[str] = None) -> List[Post]: ...

    async def get_post(self, post_id: str) -> Post: ...

    async def upvote_post(self, post_id: str) -> Post: ...

    async def mark_answered(self, post_id: str, reply_id: Optional[str] = None) -> Post: ...

    async def close(self) -> None: ...


# ---------- shared rules ----------

def require_text(value: Any, field_name: str) -> str:
    """Return `value` unchanged if it is a non-blank string, else raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value


def author_or_anonymous(author: Any) -> str:
    if isinstance(author, str) and author.strip():
        return author
    return ANONYMOUS


def rank_posts(posts: Iterable[Post]) -> List[Post]:
    """Order by votes desc, then newest first; equal timestamps fall back to newest id."""
    return sorted(posts, key=lambda p: (p.votes, p.created_at, int(p.id)), reverse=True)


def matches(term: Optional[str], *texts: str) -> bool:
    if not term:
        return True
    needle = term.lower()
    return any(needle in t.lower() for t in texts)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- memory backend ----------

@dataclass
class _PostRecord:
    id: str
    title: str
    content: str
    author: str
    created_at: datetime
    votes: int = 0
    is_answered: bool = False
    reply_ids: List[str] = field(default_factory=list)


@dataclass
class _ReplyRecord:
    id: str
    post_id: str
    content: str
    author: str
    created_at: datetime
    is_answer: bool = False


class MemoryForumStore:
    """Process-memory store used when no database is configured.

    Every operation yields to the event loop once before touching state and
    never between a read and its dependent write, so read-modify-write steps
    (upvote, flag setting) stay atomic under cooperative scheduling.
    Returned objects are fresh copies; mutating them does not touch the store.
    """

    backend = StorageBackend.MEMORY

    def __init__(self) -> None:
        self._posts: Dict[str, _PostRecord] = {}
        self._replies: Dict[str, _ReplyRecord] = {}
        self._next_post_id = 1
        self._next_reply_id = 1

    def _reply(self, r: _ReplyRecord) -> Reply:
        return Reply(
            id=r.id,
            post_id=r.post_id,
            content=r.content,
            author=r.author,
            created_at=r.created_at,
            is_answer=r.is_answer,
        )

    def _post(self, p: _PostRecord) -> Post:
        return Post(
            id=p.id,
            title=p.title,
            content=p.content,
            author=p.author,
            votes=p.votes,
            created_at=p.created_at,
            is_answered=p.is_answered,
            replies=[self._reply(self._replies[rid]) for rid in p.reply_ids],
        )

    def _require_post(self, post_id: str) -> _PostRecord:
        record = self._posts.get(str(post_id))
        if record is None:
            raise NotFoundError("Post", post_id)
        return record

    async def create_post(self, title: Any, content: Any, author: Any = None) -> Post:
        title = require_text(title, "title")
        content = require_text(content, "content")
        await asyncio.sleep(0)
        record = _PostRecord(
            id=str(self._next_post_id),
            title=title,
            content=content,
            author=author_or_anonymous(author),
            created_at=utcnow(),
        )
        self._next_post_id += 1
        self._posts[record.id] = record
        return self._post(record)

    async def create_reply(self, post_id: str, content: Any, author: Any = None) -> Reply:
        await asyncio.sleep(0)
        post = self._require_post(post_id)
        content = require_text(content, "content")
        record = _ReplyRecord(
            id=str(self._next_reply_id),
            post_id=post.id,
            content=content,
            author=author_or_anonymous(author),
            created_at=utcnow(),
        )
        self._next_reply_id += 1
        self._replies[record.id] = record
        post.reply_ids.append(record.id)
        return self._reply(record)

    async def list_posts(self, search: Optional[str] = None) -> List[Post]:
        await asyncio.sleep(0)
        return rank_posts(
            self._post(p) for p in self._posts.values() if matches(search, p.title, p.content)
        )

    async def get_post(self, post_id: str) -> Post:
        await asyncio.sleep(0)
        return self._post(self._require_post(post_id))

    async def upvote_post(self, post_id: str) -> Post:
        await asyncio.sleep(0)
        record = self._require_post(post_id)
        record.votes += 1
        return self._post(record)

    async def mark_answered(self, post_id: str, reply_id: Optional[str] = None) -> Post:
        await asyncio.sleep(0)
        record = self._require_post(post_id)
        record.is_answered = True
        if reply_id:
            reply = self._replies.get(str(reply_id))
            if reply is None:
                log.debug("mark_answered: reply %s not found, skipping flag", reply_id)
            else:
                reply.is_answer = True
        return self._post(record)

    async def close(self) -> None:
        return None


# ---------- startup binding ----------

async def build_store(settings: Settings) -> ForumStore:
    """Bind the process to one backend, decided once from configuration.

    When the database is selected but cannot be initialised, falls back to the
    memory store if `settings.STORAGE_FALLBACK` is set; otherwise re-raises.
    """
    if settings.backend is StorageBackend.MEMORY:
        log.info("Using in-memory storage (set DATABASE_URL to use a database)")
        return MemoryForumStore()

    from .repo import SqlForumStore  # lazy import

    store = SqlForumStore.from_url(settings.DATABASE_URL)
    try:
        await store.init_db()
    except BackendError as e:
        await store.close()
        if not settings.STORAGE_FALLBACK:
            raise
        log.error("Database connection error: %s", e.message)
        log.warning("Falling back to in-memory storage")
        return MemoryForumStore()
    log.info("Connected to database")
    return store
