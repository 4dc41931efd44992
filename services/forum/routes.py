"""HTTP and WebSocket routes for the forum service.

Endpoints:
- GET  /api/posts?search=         list posts (replies inlined)
- GET  /api/posts/{post_id}       one post (replies inlined)
- POST /api/posts                 create a post               -> newPost
- POST /api/posts/{post_id}/reply reply to a post             -> newReply
- POST /api/posts/{post_id}/upvote upvote a post              -> postUpvoted
- POST /api/posts/{post_id}/answer mark a post answered       -> postAnswered
- WS   /ws                        live event stream
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, List, Optional, Set

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status

from packages.common.errors import ValidationError
from packages.schemas.forum import AnswerRequest, Post, PostCreate, Reply, ReplyCreate
from .hub import CLOSED, NEW_POST, NEW_REPLY, POST_ANSWERED, POST_UPVOTED, Broadcaster, BroadcastHub
from .store import ForumStore

log = logging.getLogger("forum.api")

router = APIRouter(prefix="/api/posts", tags=["posts"])
ws_router = APIRouter(tags=["events"])


def get_store(request: Request) -> ForumStore:
    return request.app.state.store


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.hub


def _filled(value: Optional[str]) -> bool:
    return bool(value and value.strip())


async def _notify(hub: Broadcaster, event: str, payload: Any) -> None:
    # the write is already committed; a failed broadcast must not fail the request
    try:
        await hub.broadcast(event, payload)
    except Exception:
        log.exception("broadcast %s failed", event)


@router.get("", response_model=List[Post])
async def list_posts(
    search: Optional[str] = Query(default=None),
    store: ForumStore = Depends(get_store),
) -> List[Post]:
    return await store.list_posts(search)


@router.get("/{post_id}", response_model=Post)
async def get_post(post_id: str, store: ForumStore = Depends(get_store)) -> Post:
    return await store.get_post(post_id)


@router.post("", response_model=Post, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    store: ForumStore = Depends(get_store),
    hub: Broadcaster = Depends(get_broadcaster),
) -> Post:
    """Create a post; 400 if title or content is missing."""
    if not _filled(body.title) or not _filled(body.content):
        raise ValidationError("Title and content are required")
    post = await store.create_post(body.title, body.content, body.author)
    log.info("post %s created", post.id)
    await _notify(hub, NEW_POST, post.to_wire())
    return post


@router.post("/{post_id}/reply", response_model=Reply, status_code=status.HTTP_201_CREATED)
async def create_reply(
    post_id: str,
    body: ReplyCreate,
    store: ForumStore = Depends(get_store),
    hub: Broadcaster = Depends(get_broadcaster),
) -> Reply:
    """Reply to a post; 400 if content is missing, 404 if the post does not exist."""
    if not _filled(body.content):
        raise ValidationError("Content is required")
    reply = await store.create_reply(post_id, body.content, body.author)
    log.info("reply %s added to post %s", reply.id, reply.post_id)
    await _notify(hub, NEW_REPLY, {"postId": reply.post_id, "reply": reply.to_wire()})
    return reply


@router.post("/{post_id}/upvote", response_model=Post)
async def upvote_post(
    post_id: str,
    store: ForumStore = Depends(get_store),
    hub: Broadcaster = Depends(get_broadcaster),
) -> Post:
    post = await store.upvote_post(post_id)
    await _notify(hub, POST_UPVOTED, {"postId": post.id, "votes": post.votes})
    return post


@router.post("/{post_id}/answer", response_model=Post)
async def mark_answered(
    post_id: str,
    body: Optional[AnswerRequest] = None,
    store: ForumStore = Depends(get_store),
    hub: Broadcaster = Depends(get_broadcaster),
) -> Post:
    """Mark a post answered, optionally flagging `replyId` as the accepted answer."""
    reply_id = body.reply_id if body is not None else None
    post = await store.mark_answered(post_id, reply_id)
    log.info("post %s marked answered (reply=%s)", post.id, reply_id)
    await _notify(hub, POST_ANSWERED, {"postId": post.id, "replyId": reply_id})
    return post


# -------------------------------------------------
# Live events
# -------------------------------------------------

async def _pump(websocket: WebSocket, q: asyncio.Queue) -> None:
    while True:
        item = await q.get()
        if item is CLOSED:
            return
        try:
            await websocket.send_json(item)
        except (WebSocketDisconnect, RuntimeError):
            # peer went away mid-send; the drain side reports the disconnect
            return


async def _drain(websocket: WebSocket) -> None:
    # inbound frames carry nothing; only the disconnect matters
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _stop(tasks: Set[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    # asyncio.wait, not gather: a cancellation of the handler while it waits
    # here must surface as the handler's own CancelledError, not a child's
    await asyncio.wait(tasks)
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            log.warning("websocket task failed: %r", task.exception())


@ws_router.websocket("/ws")
async def events(websocket: WebSocket) -> None:
    hub: BroadcastHub = websocket.app.state.hub
    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "?"
    # subscribe before the handshake completes so no event slips past a new client
    q = await hub.register()
    try:
        await websocket.accept()
    except Exception:
        await hub.unregister(q)
        raise
    log.info("User connected: %s", peer)

    pump = asyncio.create_task(_pump(websocket, q))
    drain = asyncio.create_task(_drain(websocket))
    try:
        done, _ = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # unregister never suspends, so it runs even while the handler is being cancelled
        await hub.unregister(q)
        log.info("User disconnected: %s", peer)
        await _stop({pump, drain})

    if drain not in done:
        # server side stop (shutdown or slow subscriber)
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close(code=1001)
