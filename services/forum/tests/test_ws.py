"""End-to-end tests over the live event WebSocket."""

import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from services.forum.app import create_app
from services.forum.hub import NEW_POST, BroadcastHub
from services.forum.routes import events
from services.forum.store import MemoryForumStore


def _client(settings) -> TestClient:
    return TestClient(create_app(settings, store=MemoryForumStore(), hub=BroadcastHub()))


def test_subscriber_sees_the_whole_answer_flow(settings) -> None:
    with _client(settings) as client, client.websocket_connect("/ws") as ws:
        post = client.post("/api/posts", json={"title": "Bug in loop", "content": "code fails", "author": ""}).json()
        event = ws.receive_json()
        assert event == {"event": "newPost", "data": post}

        reply = client.post(f"/api/posts/{post['_id']}/reply", json={"content": "try this fix"}).json()
        event = ws.receive_json()
        assert event["event"] == "newReply"
        assert event["data"] == {"postId": post["_id"], "reply": reply}

        client.post(f"/api/posts/{post['_id']}/upvote")
        assert ws.receive_json() == {"event": "postUpvoted", "data": {"postId": post["_id"], "votes": 1}}

        client.post(f"/api/posts/{post['_id']}/answer", json={"replyId": reply["_id"]})
        event = ws.receive_json()
        assert event == {"event": "postAnswered", "data": {"postId": post["_id"], "replyId": reply["_id"]}}

        fetched = client.get(f"/api/posts/{post['_id']}").json()
        assert fetched["isAnswered"] is True
        assert fetched["replies"][0]["isAnswer"] is True


def test_every_subscriber_receives_the_event(settings) -> None:
    with _client(settings) as client:
        with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
            client.post("/api/posts", json={"title": "t", "content": "c"})
            assert a.receive_json()["event"] == "newPost"
            assert b.receive_json()["event"] == "newPost"


def test_failed_request_broadcasts_nothing(settings) -> None:
    with _client(settings) as client, client.websocket_connect("/ws") as ws:
        assert client.post("/api/posts", json={"title": ""}).status_code == 400
        assert client.post("/api/posts/42/upvote").status_code == 404
        client.post("/api/posts", json={"title": "after", "content": "c"})
        # the first frame is the successful create, nothing from the failures
        assert ws.receive_json()["data"]["title"] == "after"


def test_lifespan_binds_memory_store_without_database(settings) -> None:
    app = create_app(settings)
    with TestClient(app) as client:
        assert client.get("/api/health").json()["storage"] == "memory"
        assert client.post("/api/posts", json={"title": "t", "content": "c"}).status_code == 201


class _IdleSocket:
    """Accepts, then waits for inbound frames that never arrive."""

    def __init__(self, hub: BroadcastHub) -> None:
        self.app = SimpleNamespace(state=SimpleNamespace(hub=hub))
        self.client = None
        self.sent: list = []
        self.accepted = asyncio.Event()

    async def accept(self) -> None:
        self.accepted.set()

    async def receive_text(self) -> str:
        await asyncio.Event().wait()
        return ""

    async def send_json(self, data) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        pass


@pytest.mark.asyncio
async def test_cancelled_handler_raises_its_own_cancellation() -> None:
    hub = BroadcastHub()
    sock = _IdleSocket(hub)
    handler = asyncio.create_task(events(sock))
    await sock.accepted.wait()
    await hub.broadcast(NEW_POST, {"_id": "1"})
    await asyncio.sleep(0)
    assert sock.sent == [{"event": "newPost", "data": {"_id": "1"}}]

    handler.cancel("server shutdown")
    await asyncio.sleep(0)
    # cancel again while the handler is stopping its pump and drain tasks
    handler.cancel("server shutdown")
    with pytest.raises(asyncio.CancelledError) as info:
        await handler
    assert info.value.args == ("server shutdown",)
    assert hub.client_count == 0


@pytest.mark.asyncio
async def test_hub_close_ends_the_handler() -> None:
    hub = BroadcastHub()
    sock = _IdleSocket(hub)
    handler = asyncio.create_task(events(sock))
    await sock.accepted.wait()
    await hub.close()
    await asyncio.wait_for(handler, timeout=1)
    assert hub.client_count == 0
