"""Behaviour specific to the memory-resident store."""

import asyncio

import pytest

from packages.common.config import StorageBackend
from services.forum.store import MemoryForumStore, rank_posts


@pytest.mark.asyncio
async def test_interleaved_upvotes_are_not_lost() -> None:
    store = MemoryForumStore()
    post = await store.create_post("t", "c")
    await asyncio.gather(*(store.upvote_post(post.id) for _ in range(50)))
    assert (await store.get_post(post.id)).votes == 50


@pytest.mark.asyncio
async def test_results_are_copies() -> None:
    store = MemoryForumStore()
    post = await store.create_post("t", "c")
    await store.create_reply(post.id, "r")

    fetched = await store.get_post(post.id)
    fetched.votes = 99
    fetched.replies[0].is_answer = True
    fetched.replies.clear()

    again = await store.get_post(post.id)
    assert again.votes == 0
    assert len(again.replies) == 1 and again.replies[0].is_answer is False


@pytest.mark.asyncio
async def test_ids_follow_creation_order() -> None:
    store = MemoryForumStore()
    ids = [(await store.create_post(f"p{i}", "c")).id for i in range(3)]
    assert ids == ["1", "2", "3"]
    assert (await store.create_reply("2", "r")).id == "1"


@pytest.mark.asyncio
async def test_operations_yield_to_the_loop() -> None:
    store = MemoryForumStore()
    seen = []

    async def other() -> None:
        seen.append("other")

    task = asyncio.ensure_future(other())
    await store.list_posts()
    assert seen == ["other"]
    await task


def test_backend_tag() -> None:
    assert MemoryForumStore().backend is StorageBackend.MEMORY


@pytest.mark.asyncio
async def test_rank_breaks_timestamp_ties_by_id() -> None:
    store = MemoryForumStore()
    a = await store.create_post("a", "c")
    b = await store.create_post("b", "c")
    same = a.created_at
    tied = [a.model_copy(update={"created_at": same}), b.model_copy(update={"created_at": same})]
    assert [p.id for p in rank_posts(tied)] == [b.id, a.id]
