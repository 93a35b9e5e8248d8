import asyncio

import pytest
from sqlalchemy import select

from app.modules.docchat.services.errors import ConversationNotFound, UpstreamUnavailable
from app.services.memory import repo
from app.services.memory.models import ChatMessage
from conftest import HashingEmbedder


class RecordingIndex:
    def __init__(self):
        self.records = []

    async def upsert(self, records):
        self.records.extend(records)
        return len(records)

    async def search(self, vector, top_k, scope_id):
        return []

    async def delete_scope(self, scope_id):
        pass

    async def reset(self):
        pass


async def _all_messages(store):
    async with store.sessions() as db:
        return list((await db.execute(select(ChatMessage))).scalars().all())


class FailingIndex:
    def __init__(self):
        self.upserts = 0

    async def upsert(self, records):
        self.upserts += 1
        raise UpstreamUnavailable("qdrant.upsert failed")

    async def search(self, vector, top_k, scope_id):
        return []

    async def delete_scope(self, scope_id):
        raise UpstreamUnavailable("qdrant.delete failed")

    async def reset(self):
        pass


def test_finalize_records_history_then_index(build_env):
    async def _run():
        env = await build_env()
        conv = await env.store.create_conversation("user-1")
        recorded = await env.pipeline.persistence.finalize(conv.id, "Explain photosynthesis", "Light becomes sugar.")
        turns = await env.store.recent_turns(conv.id)
        count = await env.index.count(conv.id)
        await env.close()
        return recorded, turns, count

    recorded, turns, count = asyncio.run(_run())
    assert recorded.indexed
    assert turns == [
        {"role": "user", "content": "Explain photosynthesis"},
        {"role": "assistant", "content": "Light becomes sugar."},
    ]
    assert count == 2


def test_index_failure_keeps_the_turn(build_env):
    async def _run():
        index = FailingIndex()
        env = await build_env(index=index)
        conv = await env.store.create_conversation("user-1")
        recorded = await env.pipeline.persistence.finalize(conv.id, "hi", "hello")
        turns = await env.store.recent_turns(conv.id)
        await env.close()
        return recorded, turns, index

    recorded, turns, index = asyncio.run(_run())
    assert not recorded.indexed
    assert index.upserts == 1
    assert [t["role"] for t in turns] == ["user", "assistant"]


def test_embedding_failure_keeps_the_turn(build_env):
    async def _run():
        env = await build_env(embedder=HashingEmbedder(fail=True))
        conv = await env.store.create_conversation("user-1")
        recorded = await env.pipeline.persistence.finalize(conv.id, "hi", "hello")
        count = await env.index.count(conv.id)
        turns = await env.store.recent_turns(conv.id)
        await env.close()
        return recorded, count, turns

    recorded, count, turns = asyncio.run(_run())
    assert not recorded.indexed
    assert count == 0
    assert len(turns) == 2


def test_history_failure_writes_nothing_to_the_index(build_env):
    async def _run():
        env = await build_env()
        try:
            with pytest.raises(ConversationNotFound):
                await env.pipeline.persistence.finalize("missing-conversation", "hi", "hello")
            return await env.index.count("missing-conversation")
        finally:
            await env.close()

    assert asyncio.run(_run()) == 0


def test_turn_order_is_append_order(build_env):
    async def _run():
        env = await build_env()
        conv = await env.store.create_conversation("user-1")
        for i in range(3):
            await env.pipeline.persistence.finalize(conv.id, f"q{i}", f"a{i}")
        all_turns = await env.store.recent_turns(conv.id, limit=None)
        last_two = await env.store.recent_turns(conv.id, limit=2)
        await env.close()
        return all_turns, last_two

    all_turns, last_two = asyncio.run(_run())
    assert [t["content"] for t in all_turns] == ["q0", "a0", "q1", "a1", "q2", "a2"]
    assert [t["content"] for t in last_two] == ["q2", "a2"]


def test_forget_removes_records_then_history(build_env):
    async def _run():
        env = await build_env()
        keep = await env.store.create_conversation("user-1")
        drop = await env.store.create_conversation("user-1")
        await env.pipeline.persistence.finalize(keep.id, "keep me", "kept")
        await env.pipeline.persistence.finalize(drop.id, "drop me", "dropped")

        deleted = await env.pipeline.persistence.forget(drop.id)
        state = (
            deleted,
            await env.store.get_conversation(drop.id),
            await env.index.count(drop.id),
            await env.index.count(keep.id),
            len(await env.store.recent_turns(keep.id)),
        )
        await env.close()
        return state

    deleted, gone, dropped_count, kept_count, kept_turns = asyncio.run(_run())
    assert deleted
    assert gone is None
    assert dropped_count == 0
    assert kept_count == 2
    assert kept_turns == 2


def test_failed_index_delete_leaves_conversation_intact(build_env):
    async def _run():
        env = await build_env(index=FailingIndex())
        conv = await env.store.create_conversation("user-1")
        try:
            with pytest.raises(UpstreamUnavailable):
                await env.pipeline.persistence.forget(conv.id)
            return await env.store.get_conversation(conv.id)
        finally:
            await env.close()

    assert asyncio.run(_run()) is not None


def test_concurrent_appends_keep_every_turn(build_env):
    async def _run():
        env = await build_env()
        conv = await env.store.create_conversation("user-1")
        ids = [
            await env.store.create_turn(role, text)
            for role, text in [("user", "q1"), ("assistant", "a1"), ("user", "q2"), ("assistant", "a2")]
        ]
        await asyncio.gather(
            env.store.append_turns(conv.id, ids[:2]),
            env.store.append_turns(conv.id, ids[2:]),
        )
        rows = await env.store.messages(conv.id)
        await env.close()
        return ids, rows

    ids, rows = asyncio.run(_run())
    assert len(rows) == 4
    assert sorted(m.id for m in rows) == sorted(ids)
    # Each pair stays contiguous whichever request won the lock
    order = [m.id for m in rows]
    assert order in (ids, ids[2:] + ids[:2])


def test_concurrent_finalize_on_one_conversation(build_env):
    async def _run():
        index = RecordingIndex()
        env = await build_env(index=index)
        conv = await env.store.create_conversation("user-1")
        results = await asyncio.gather(
            *(env.pipeline.persistence.finalize(conv.id, f"q{i}", f"a{i}") for i in range(5))
        )
        turns = await env.store.recent_turns(conv.id, limit=None)
        await env.close()
        return results, turns, index

    results, turns, index = asyncio.run(_run())
    assert all(r.indexed for r in results)
    assert len(turns) == 10
    pairs = [(turns[i]["content"], turns[i + 1]["content"]) for i in range(0, 10, 2)]
    assert sorted(pairs) == [(f"q{i}", f"a{i}") for i in range(5)]
    assert all(turns[i]["role"] == "user" and turns[i + 1]["role"] == "assistant" for i in range(0, 10, 2))
    assert len(index.records) == 10


def test_failed_history_write_leaves_no_orphan_turns(build_env, monkeypatch):
    async def broken_attach(db, conv, message_ids):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "attach_messages", broken_attach)

    async def _run():
        index = RecordingIndex()
        env = await build_env(index=index)
        conv = await env.store.create_conversation("user-1")
        try:
            with pytest.raises(UpstreamUnavailable):
                await env.pipeline.persistence.finalize(conv.id, "hi", "hello")
            return await _all_messages(env.store), index
        finally:
            await env.close()

    messages, index = asyncio.run(_run())
    assert messages == []
    assert index.records == []


def test_missing_conversation_leaves_no_orphan_turns(build_env):
    async def _run():
        env = await build_env(index=RecordingIndex())
        try:
            with pytest.raises(ConversationNotFound):
                await env.pipeline.persistence.finalize("missing-conversation", "hi", "hello")
            return await _all_messages(env.store)
        finally:
            await env.close()

    assert asyncio.run(_run()) == []
