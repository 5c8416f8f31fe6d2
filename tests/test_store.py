"""Tests for SessionStore."""

from __future__ import annotations

import aiosqlite
import pytest

from clawcore.models.message import Message, ToolCall
from clawcore.store.sessions import SessionStore, StoreNotInitializedError
from tests.conftest import conversation


class TestSessionCache:
    async def test_get_or_create_is_lazy_and_stable(self, store):
        """get_or_create returns the same Session object for the same key."""
        assert "tg:1" not in store
        first = store.get_or_create("tg:1")
        second = store.get_or_create("tg:1")
        assert first is second
        assert "tg:1" in store

    async def test_missing_session_defaults(self, store):
        """Unknown keys read as empty history and empty summary without being created."""
        assert store.get_history("nope") == []
        assert store.get_summary("nope") == ""
        assert "nope" not in store

    async def test_add_message_creates_session(self, store):
        store.add_message("cli:direct", "user", "hello")
        history = store.get_history("cli:direct")
        assert len(history) == 1
        assert history[0].role == "user"
        assert history[0].content == "hello"

    async def test_get_history_returns_copy(self, store):
        """Mutating the returned list does not touch the stored history."""
        store.add_message("k", "user", "one")
        snapshot = store.get_history("k")
        snapshot.append(Message.user("injected"))
        assert len(store.get_history("k")) == 1

    async def test_add_full_message_keeps_tool_fields(self, store):
        call = ToolCall(id="call_1", name="echo", arguments={"text": "hi"})
        store.add_full_message("k", Message.assistant("", tool_calls=[call]))
        store.add_full_message("k", Message.tool("call_1", "echo: hi"))
        history = store.get_history("k")
        assert history[0].tool_calls[0].name == "echo"
        assert history[1].tool_call_id == "call_1"

    async def test_truncate_keeps_most_recent(self, store):
        for m in conversation(10):
            store.add_full_message("k", m)
        store.truncate_history("k", 4)
        history = store.get_history("k")
        assert [m.content.split()[1] for m in history] == ["6", "7", "8", "9"]

    async def test_truncate_shorter_history_is_noop(self, store):
        for m in conversation(3):
            store.add_full_message("k", m)
        store.truncate_history("k", 4)
        assert len(store.get_history("k")) == 3

    async def test_truncate_and_summary_ignore_unknown_keys(self, store):
        store.truncate_history("ghost", 2)
        store.set_summary("ghost", "summary")
        assert "ghost" not in store
        assert store.get_summary("ghost") == ""

    async def test_set_summary(self, store):
        store.get_or_create("k")
        store.set_summary("k", "they talked about cats")
        assert store.get_summary("k") == "they talked about cats"


class TestSessionPersistence:
    async def test_save_and_reload(self, config, store):
        """Saved sessions are loaded back, in order, by a fresh store."""
        call = ToolCall(id="call_1", name="echo", arguments={"text": "hi"})
        store.add_message("tg:42", "user", "hi")
        store.add_full_message("tg:42", Message.assistant("", tool_calls=[call]))
        store.add_full_message("tg:42", Message.tool("call_1", "echo: hi"))
        store.add_message("tg:42", "assistant", "done")
        store.set_summary("tg:42", "earlier stuff")
        assert await store.save(store.get_or_create("tg:42")) is True

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            history = reloaded.get_history("tg:42")
            assert [m.role for m in history] == ["user", "assistant", "tool", "assistant"]
            assert history[1].tool_calls == [call]
            assert history[2].tool_call_id == "call_1"
            assert reloaded.get_summary("tg:42") == "earlier stuff"
        finally:
            await reloaded.close()

    async def test_save_after_truncate_drops_old_rows(self, config, store):
        for m in conversation(8):
            store.add_full_message("k", m)
        await store.save(store.get_or_create("k"))
        store.truncate_history("k", 2)
        await store.save(store.get_or_create("k"))

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            assert len(reloaded.get_history("k")) == 2
        finally:
            await reloaded.close()

    async def test_session_keys(self, store):
        store.get_or_create("a")
        store.get_or_create("b")
        assert sorted(store.session_keys()) == ["a", "b"]

    async def test_delete_session(self, config, store):
        store.add_message("k", "user", "bye")
        await store.save(store.get_or_create("k"))
        assert await store.delete_session("k") is True
        assert "k" not in store

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            assert "k" not in reloaded
        finally:
            await reloaded.close()

    async def test_save_failure_is_logged_not_raised(self, store, monkeypatch):
        """A database error during save returns False instead of raising."""
        store.add_message("k", "user", "hi")
        conn = store._conn

        async def broken_executemany(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(conn, "executemany", broken_executemany)
        assert await store.save(store.get_or_create("k")) is False

    async def test_save_requires_initialize(self, config):
        s = SessionStore(config.store)
        s.add_message("k", "user", "hi")
        with pytest.raises(StoreNotInitializedError):
            await s.save(s.get_or_create("k"))

    async def test_async_context_manager(self, config):
        async with SessionStore(config.store) as s:
            s.add_message("k", "user", "hi")
            assert await s.save(s.get_or_create("k"))
