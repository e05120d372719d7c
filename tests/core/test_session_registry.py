# tests/core/test_session_registry.py
"""
Тесты для реестра сессий и присутствия.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.core.tracking.session_registry import SessionRegistry


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestBinding:
    """Связь подключения с пользователем."""

    @pytest.mark.asyncio
    async def test_register_creates_unbound_session(self, registry: SessionRegistry) -> None:
        session = await registry.register("c1")

        assert session.connection_id == "c1"
        assert session.user_id is None
        assert await registry.user_for("c1") is None

    @pytest.mark.asyncio
    async def test_bind_is_idempotent(self, registry: SessionRegistry) -> None:
        await registry.register("c1")

        assert await registry.bind("c1", "u1", "Ann") is True
        assert await registry.bind("c1", "u1") is True

        assert await registry.user_for("c1") == "u1"
        assert registry.stats()["bound_connections"] == 1

    @pytest.mark.asyncio
    async def test_bind_to_other_user_refused(self, registry: SessionRegistry) -> None:
        """Связь фиксируется на всё время жизни подключения."""
        await registry.bind("c1", "u1")

        assert await registry.bind("c1", "u2") is False
        assert await registry.user_for("c1") == "u1"

    @pytest.mark.asyncio
    async def test_bind_without_register(self, registry: SessionRegistry) -> None:
        assert await registry.bind("c9", "u1") is True
        assert (await registry.session("c9")).user_id == "u1"

    @pytest.mark.asyncio
    async def test_unbind_returns_user(self, registry: SessionRegistry) -> None:
        await registry.bind("c1", "u1")

        assert await registry.unbind("c1") == "u1"
        assert await registry.session("c1") is None

    @pytest.mark.asyncio
    async def test_unbind_unbound_returns_none(self, registry: SessionRegistry) -> None:
        await registry.register("c1")

        assert await registry.unbind("c1") is None
        assert await registry.unbind("never-seen") is None

    @pytest.mark.asyncio
    async def test_session_is_a_copy(self, registry: SessionRegistry) -> None:
        await registry.bind("c1", "u1")

        session = await registry.session("c1")
        session.user_id = "tampered"

        assert await registry.user_for("c1") == "u1"


class TestPresence:
    """Присутствие пользователей."""

    @pytest.mark.asyncio
    async def test_mark_online(self, registry: SessionRegistry) -> None:
        await registry.bind("c1", "u1", "Ann")
        await registry.mark_online("u1", NOW)

        assert await registry.is_online("u1") is True
        online = await registry.online_users()
        assert [p.user_id for p in online] == ["u1"]
        assert online[0].last_active == NOW
        assert online[0].username == "Ann"
        assert (await registry.session("c1")).last_active == NOW

    @pytest.mark.asyncio
    async def test_mark_offline_single_connection(self, registry: SessionRegistry) -> None:
        await registry.bind("c1", "u1")
        await registry.mark_online("u1", NOW)
        await registry.unbind("c1")

        assert await registry.mark_offline("u1", NOW) is True
        assert await registry.is_online("u1") is False
        assert await registry.online_users() == []

    @pytest.mark.asyncio
    async def test_user_with_other_connection_stays_online(self, registry: SessionRegistry) -> None:
        """Пользователь онлайн, пока жива хотя бы одна его вкладка."""
        await registry.bind("c1", "u1")
        await registry.bind("c2", "u1")
        await registry.mark_online("u1", NOW)

        await registry.unbind("c1")
        assert await registry.mark_offline("u1", NOW) is False
        assert await registry.is_online("u1") is True

        await registry.unbind("c2")
        assert await registry.mark_offline("u1", NOW) is True

    @pytest.mark.asyncio
    async def test_never_online_user_not_marked_offline(self, registry: SessionRegistry) -> None:
        """Связанный, но ни разу не отмеченный онлайн пользователь не уходит офлайн."""
        await registry.bind("c1", "u1")
        await registry.unbind("c1")

        assert await registry.mark_offline("u1", NOW) is False
        assert await registry.is_online("u1") is False

    @pytest.mark.asyncio
    async def test_usernames(self, registry: SessionRegistry) -> None:
        await registry.bind("c1", "u1", "Ann")
        await registry.bind("c2", "u2")

        assert await registry.usernames() == {"u1": "Ann"}
        assert await registry.username_for("u1") == "Ann"
        assert await registry.username_for("u2") is None
        assert await registry.username_for("u3") is None

    @pytest.mark.asyncio
    async def test_stats(self, registry: SessionRegistry) -> None:
        await registry.register("c0")
        await registry.bind("c1", "u1")
        await registry.mark_online("u1", NOW)

        assert registry.stats() == {"connections": 2, "bound_connections": 1, "online_users": 1}


class TestPresenceMirror:
    """Зеркалирование присутствия во внешнее хранилище."""

    @pytest.mark.asyncio
    async def test_mirrors_online_and_offline(self) -> None:
        store = AsyncMock()
        registry = SessionRegistry(presence_store=store)

        await registry.bind("c1", "u1")
        await registry.mark_online("u1", NOW)
        await registry.unbind("c1")
        await registry.mark_offline("u1", NOW)

        store.set_online.assert_awaited_once_with("u1", NOW)
        store.set_offline.assert_awaited_once_with("u1", NOW)

    @pytest.mark.asyncio
    async def test_store_failure_does_not_break_presence(self) -> None:
        store = AsyncMock()
        store.set_online.side_effect = ConnectionError("redis down")
        registry = SessionRegistry(presence_store=store)

        await registry.mark_online("u1", NOW)

        assert await registry.is_online("u1") is True

    @pytest.mark.asyncio
    async def test_slow_store_is_bounded(self) -> None:
        async def hang(*args) -> None:
            await asyncio.sleep(10)

        store = AsyncMock()
        store.set_online.side_effect = hang
        registry = SessionRegistry(presence_store=store, store_timeout=0.05)

        await asyncio.wait_for(registry.mark_online("u1", NOW), timeout=1)

        assert await registry.is_online("u1") is True

    @pytest.mark.asyncio
    async def test_no_mirror_when_user_keeps_connections(self) -> None:
        store = AsyncMock()
        registry = SessionRegistry(presence_store=store)
        await registry.bind("c1", "u1")

        await registry.mark_offline("u1", NOW)

        store.set_offline.assert_not_awaited()
