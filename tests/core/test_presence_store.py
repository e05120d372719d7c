# tests/core/test_presence_store.py
"""
Тесты для зеркала присутствия в Redis.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.core.tracking.presence_store import PresenceStore


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestPresenceStore:
    """Тесты для PresenceStore."""

    @pytest.mark.asyncio
    async def test_set_online(self, mock_redis: AsyncMock) -> None:
        store = PresenceStore(mock_redis, ttl=120)

        await store.set_online("u1", NOW)

        mock_redis.hset_mapping.assert_awaited_once_with(
            "presence:u1",
            {"is_online": 1, "last_active": "2024-05-01T12:00:00+00:00"},
            ttl=120,
        )
        mock_redis.sadd.assert_awaited_once_with("presence:online", "u1")

    @pytest.mark.asyncio
    async def test_set_offline(self, mock_redis: AsyncMock) -> None:
        store = PresenceStore(mock_redis)

        await store.set_offline("u1", NOW)

        mock_redis.hset_mapping.assert_awaited_once_with(
            "presence:u1",
            {"is_online": 0, "last_active": "2024-05-01T12:00:00+00:00"},
            ttl=86400,
        )
        mock_redis.srem.assert_awaited_once_with("presence:online", "u1")
