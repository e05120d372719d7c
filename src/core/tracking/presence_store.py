# src/core/tracking/presence_store.py
"""
Зеркало присутствия в Redis.

Ключи:
- presence:{user_id} — hash {is_online, last_active}
- presence:online — множество пользователей онлайн
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.infra.redis_client import RedisClient


class PresenceStore:
    """Долговременный флаг присутствия и время последней активности."""

    PRESENCE_PREFIX = "presence:"
    ONLINE_SET = "presence:online"

    def __init__(self, redis: "RedisClient", ttl: int = 86400) -> None:
        self._redis = redis
        self._ttl = ttl

    async def set_online(self, user_id: str, last_active: datetime) -> None:
        """Отметить пользователя онлайн."""
        await self._redis.hset_mapping(
            f"{self.PRESENCE_PREFIX}{user_id}",
            {"is_online": 1, "last_active": last_active.isoformat()},
            ttl=self._ttl,
        )
        await self._redis.sadd(self.ONLINE_SET, user_id)

    async def set_offline(self, user_id: str, last_active: datetime) -> None:
        """Отметить пользователя офлайн."""
        await self._redis.hset_mapping(
            f"{self.PRESENCE_PREFIX}{user_id}",
            {"is_online": 0, "last_active": last_active.isoformat()},
            ttl=self._ttl,
        )
        await self._redis.srem(self.ONLINE_SET, user_id)
