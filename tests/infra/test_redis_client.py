# tests/infra/test_redis_client.py
"""
Тесты для клиента Redis.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.infra.redis_client import RedisClient


class TestRedisClient:
    """Тесты для RedisClient."""

    @pytest.fixture
    def redis_client(self) -> RedisClient:
        """Создаёт экземпляр RedisClient для тестов."""
        # Сбрасываем синглтон для каждого теста
        RedisClient._instance = None
        RedisClient._client = None
        return RedisClient()

    @staticmethod
    def _client_with_pipeline() -> tuple[AsyncMock, MagicMock]:
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, True])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)
        return client, pipe

    def test_singleton(self) -> None:
        """Проверяет паттерн Singleton."""
        RedisClient._instance = None

        assert RedisClient() is RedisClient()

    def test_client_not_initialized(self, redis_client: RedisClient) -> None:
        """Проверяет ошибку при обращении к неинициализированному клиенту."""
        with pytest.raises(RuntimeError, match="Redis клиент не инициализирован"):
            _ = redis_client.client
        assert redis_client.is_connected is False

    def test_make_key(self, redis_client: RedisClient) -> None:
        """Проверяет формирование ключа с namespace."""
        assert redis_client._make_key("presence:u1") == "tracker:presence:u1"

    @pytest.mark.asyncio
    async def test_connect(self, redis_client: RedisClient) -> None:
        """Проверяет подключение к Redis."""
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(return_value=True)

        with patch("redis.asyncio.from_url", return_value=mock_redis):
            await redis_client.connect(
                url="redis://localhost:6379/0",
                max_connections=10,
                namespace="tracker_test",
            )

        assert redis_client.is_connected is True
        assert redis_client._make_key("k") == "tracker_test:k"
        mock_redis.ping.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_already_connected(self, redis_client: RedisClient) -> None:
        """Проверяет, что повторное подключение пропускается."""
        redis_client._client = AsyncMock()

        with patch("redis.asyncio.from_url") as mock_from_url:
            await redis_client.connect(url="redis://localhost:6379/0")

        mock_from_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_ping_failure_leaves_disconnected(self, redis_client: RedisClient) -> None:
        """Недоступный Redis не оставляет мёртвый клиент в синглтоне."""
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("refused"))

        with patch("redis.asyncio.from_url", return_value=mock_redis):
            with pytest.raises(ConnectionError):
                await redis_client.connect(url="redis://localhost:6379/0")

        assert redis_client.is_connected is False
        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect(self, redis_client: RedisClient) -> None:
        """Проверяет отключение от Redis."""
        mock_redis = AsyncMock()
        redis_client._client = mock_redis

        await redis_client.disconnect()

        mock_redis.aclose.assert_called_once()
        assert redis_client._client is None

    @pytest.mark.asyncio
    async def test_hset_mapping_with_ttl(self, redis_client: RedisClient) -> None:
        """Хеш и TTL пишутся одним пайплайном, None — пустая строка."""
        client, pipe = self._client_with_pipeline()
        redis_client._client = client

        await redis_client.hset_mapping("presence:u1", {"is_online": 1, "note": None}, ttl=60)

        pipe.hset.assert_called_once_with("tracker:presence:u1", mapping={"is_online": "1", "note": ""})
        pipe.expire.assert_called_once_with("tracker:presence:u1", 60)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hset_mapping_without_ttl(self, redis_client: RedisClient) -> None:
        client, pipe = self._client_with_pipeline()
        redis_client._client = client

        await redis_client.hset_mapping("presence:u1", {"is_online": 0})

        pipe.expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_operations(self, redis_client: RedisClient) -> None:
        mock_redis = AsyncMock()
        mock_redis.sadd.return_value = 1
        mock_redis.srem.return_value = 1
        redis_client._client = mock_redis

        assert await redis_client.sadd("presence:online", "u1") == 1
        assert await redis_client.srem("presence:online", "u1") == 1

        mock_redis.sadd.assert_awaited_once_with("tracker:presence:online", "u1")
        mock_redis.srem.assert_awaited_once_with("tracker:presence:online", "u1")

    @pytest.mark.asyncio
    async def test_health_check(self, redis_client: RedisClient) -> None:
        mock_redis = AsyncMock()
        mock_redis.ping.return_value = True
        redis_client._client = mock_redis

        assert await redis_client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, redis_client: RedisClient) -> None:
        mock_redis = AsyncMock()
        mock_redis.ping.side_effect = ConnectionError("down")
        redis_client._client = mock_redis

        assert await redis_client.health_check() is False
