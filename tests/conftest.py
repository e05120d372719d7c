# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.config.loader import TimeoutSettings, TrackingSettings
from src.core.tracking.fanout import BroadcastFanout
from src.core.tracking.models import PersistedLocation
from src.core.tracking.service import IngestionCoordinator
from src.core.tracking.session_registry import SessionRegistry


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "geo_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "TRACKER_HOST": "127.0.0.1",
        "TRACKER_PORT": 9090,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "geo_tracker_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 1,
        "DB_MAX_POOL_SIZE": 5,
        "REDIS_ENABLED": False,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "tracker_test",
        "PRESENCE_TTL": 60,
        "MAX_ACCURACY_METERS": 1500.0,
        "MAX_SPEED_MPS": 100.0,
        "HISTORY_SIZE": 3,
        "PERSIST_INTERVAL_SECONDS": 120,
        "PERSIST_DISTANCE_METERS": 25.0,
        "SNAPSHOT_POLICY": "online_users",
        "DEFAULT_USERNAME": "Гость",
        "SEND_TIMEOUT": 0.5,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def tracking_settings() -> TrackingSettings:
    """Настройки трекинга по умолчанию."""
    return TrackingSettings()


@pytest.fixture
def timeout_settings() -> TimeoutSettings:
    """Короткие таймауты для тестов."""
    return TimeoutSettings(
        STORE_WRITE_TIMEOUT=1.0,
        SEND_TIMEOUT=0.5,
        PRESENCE_STORE_TIMEOUT=0.5,
        SHUTDOWN_DRAIN_TIMEOUT=2.0,
    )


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.hset_mapping = AsyncMock(return_value=None)
    redis.sadd = AsyncMock(return_value=1)
    redis.srem = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def mock_repository() -> AsyncMock:
    """Мок репозитория точек: запись возвращает запись с id."""
    repository = AsyncMock()
    counter = {"id": 0}

    async def append_location(record: PersistedLocation) -> PersistedLocation:
        counter["id"] += 1
        return record.model_copy(update={"id": counter["id"]})

    repository.append_location = AsyncMock(side_effect=append_location)
    repository.latest_location_for_user = AsyncMock(return_value=None)
    repository.recent_locations = AsyncMock(return_value=[])
    return repository


# =============================================================================
# ТРАНСПОРТ И ЧАСЫ
# =============================================================================

class FakeTransport:
    """Транспорт, запоминающий все исходящие сообщения."""

    def __init__(self) -> None:
        self.personal: list[tuple[str, dict[str, Any]]] = []
        self.broadcasts: list[dict[str, Any]] = []

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        self.personal.append((connection_id, message))
        return True

    async def broadcast_all(self, message: dict[str, Any]) -> int:
        self.broadcasts.append(message)
        return 1

    def broadcast_events(self, event: str) -> list[dict[str, Any]]:
        return [m["payload"] for m in self.broadcasts if m["event"] == event]

    def personal_events(self, connection_id: str, event: str) -> list[Any]:
        return [m["payload"] for cid, m in self.personal if cid == connection_id and m["event"] == event]


class FakeClock:
    """Управляемые часы (UTC)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def coordinator(
    mock_repository: AsyncMock,
    registry: SessionRegistry,
    transport: FakeTransport,
    tracking_settings: TrackingSettings,
    timeout_settings: TimeoutSettings,
    clock: FakeClock,
) -> IngestionCoordinator:
    """Координатор на фейковом транспорте, моке репозитория и управляемых часах."""
    return IngestionCoordinator(
        mock_repository,
        registry,
        BroadcastFanout(transport),
        tracking=tracking_settings,
        timeouts=timeout_settings,
        clock=clock,
    )
