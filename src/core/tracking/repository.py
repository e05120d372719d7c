# src/core/tracking/repository.py
"""
Репозиторий истории точек (таблица user_locations).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from src.common.logger import log_error
from src.core.tracking.models import PersistedLocation
from src.infra.database import DatabaseManager


_COLUMNS = "id, user_id, latitude, longitude, accuracy_meters, recorded_at"


class LocationRepository:
    """Репозиторий сохранённых точек."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def append_location(self, record: PersistedLocation) -> Optional[PersistedLocation]:
        """
        Добавляет точку (append-only).

        Returns:
            Сохранённая запись с id или None при ошибке
        """
        try:
            row = await self._db.fetchrow(
                f"""
                INSERT INTO user_locations (user_id, latitude, longitude, accuracy_meters, recorded_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING {_COLUMNS}
                """,
                record.user_id,
                record.latitude,
                record.longitude,
                record.accuracy_meters,
                record.timestamp,
            )
            if row is None:
                return None
            return self._row_to_location(row)
        except Exception as e:
            await log_error(f"Ошибка записи точки пользователя {record.user_id}: {e}")
            return None

    async def latest_location_for_user(self, user_id: str) -> Optional[PersistedLocation]:
        """Последняя сохранённая точка пользователя."""
        try:
            row = await self._db.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM user_locations
                WHERE user_id = $1
                ORDER BY recorded_at DESC
                LIMIT 1
                """,
                user_id,
            )
            if row is None:
                return None
            return self._row_to_location(row)
        except Exception as e:
            await log_error(f"Ошибка чтения последней точки пользователя {user_id}: {e}")
            return None

    async def recent_locations(self, since: datetime) -> list[PersistedLocation]:
        """
        Все точки не старше since (по всем пользователям).

        Дедупликация по пользователю выполняется вызывающей стороной.
        """
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM user_locations
                WHERE recorded_at >= $1
                ORDER BY recorded_at DESC
                """,
                since,
            )
            return [self._row_to_location(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка чтения недавних точек: {e}")
            return []

    @staticmethod
    def _row_to_location(row: Any) -> PersistedLocation:
        """Преобразует строку БД в модель."""
        return PersistedLocation(
            id=row["id"],
            user_id=row["user_id"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            accuracy_meters=row["accuracy_meters"],
            timestamp=row["recorded_at"],
        )
