# src/core/tracking/models.py
"""
Модели данных трекинга: сэмплы, сглаженные точки, сохранённые записи и payload событий.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from src.common.constants import RejectReason


def utcnow() -> datetime:
    """Текущее время в UTC (aware)."""
    return datetime.now(timezone.utc)


# =============================================================================
# ВНУТРЕННИЕ СТРУКТУРЫ КОНВЕЙЕРА
# =============================================================================

@dataclass(frozen=True)
class LocationSample:
    """Сырой сэмпл от устройства. Не изменяется после создания."""
    user_id: str
    latitude: float
    longitude: float
    accuracy_meters: float | None
    timestamp: datetime


@dataclass(frozen=True)
class SmoothedPoint:
    """Сглаженная точка: среднее по окну последних принятых сэмплов."""
    user_id: str
    latitude: float
    longitude: float
    accuracy_meters: float | None
    timestamp: datetime
    window_size: int = 1


@dataclass(frozen=True)
class ValidationResult:
    """Результат проверки сэмпла."""
    accepted: bool
    reason: RejectReason | None = None
    speed_mps: float | None = None

    @classmethod
    def accept(cls, speed_mps: float | None = None) -> "ValidationResult":
        return cls(accepted=True, speed_mps=speed_mps)

    @classmethod
    def reject(cls, reason: RejectReason, speed_mps: float | None = None) -> "ValidationResult":
        return cls(accepted=False, reason=reason, speed_mps=speed_mps)


@dataclass
class SessionState:
    """Состояние одного подключения."""
    connection_id: str
    user_id: str | None = None
    username: str | None = None
    is_online: bool = False
    connected_at: datetime = field(default_factory=utcnow)
    last_active: datetime | None = None


# =============================================================================
# ХРАНИЛИЩЕ
# =============================================================================

class PersistedLocation(BaseModel):
    """Запись в таблице user_locations."""

    id: int | None = None
    user_id: str
    latitude: float
    longitude: float
    accuracy_meters: float | None = None
    timestamp: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_point(cls, point: SmoothedPoint) -> "PersistedLocation":
        """Создаёт запись из сглаженной точки (id назначит БД)."""
        return cls(
            user_id=point.user_id,
            latitude=point.latitude,
            longitude=point.longitude,
            accuracy_meters=point.accuracy_meters,
            timestamp=point.timestamp,
        )


# =============================================================================
# PAYLOAD ИСХОДЯЩИХ СОБЫТИЙ
# =============================================================================

class LocationPayload(BaseModel):
    """Payload события обновления локации (и элемента снимка)."""

    user_id: str
    username: str
    latitude: float
    longitude: float
    accuracy_meters: float | None = None
    timestamp: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_wire(self) -> dict:
        """Сериализует в camelCase-словарь для отправки клиенту."""
        return self.model_dump(by_alias=True, mode="json")


class PresencePayload(BaseModel):
    """Payload события смены присутствия."""

    user_id: str
    is_online: bool

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_wire(self) -> dict:
        """Сериализует в camelCase-словарь для отправки клиенту."""
        return self.model_dump(by_alias=True, mode="json")


class PresenceInfo(BaseModel):
    """Пользователь онлайн с последней известной точкой."""

    user_id: str
    username: str | None = None
    is_online: bool = True
    last_active: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy_meters: float | None = Field(default=None, ge=0)
