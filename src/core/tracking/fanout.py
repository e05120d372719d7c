# src/core/tracking/fanout.py
"""
Рассылка событий трекинга подключённым зрителям.

Событие уходит конвертом {"event": ..., "payload": ...}.
Локация и присутствие рассылаются всем, включая отправителя:
клиент рисует свою позицию уже после серверного сглаживания.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

from src.common.constants import TrackerEvent
from src.core.tracking.models import LocationPayload, PresencePayload, SmoothedPoint


class Transport(Protocol):
    """Исходящая сторона транспортного слоя."""

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        ...

    async def broadcast_all(self, message: dict[str, Any]) -> int:
        ...


def make_envelope(event: TrackerEvent, payload: Any) -> dict[str, Any]:
    """Конверт исходящего сообщения."""
    return {"event": event.value, "payload": payload}


def latest_per_user(items: Iterable[LocationPayload]) -> list[LocationPayload]:
    """Оставляет по одной (самой свежей) записи на пользователя."""
    latest: dict[str, LocationPayload] = {}
    for item in items:
        current = latest.get(item.user_id)
        if current is None or item.timestamp > current.timestamp:
            latest[item.user_id] = item
    return sorted(latest.values(), key=lambda p: p.timestamp, reverse=True)


class BroadcastFanout:
    """Формирует события и отдаёт их транспорту."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def broadcast_location(
        self,
        user_id: str,
        username: str,
        point: SmoothedPoint,
        accuracy: float | None,
        timestamp: datetime,
    ) -> int:
        """
        Разослать обновление локации всем зрителям.

        Returns:
            Количество доставленных сообщений
        """
        payload = LocationPayload(
            user_id=user_id,
            username=username,
            latitude=point.latitude,
            longitude=point.longitude,
            accuracy_meters=accuracy,
            timestamp=timestamp,
        )
        return await self._transport.broadcast_all(
            make_envelope(TrackerEvent.LOCATION_UPDATED, payload.to_wire())
        )

    async def broadcast_presence(self, user_id: str, is_online: bool) -> int:
        """Разослать смену присутствия всем зрителям."""
        payload = PresencePayload(user_id=user_id, is_online=is_online)
        return await self._transport.broadcast_all(
            make_envelope(TrackerEvent.PRESENCE_CHANGED, payload.to_wire())
        )

    async def send_initial_snapshot(
        self,
        connection_id: str,
        items: Iterable[LocationPayload],
    ) -> bool:
        """Отправить снимок текущих позиций только новому зрителю."""
        snapshot = [item.to_wire() for item in latest_per_user(items)]
        return await self._transport.send_personal(
            connection_id,
            make_envelope(TrackerEvent.INITIAL_LOCATIONS, snapshot),
        )

    async def send_your_id(self, connection_id: str, user_id: str) -> bool:
        """Сообщить клиенту его идентификатор."""
        return await self._transport.send_personal(
            connection_id,
            make_envelope(TrackerEvent.YOUR_ID, {"userId": user_id}),
        )

    async def send_pong(self, connection_id: str) -> bool:
        return await self._transport.send_personal(connection_id, make_envelope(TrackerEvent.PONG, None))
