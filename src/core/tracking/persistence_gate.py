# src/core/tracking/persistence_gate.py
"""
Троттлинг записи точек в БД.

Это не проверка корректности: пропуск записи никогда не блокирует рассылку.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from src.common.geo_utils import calculate_distance
from src.core.tracking.models import PersistedLocation, SmoothedPoint


DEFAULT_PERSIST_INTERVAL = timedelta(minutes=5)
DEFAULT_PERSIST_DISTANCE_METERS = 10.0


def should_persist(
    last_persisted: PersistedLocation | None,
    point: SmoothedPoint,
    now: datetime,
    *,
    interval: timedelta = DEFAULT_PERSIST_INTERVAL,
    distance_meters: float = DEFAULT_PERSIST_DISTANCE_METERS,
) -> bool:
    """
    Нужно ли записать сглаженную точку.

    - нет предыдущей записи — да
    - с прошлой записи прошло >= interval — да
    - смещение от прошлой записи > distance_meters — да
    """
    if last_persisted is None:
        return True

    if now - last_persisted.timestamp >= interval:
        return True

    moved = calculate_distance(
        last_persisted.latitude, last_persisted.longitude,
        point.latitude, point.longitude,
    )
    return moved > distance_meters
