# src/core/tracking/smoothing.py
"""
Сглаживание траектории и владение состоянием пользователя.

SmoothingWindow — ограниченная FIFO-история принятых сэмплов.
UserTrack — единица владения состоянием одного пользователя (история,
последняя сохранённая точка) со своим локом.
TrackRegistry — карта user_id -> UserTrack.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Iterable

from src.core.tracking.models import LocationSample, PersistedLocation, SmoothedPoint


DEFAULT_HISTORY_SIZE = 5


def mean_point(history: Iterable[LocationSample], sample: LocationSample) -> SmoothedPoint:
    """Арифметическое среднее широт и долгот истории; метаданные берутся из sample."""
    points = list(history)
    if not points:
        raise ValueError("Нельзя усреднить пустую историю")

    return SmoothedPoint(
        user_id=sample.user_id,
        latitude=sum(p.latitude for p in points) / len(points),
        longitude=sum(p.longitude for p in points) / len(points),
        accuracy_meters=sample.accuracy_meters,
        timestamp=sample.timestamp,
        window_size=len(points),
    )


def accept(
    history: tuple[LocationSample, ...],
    sample: LocationSample,
    size: int = DEFAULT_HISTORY_SIZE,
) -> tuple[tuple[LocationSample, ...], SmoothedPoint]:
    """
    Чистый вариант шага сглаживания.

    Returns:
        (новая история, сглаженная точка)
    """
    updated = (history + (sample,))[-size:]
    return updated, mean_point(updated, sample)


class SmoothingWindow:
    """Окно последних N принятых сэмплов одного пользователя."""

    def __init__(self, size: int = DEFAULT_HISTORY_SIZE) -> None:
        if size < 1:
            raise ValueError("Размер окна должен быть >= 1")
        self._size = size
        self._history: deque[LocationSample] = deque(maxlen=size)

    @property
    def size(self) -> int:
        return self._size

    @property
    def history(self) -> tuple[LocationSample, ...]:
        """Копия истории в порядке поступления."""
        return tuple(self._history)

    def __len__(self) -> int:
        return len(self._history)

    def push(self, sample: LocationSample) -> SmoothedPoint:
        """Добавить принятый сэмпл (старейший вытесняется) и вернуть среднее."""
        self._history.append(sample)
        return mean_point(self._history, sample)


class UserTrack:
    """
    Состояние одного пользователя.

    Все изменения выполняются под self.lock. Ввод-вывод под локом не выполняется.
    """

    def __init__(self, user_id: str, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self.user_id = user_id
        self.window = SmoothingWindow(history_size)
        self.lock = asyncio.Lock()

        # Последняя точка, решённая к записи (оптимистично, до подтверждения БД)
        self.last_persisted: PersistedLocation | None = None
        # Загружена ли последняя запись из хранилища
        self.persisted_loaded: bool = False
        # Последняя сглаженная точка (для снимка онлайн-пользователей)
        self.last_point: SmoothedPoint | None = None


class TrackRegistry:
    """
    Карта user_id -> UserTrack.

    Создание трека не содержит await, поэтому в пределах одного event loop
    get-or-create атомарен. Треки разных пользователей не делят локи.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._history_size = history_size
        self._tracks: dict[str, UserTrack] = {}

    def get(self, user_id: str) -> UserTrack:
        """Вернуть трек пользователя, создав при первом обращении."""
        track = self._tracks.get(user_id)
        if track is None:
            track = UserTrack(user_id, self._history_size)
            self._tracks[user_id] = track
        return track

    def find(self, user_id: str) -> UserTrack | None:
        return self._tracks.get(user_id)

    def user_ids(self) -> list[str]:
        return list(self._tracks)

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._tracks
