# src/core/tracking/service.py
"""
Координатор приёма геолокации.

Конвейер одного обновления:
валидация -> сглаживание -> троттлинг записи -> (запись в фоне) ->
отметка онлайн -> рассылка всем зрителям.

Состояние подключения: Connected (без пользователя) -> Bound(user_id) -> Disconnected.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from src.common.constants import SnapshotPolicy, TypeMsg
from src.common.geo_utils import is_valid_coordinate
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.tracking.models import (
    LocationPayload,
    LocationSample,
    PersistedLocation,
    PresenceInfo,
    SmoothedPoint,
    utcnow,
)
from src.core.tracking.persistence_gate import should_persist
from src.core.tracking.smoothing import TrackRegistry, UserTrack
from src.core.tracking.validator import validate

if TYPE_CHECKING:
    from src.config.loader import TimeoutSettings, TrackingSettings
    from src.core.tracking.fanout import BroadcastFanout
    from src.core.tracking.repository import LocationRepository
    from src.core.tracking.session_registry import SessionRegistry


class IngestionCoordinator:
    """
    Оркестрация приёма точек, присутствия и рассылки.

    Обновления одного подключения обрабатываются последовательно его задачей;
    состояние пользователя меняется только под локом его UserTrack.
    Запись в БД выполняется фоновыми задачами, которые не отменяются
    при отключении клиента.
    """

    def __init__(
        self,
        repository: "LocationRepository",
        registry: "SessionRegistry",
        fanout: "BroadcastFanout",
        *,
        tracking: "TrackingSettings | None" = None,
        timeouts: "TimeoutSettings | None" = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if tracking is None or timeouts is None:
            from src.config import settings
            tracking = tracking or settings.tracking
            timeouts = timeouts or settings.timeouts

        self._repository = repository
        self._registry = registry
        self._fanout = fanout
        self._tracking = tracking
        self._timeouts = timeouts
        self._clock = clock

        self._tracks = TrackRegistry(history_size=tracking.HISTORY_SIZE)
        self._persist_interval = timedelta(seconds=tracking.PERSIST_INTERVAL_SECONDS)
        self._snapshot_policy = SnapshotPolicy(tracking.SNAPSHOT_POLICY)

        # Фоновые записи в БД
        self._pending_writes: set[asyncio.Task] = set()

        # Статистика
        self._counters: dict[str, int] = {
            "received": 0,
            "dropped": 0,
            "rejected": 0,
            "accepted": 0,
            "persisted": 0,
            "persist_failed": 0,
            "broadcasts": 0,
        }

    @property
    def tracks(self) -> TrackRegistry:
        return self._tracks

    # =========================================================================
    # ПОДКЛЮЧЕНИЕ
    # =========================================================================

    async def on_connect(self, connection_id: str, user_id: str | None = None) -> None:
        """
        Новый зритель: регистрация сессии и снимок текущих позиций только ему.

        Пользователь к подключению здесь не привязывается: связь появляется
        с первым обновлением локации.
        """
        await self._registry.register(connection_id)
        await log_info(
            f"Подключение {connection_id}",
            type_msg=TypeMsg.INFO,
            extra={"connection_id": connection_id},
        )

        if user_id:
            await self._fanout.send_your_id(connection_id, user_id)

        items = await self.build_snapshot()
        await self._fanout.send_initial_snapshot(connection_id, items)

    async def on_ping(self, connection_id: str) -> None:
        await self._fanout.send_pong(connection_id)

    async def build_snapshot(self) -> list[LocationPayload]:
        """Снимок позиций согласно настроенной политике."""
        if self._snapshot_policy is SnapshotPolicy.ONLINE_USERS:
            return await self._snapshot_online_users()
        return await self._snapshot_recent()

    async def _snapshot_recent(self) -> list[LocationPayload]:
        """Последняя точка каждого пользователя за окно (по умолчанию час)."""
        since = self._clock() - timedelta(seconds=self._tracking.SNAPSHOT_WINDOW_SECONDS)
        usernames = await self._registry.usernames()

        items = [
            self._to_payload(row.user_id, usernames, row.latitude, row.longitude,
                             row.accuracy_meters, row.timestamp)
            for row in await self._repository.recent_locations(since)
        ]

        # Несохранённые сглаженные точки свежее записей в БД
        for user_id in self._tracks.user_ids():
            track = self._tracks.find(user_id)
            point = track.last_point if track else None
            if point is not None and point.timestamp >= since:
                items.append(self._to_payload(user_id, usernames, point.latitude, point.longitude,
                                              point.accuracy_meters, point.timestamp))
        return items

    async def _snapshot_online_users(self) -> list[LocationPayload]:
        """Пользователи онлайн с последней известной точкой."""
        usernames = await self._registry.usernames()
        items: list[LocationPayload] = []

        for presence in await self._registry.online_users():
            track = self._tracks.find(presence.user_id)
            point: SmoothedPoint | PersistedLocation | None = track.last_point if track else None
            if point is None:
                point = await self._repository.latest_location_for_user(presence.user_id)
            if point is None:
                continue
            items.append(self._to_payload(presence.user_id, usernames, point.latitude, point.longitude,
                                          point.accuracy_meters, point.timestamp))
        return items

    def _to_payload(
        self,
        user_id: str,
        usernames: dict[str, str],
        latitude: float,
        longitude: float,
        accuracy: float | None,
        timestamp: datetime,
    ) -> LocationPayload:
        return LocationPayload(
            user_id=user_id,
            username=usernames.get(user_id) or self._tracking.DEFAULT_USERNAME,
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=accuracy,
            timestamp=timestamp,
        )

    # =========================================================================
    # ОБНОВЛЕНИЕ ЛОКАЦИИ
    # =========================================================================

    async def on_location_update(
        self,
        connection_id: str,
        user_id: Any,
        lat: Any,
        lng: Any,
        accuracy: Any = None,
        username: str | None = None,
    ) -> SmoothedPoint | None:
        """
        Обработать обновление локации.

        Returns:
            Сглаженная точка, разосланная зрителям, или None, если
            обновление отброшено (некорректно или отбраковано валидатором)
        """
        self._counters["received"] += 1

        sample = self._parse_sample(user_id, lat, lng, accuracy)
        if sample is None:
            self._counters["dropped"] += 1
            await log_debug(
                f"Некорректное обновление от {connection_id} отброшено",
                extra={"connection_id": connection_id, "user_id": user_id},
            )
            return None

        if not await self._registry.bind(connection_id, sample.user_id, username):
            self._counters["dropped"] += 1
            await log_warning(
                f"Подключение {connection_id} уже связано с другим пользователем, "
                f"обновление от {sample.user_id} отброшено",
                extra={"connection_id": connection_id, "user_id": sample.user_id},
            )
            return None

        track = self._tracks.get(sample.user_id)
        await self._ensure_persisted_loaded(track)

        to_write: PersistedLocation | None = None
        previous: PersistedLocation | None = None

        async with track.lock:
            # Время фиксируется под локом: история пользователя упорядочена по порядку обработки
            sample = replace(sample, timestamp=self._clock())
            result = validate(
                track.window.history,
                sample,
                max_accuracy_meters=self._tracking.MAX_ACCURACY_METERS,
                max_speed_mps=self._tracking.MAX_SPEED_MPS,
                min_elapsed_seconds=self._tracking.MIN_ELAPSED_SECONDS,
            )
            if result.accepted:
                point = track.window.push(sample)
                track.last_point = point

                if should_persist(
                    track.last_persisted,
                    point,
                    sample.timestamp,
                    interval=self._persist_interval,
                    distance_meters=self._tracking.PERSIST_DISTANCE_METERS,
                ):
                    previous = track.last_persisted
                    to_write = PersistedLocation.from_point(point)
                    track.last_persisted = to_write

        if not result.accepted:
            self._counters["rejected"] += 1
            await log_debug(
                f"Сэмпл пользователя {sample.user_id} отбракован: {result.reason.value}",
                extra={
                    "user_id": sample.user_id,
                    "reason": result.reason.value,
                    "accuracy": sample.accuracy_meters,
                    "speed_mps": result.speed_mps,
                },
            )
            return None

        self._counters["accepted"] += 1

        if to_write is not None:
            self._schedule_write(track, to_write, previous)

        await self._registry.mark_online(sample.user_id, sample.timestamp)

        display_name = username or await self._registry.username_for(sample.user_id)
        await self._fanout.broadcast_location(
            sample.user_id,
            display_name or self._tracking.DEFAULT_USERNAME,
            point,
            sample.accuracy_meters,
            sample.timestamp,
        )
        self._counters["broadcasts"] += 1
        return point

    def _parse_sample(self, user_id: Any, lat: Any, lng: Any, accuracy: Any) -> LocationSample | None:
        """Собирает сэмпл из сырых полей; None, если поля некорректны."""
        if user_id is None or str(user_id).strip() == "":
            return None
        try:
            latitude = float(lat)
            longitude = float(lng)
            accuracy_meters = None if accuracy is None else float(accuracy)
        except (TypeError, ValueError):
            return None

        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            return None
        if not is_valid_coordinate(latitude, longitude):
            return None
        if accuracy_meters is not None and (not math.isfinite(accuracy_meters) or accuracy_meters < 0):
            return None

        return LocationSample(
            user_id=str(user_id),
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=accuracy_meters,
            timestamp=self._clock(),
        )

    async def _ensure_persisted_loaded(self, track: UserTrack) -> None:
        """Подтягивает последнюю сохранённую точку пользователя (один раз, вне лока)."""
        if track.persisted_loaded:
            return

        try:
            latest = await asyncio.wait_for(
                self._repository.latest_location_for_user(track.user_id),
                timeout=self._timeouts.STORE_WRITE_TIMEOUT,
            )
        except Exception as e:
            await log_warning(f"Не удалось прочитать последнюю точку {track.user_id}: {e!r}")
            latest = None

        async with track.lock:
            if not track.persisted_loaded:
                track.last_persisted = latest
                track.persisted_loaded = True

    # =========================================================================
    # ЗАПИСЬ В БД
    # =========================================================================

    def _schedule_write(
        self,
        track: UserTrack,
        record: PersistedLocation,
        previous: PersistedLocation | None,
    ) -> None:
        """Запустить запись в фоне; задача живёт независимо от подключения."""
        task = asyncio.create_task(self._write(track, record, previous))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write(
        self,
        track: UserTrack,
        record: PersistedLocation,
        previous: PersistedLocation | None,
    ) -> None:
        """
        Записать точку. Ошибка логируется и не повторяется синхронно:
        троттлинг откатывается, и следующий сэмпл снова попробует записаться.
        """
        saved: PersistedLocation | None
        try:
            saved = await asyncio.wait_for(
                self._repository.append_location(record),
                timeout=self._timeouts.STORE_WRITE_TIMEOUT,
            )
        except Exception as e:
            await log_error(
                f"Запись точки пользователя {record.user_id} не удалась: {e!r}",
                extra={"user_id": record.user_id},
            )
            saved = None

        async with track.lock:
            if track.last_persisted is record:
                track.last_persisted = saved if saved is not None else previous

        if saved is None:
            self._counters["persist_failed"] += 1
        else:
            self._counters["persisted"] += 1

    async def drain(self, timeout: float | None = None) -> None:
        """Дождаться незавершённых записей (при остановке)."""
        if not self._pending_writes:
            return

        timeout = self._timeouts.SHUTDOWN_DRAIN_TIMEOUT if timeout is None else timeout
        _, pending = await asyncio.wait(set(self._pending_writes), timeout=timeout)
        if pending:
            await log_warning(f"Не дождались {len(pending)} записей точек при остановке")

    # =========================================================================
    # ОТКЛЮЧЕНИЕ
    # =========================================================================

    async def on_disconnect(self, connection_id: str) -> str | None:
        """
        Отключение: снять связь и, если пользователь был связан
        и у него не осталось подключений, разослать уход офлайн.

        Returns:
            user_id связанного пользователя или None
        """
        user_id = await self._registry.unbind(connection_id)
        if user_id is None:
            await log_debug(
                f"Подключение {connection_id} закрыто без обновлений локации",
                extra={"connection_id": connection_id},
            )
            return None

        if await self._registry.mark_offline(user_id, self._clock()):
            await self._fanout.broadcast_presence(user_id, False)
            self._counters["broadcasts"] += 1

        await log_info(
            f"Отключение {connection_id} (пользователь {user_id})",
            type_msg=TypeMsg.INFO,
            extra={"connection_id": connection_id, "user_id": user_id},
        )
        return user_id

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def list_presence(self) -> list[PresenceInfo]:
        """Пользователи онлайн с последней сглаженной точкой."""
        result = []
        for presence in await self._registry.online_users():
            track = self._tracks.find(presence.user_id)
            point = track.last_point if track else None
            result.append(PresenceInfo(
                user_id=presence.user_id,
                username=presence.username,
                is_online=presence.is_online,
                last_active=presence.last_active,
                latitude=point.latitude if point else None,
                longitude=point.longitude if point else None,
                accuracy_meters=point.accuracy_meters if point else None,
            ))
        return result

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            **self._counters,
            "pending_writes": len(self._pending_writes),
            "tracked_users": len(self._tracks),
            **self._registry.stats(),
        }
