# src/services/tracker/app.py
"""
FastAPI приложение трекера геолокации.

WebSocket endpoints:
- /ws/tracker?user_id=...&username=... — отправка своей локации и просмотр чужих

Входящие сообщения:
- {"action": "location", "user_id": "u1", "username": "Ann", "lat": 52.52, "lng": 13.40, "accuracy": 12.5}
- {"action": "ping"}

Исходящие события — конверт {"event": ..., "payload": ...}:
yourId, initialLocations, locationUpdated, presenceChanged, pong.

REST endpoints:
- GET /health — проверка здоровья
- GET /stats — статистика соединений и конвейера
- GET /api/v1/presence — пользователи онлайн
"""

from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from src.common.constants import ClientAction, TypeMsg
from src.common.logger import log_debug, log_error, log_info, log_warning, setup_logging
from src.core.tracking.fanout import BroadcastFanout
from src.core.tracking.models import PresenceInfo
from src.core.tracking.presence_store import PresenceStore
from src.core.tracking.repository import LocationRepository
from src.core.tracking.service import IngestionCoordinator
from src.core.tracking.session_registry import SessionRegistry
from src.services.tracker.connection_manager import ConnectionManager


SERVICE_NAME = "geo_tracker"


# === MODELS ===

class LocationMessage(BaseModel):
    """Входящее обновление локации. Диапазоны координат проверяет конвейер."""
    action: str = ClientAction.LOCATION.value
    user_id: str | int | None = None
    username: str | None = None
    lat: float
    lng: float
    accuracy: float | None = None


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""
    service: str
    status: str = "healthy"  # healthy, degraded
    version: str | None = None
    uptime_seconds: float | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    """Статистика соединений и конвейера."""
    connections: dict[str, Any]
    pipeline: dict[str, Any]


# === LIFESPAN ===

async def _build_coordinator(app: FastAPI) -> IngestionCoordinator:
    """Поднимает БД, Redis и собирает конвейер по настройкам."""
    from src.config import settings
    from src.infra.database import init_db
    from src.infra.redis_client import init_redis

    db = await init_db()
    app.state.db = db

    presence_store: PresenceStore | None = None
    if settings.redis.REDIS_ENABLED:
        try:
            redis_client = await init_redis()
        except Exception as e:
            await log_warning(f"Redis недоступен, присутствие хранится только в памяти: {e!r}")
        else:
            app.state.redis = redis_client
            presence_store = PresenceStore(redis_client, ttl=settings.redis.PRESENCE_TTL)

    manager = ConnectionManager(send_timeout=settings.timeouts.SEND_TIMEOUT)
    app.state.manager = manager

    return IngestionCoordinator(
        LocationRepository(db),
        SessionRegistry(presence_store, store_timeout=settings.timeouts.PRESENCE_STORE_TIMEOUT),
        BroadcastFanout(manager),
        tracking=settings.tracking,
        timeouts=settings.timeouts,
    )


async def _close_infra(app: FastAPI) -> None:
    from src.infra.database import close_db
    from src.infra.redis_client import close_redis

    if app.state.redis is not None:
        await close_redis()
    if app.state.db is not None:
        await close_db()


def create_app(
    coordinator: IngestionCoordinator | None = None,
    manager: ConnectionManager | None = None,
) -> FastAPI:
    """
    Создаёт приложение.

    Если передан готовый coordinator (вместе с manager, в который он рассылает),
    инфраструктура при старте не поднимается.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        setup_logging()
        app.state.started_at = time.monotonic()
        app.state.db = None
        app.state.redis = None

        owns_infra = coordinator is None
        if owns_infra:
            app.state.coordinator = await _build_coordinator(app)
        else:
            app.state.coordinator = coordinator
            app.state.manager = manager or ConnectionManager()

        await log_info("Трекер запущен", type_msg=TypeMsg.INFO)

        yield

        await app.state.coordinator.drain()
        if owns_infra:
            await _close_infra(app)
        await log_info("Трекер остановлен", type_msg=TypeMsg.INFO)

    from src.config import settings

    app = FastAPI(
        title="Geo Tracker",
        description="Приём геолокации пользователей и рассылка позиций в реальном времени.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(request: Request) -> HealthStatus:
        """Проверка здоровья сервиса."""
        state = request.app.state
        dependencies: dict[str, str] = {}

        if state.db is not None:
            dependencies["postgres"] = "healthy" if await state.db.health_check() else "unhealthy"
        if state.redis is not None:
            dependencies["redis"] = "healthy" if await state.redis.health_check() else "unhealthy"

        status = "healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded"
        return HealthStatus(
            service=SERVICE_NAME,
            status=status,
            version=settings.system.VERSION,
            uptime_seconds=round(time.monotonic() - state.started_at, 3),
            dependencies=dependencies,
        )

    # === STATS ===

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats(request: Request) -> StatsResponse:
        """Получить статистику соединений и конвейера."""
        return StatsResponse(
            connections=request.app.state.manager.get_stats(),
            pipeline=request.app.state.coordinator.get_stats(),
        )

    # === PRESENCE ===

    @app.get(
        "/api/v1/presence",
        response_model=list[PresenceInfo],
        tags=["Presence"],
        summary="Пользователи онлайн",
    )
    async def list_presence(request: Request) -> list[PresenceInfo]:
        """Пользователи онлайн с последней сглаженной точкой."""
        return await request.app.state.coordinator.list_presence()

    # === WEBSOCKET ===

    @app.websocket("/ws/tracker")
    async def websocket_tracker(
        websocket: WebSocket,
        user_id: str | None = Query(default=None),
        username: str | None = Query(default=None),
    ) -> None:
        """
        WebSocket трекера.

        Сразу после подключения клиент получает снимок позиций.
        Связь подключения с пользователем появляется с первым обновлением локации.
        """
        state = websocket.app.state
        connection_id = await state.manager.connect(websocket)

        try:
            await state.coordinator.on_connect(connection_id, user_id)
            while True:
                raw = await websocket.receive_text()
                await _handle_client_message(state.coordinator, connection_id, raw, username)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            await log_error(f"Ошибка WebSocket соединения {connection_id}: {e!r}", exc_info=True)
        finally:
            await state.manager.disconnect(connection_id)
            await state.coordinator.on_disconnect(connection_id)

    return app


async def _handle_client_message(
    coordinator: IngestionCoordinator,
    connection_id: str,
    raw: str,
    default_username: str | None = None,
) -> None:
    """Обработать сообщение от клиента. Некорректные сообщения отбрасываются."""
    try:
        data = json.loads(raw)
    except ValueError:
        await log_debug(f"Не JSON от {connection_id}, сообщение отброшено")
        return

    if not isinstance(data, dict):
        await log_debug(f"Неожиданный формат от {connection_id}, сообщение отброшено")
        return

    action = data.get("action", ClientAction.LOCATION.value)

    if action == ClientAction.PING.value:
        await coordinator.on_ping(connection_id)

    elif action == ClientAction.LOCATION.value:
        try:
            message = LocationMessage.model_validate(data)
        except ValidationError as e:
            await log_debug(
                f"Некорректное обновление локации от {connection_id}: {e.error_count()} ошибок",
                extra={"connection_id": connection_id},
            )
            return

        await coordinator.on_location_update(
            connection_id,
            message.user_id,
            message.lat,
            message.lng,
            accuracy=message.accuracy,
            username=message.username or default_username,
        )

    else:
        await log_debug(f"Неизвестное действие {action!r} от {connection_id}")


app = create_app()
