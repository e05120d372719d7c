# src/services/tracker/connection_manager.py
"""
Менеджер WebSocket соединений трекера.
Каждое подключение получает собственный connection_id; один пользователь
может держать несколько вкладок/устройств одновременно.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import WebSocket

from src.common.logger import log_debug
from src.core.tracking.models import utcnow


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    connection_id: str
    connected_at: datetime = field(default_factory=utcnow)


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов
    - Персональные сообщения
    - Broadcast всем подключенным (параллельно, с таймаутом на отправку)

    Ошибка отправки одному клиенту не влияет на остальных:
    такое соединение удаляется из рассылки.
    """

    def __init__(self, send_timeout: float = 2.0) -> None:
        self._send_timeout = send_timeout

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        # Для статистики
        self._total_connections: int = 0
        self._total_messages_sent: int = 0
        self._total_send_failures: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> str:
        """
        Принять соединение.

        Returns:
            connection_id нового соединения
        """
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = ConnectionInfo(
            websocket=websocket,
            connection_id=connection_id,
        )
        self._total_connections += 1
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Убрать соединение из рассылки."""
        self._connections.pop(connection_id, None)

    async def _drop(self, conn: ConnectionInfo) -> None:
        """
        Убрать соединение, на которое не удалась отправка, и закрыть сокет.

        Закрытие завершает цикл приёма этого соединения, и обработчик
        отключения снимает связь с пользователем.
        """
        if self._connections.pop(conn.connection_id, None) is None:
            return
        try:
            await asyncio.wait_for(conn.websocket.close(), timeout=self._send_timeout)
        except Exception as e:
            await log_debug(
                f"Не удалось закрыть соединение {conn.connection_id}: {e!r}",
                extra={"connection_id": conn.connection_id},
            )

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        """
        Отправить сообщение конкретному соединению.

        Returns:
            True если сообщение отправлено, False если соединения нет или отправка не удалась
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            return False

        if await self._send(conn, message):
            return True

        await self._drop(conn)
        return False

    async def broadcast_all(self, message: dict[str, Any]) -> int:
        """
        Отправить сообщение всем подключенным клиентам.

        Returns:
            Количество успешно отправленных сообщений
        """
        connections = list(self._connections.values())
        if not connections:
            return 0

        results = await asyncio.gather(*(self._send(conn, message) for conn in connections))

        sent_count = 0
        for conn, ok in zip(connections, results):
            if ok:
                sent_count += 1
            else:
                await self._drop(conn)
        return sent_count

    async def _send(self, conn: ConnectionInfo, message: dict[str, Any]) -> bool:
        """Отправка с таймаутом; исключения не выходят наружу."""
        try:
            await asyncio.wait_for(conn.websocket.send_json(message), timeout=self._send_timeout)
        except Exception as e:
            self._total_send_failures += 1
            await log_debug(
                f"Отправка в соединение {conn.connection_id} не удалась: {e!r}",
                extra={"connection_id": conn.connection_id},
            )
            return False

        self._total_messages_sent += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_connections": len(self._connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "total_send_failures": self._total_send_failures,
        }
