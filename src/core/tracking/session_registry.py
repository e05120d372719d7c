# src/core/tracking/session_registry.py
"""
Реестр сессий: какое подключение какому пользователю принадлежит
и кто из пользователей сейчас онлайн.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable

from src.common.logger import log_warning
from src.core.tracking.models import SessionState, utcnow

if TYPE_CHECKING:
    from src.core.tracking.presence_store import PresenceStore


@dataclass
class UserPresence:
    """Присутствие пользователя."""
    user_id: str
    username: str | None = None
    is_online: bool = False
    last_active: datetime | None = None


class SessionRegistry:
    """
    Процессный реестр сессий.

    Одна общая asyncio.Lock: подключений десятки-сотни, конкуренция низкая.
    Ввод-вывод (зеркало в Redis) выполняется после освобождения лока
    и ограничен таймаутом.
    """

    def __init__(
        self,
        presence_store: "PresenceStore | None" = None,
        store_timeout: float = 2.0,
    ) -> None:
        self._lock = asyncio.Lock()
        self._presence_store = presence_store
        self._store_timeout = store_timeout

        # connection_id -> SessionState
        self._sessions: dict[str, SessionState] = {}
        # user_id -> set of connection_ids
        self._user_connections: dict[str, set[str]] = {}
        # user_id -> UserPresence
        self._presence: dict[str, UserPresence] = {}

    # =========================================================================
    # ПОДКЛЮЧЕНИЯ
    # =========================================================================

    async def register(self, connection_id: str) -> SessionState:
        """Создать несвязанную сессию при подключении."""
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                session = SessionState(connection_id=connection_id)
                self._sessions[connection_id] = session
            return replace(session)

    async def bind(self, connection_id: str, user_id: str, username: str | None = None) -> bool:
        """
        Связать подключение с пользователем. Идемпотентно.

        Связь фиксируется на всё время жизни подключения.

        Returns:
            False, если подключение уже связано с другим пользователем
        """
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                session = SessionState(connection_id=connection_id)
                self._sessions[connection_id] = session

            if session.user_id is not None and session.user_id != user_id:
                return False

            session.user_id = user_id
            if username:
                session.username = username

            self._user_connections.setdefault(user_id, set()).add(connection_id)

            presence = self._presence.setdefault(user_id, UserPresence(user_id=user_id))
            if username:
                presence.username = username
            return True

    async def unbind(self, connection_id: str) -> str | None:
        """
        Удалить сессию подключения.

        Returns:
            user_id, если подключение было связано, иначе None
        """
        async with self._lock:
            session = self._sessions.pop(connection_id, None)
            if session is None or session.user_id is None:
                return None

            connections = self._user_connections.get(session.user_id)
            if connections is not None:
                connections.discard(connection_id)
                if not connections:
                    del self._user_connections[session.user_id]
            return session.user_id

    # =========================================================================
    # ПРИСУТСТВИЕ
    # =========================================================================

    async def mark_online(self, user_id: str, now: datetime | None = None) -> None:
        """Отметить пользователя онлайн и обновить время активности."""
        now = now or utcnow()
        async with self._lock:
            presence = self._presence.setdefault(user_id, UserPresence(user_id=user_id))
            presence.is_online = True
            presence.last_active = now
            for connection_id in self._user_connections.get(user_id, ()):
                session = self._sessions.get(connection_id)
                if session is not None:
                    session.is_online = True
                    session.last_active = now

        if self._presence_store is not None:
            await self._mirror(self._presence_store.set_online(user_id, now), user_id)

    async def mark_offline(self, user_id: str, now: datetime | None = None) -> bool:
        """
        Отметить пользователя офлайн.

        Пользователь с другими живыми подключениями остаётся онлайн.
        Пользователь, ни разу не отмеченный онлайн, офлайн не переходит.

        Returns:
            True, если пользователь стал офлайн
        """
        now = now or utcnow()
        async with self._lock:
            if self._user_connections.get(user_id):
                return False
            presence = self._presence.get(user_id)
            if presence is None or not presence.is_online:
                return False
            presence.is_online = False
            presence.last_active = now

        if self._presence_store is not None:
            await self._mirror(self._presence_store.set_offline(user_id, now), user_id)
        return True

    async def _mirror(self, operation: Awaitable[None], user_id: str) -> None:
        """Записать присутствие в хранилище; ошибка не прерывает конвейер."""
        try:
            await asyncio.wait_for(operation, timeout=self._store_timeout)
        except Exception as e:
            await log_warning(
                f"Не удалось обновить присутствие пользователя {user_id}: {e!r}",
                extra={"user_id": user_id},
            )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def user_for(self, connection_id: str) -> str | None:
        async with self._lock:
            session = self._sessions.get(connection_id)
            return session.user_id if session else None

    async def session(self, connection_id: str) -> SessionState | None:
        """Копия состояния сессии."""
        async with self._lock:
            session = self._sessions.get(connection_id)
            return replace(session) if session else None

    async def is_online(self, user_id: str) -> bool:
        async with self._lock:
            presence = self._presence.get(user_id)
            return bool(presence and presence.is_online)

    async def online_users(self) -> list[UserPresence]:
        """Копии записей присутствия всех пользователей онлайн."""
        async with self._lock:
            return [replace(p) for p in self._presence.values() if p.is_online]

    async def username_for(self, user_id: str) -> str | None:
        async with self._lock:
            presence = self._presence.get(user_id)
            return presence.username if presence else None

    async def usernames(self) -> dict[str, str]:
        """Известные имена пользователей."""
        async with self._lock:
            return {uid: p.username for uid, p in self._presence.items() if p.username}

    def stats(self) -> dict[str, int]:
        return {
            "connections": len(self._sessions),
            "bound_connections": sum(1 for s in self._sessions.values() if s.user_id),
            "online_users": sum(1 for p in self._presence.values() if p.is_online),
        }
