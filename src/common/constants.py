# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TrackerEvent(str, Enum):
    """Имена исходящих событий, которые понимают клиенты карты."""
    LOCATION_UPDATED = "locationUpdated"
    PRESENCE_CHANGED = "presenceChanged"
    INITIAL_LOCATIONS = "initialLocations"
    YOUR_ID = "yourId"
    PONG = "pong"


class ClientAction(str, Enum):
    """Действия во входящих сообщениях клиента."""
    LOCATION = "location"
    PING = "ping"


class RejectReason(str, Enum):
    """Причины отбраковки сэмпла валидатором."""
    ACCURACY_TOO_LOW = "accuracy_too_low"
    SPEED_TOO_HIGH = "speed_too_high"


class SnapshotPolicy(str, Enum):
    """Политика начального снимка для нового зрителя."""
    LAST_HOUR = "last_hour"
    ONLINE_USERS = "online_users"


# Радиус Земли (сферическая модель), метры
EARTH_RADIUS_METERS = 6_371_000.0
