# src/core/tracking/__init__.py
"""
Трекинг геолокации: валидация, сглаживание, троттлинг записи,
присутствие и рассылка.
"""

from src.core.tracking.fanout import BroadcastFanout
from src.core.tracking.models import (
    LocationSample,
    PersistedLocation,
    SmoothedPoint,
    ValidationResult,
)
from src.core.tracking.persistence_gate import should_persist
from src.core.tracking.repository import LocationRepository
from src.core.tracking.service import IngestionCoordinator
from src.core.tracking.session_registry import SessionRegistry
from src.core.tracking.smoothing import SmoothingWindow, TrackRegistry, UserTrack
from src.core.tracking.validator import validate

__all__ = [
    "BroadcastFanout",
    "IngestionCoordinator",
    "LocationRepository",
    "LocationSample",
    "PersistedLocation",
    "SessionRegistry",
    "SmoothedPoint",
    "SmoothingWindow",
    "TrackRegistry",
    "UserTrack",
    "ValidationResult",
    "should_persist",
    "validate",
]
