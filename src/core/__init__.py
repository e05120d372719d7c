# src/core/__init__.py
"""
Доменный слой (Core Domain).
Логика трекинга, независимая от транспорта.
"""

from src.core.tracking import IngestionCoordinator, SessionRegistry, TrackRegistry

__all__ = [
    "IngestionCoordinator",
    "SessionRegistry",
    "TrackRegistry",
]
