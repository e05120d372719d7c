# tests/core/test_tracking_models.py
"""
Тесты для моделей трекинга.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.common.constants import RejectReason
from src.core.tracking.models import (
    LocationPayload,
    LocationSample,
    PersistedLocation,
    PresenceInfo,
    SmoothedPoint,
    ValidationResult,
    utcnow,
)


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_utcnow_is_aware() -> None:
    assert utcnow().tzinfo is timezone.utc


def test_sample_is_immutable() -> None:
    sample = LocationSample(user_id="u1", latitude=1.0, longitude=2.0, accuracy_meters=None, timestamp=NOW)

    with pytest.raises(dataclasses.FrozenInstanceError):
        sample.latitude = 5.0


class TestValidationResult:
    def test_accept(self) -> None:
        result = ValidationResult.accept(speed_mps=3.0)

        assert result.accepted is True
        assert result.reason is None
        assert result.speed_mps == 3.0

    def test_reject(self) -> None:
        result = ValidationResult.reject(RejectReason.SPEED_TOO_HIGH, speed_mps=500.0)

        assert result.accepted is False
        assert result.reason is RejectReason.SPEED_TOO_HIGH


class TestPersistedLocation:
    def test_from_point(self) -> None:
        point = SmoothedPoint(user_id="u1", latitude=1.0, longitude=2.0, accuracy_meters=3.0, timestamp=NOW, window_size=4)

        record = PersistedLocation.from_point(point)

        assert record.id is None
        assert (record.user_id, record.latitude, record.longitude) == ("u1", 1.0, 2.0)
        assert record.accuracy_meters == 3.0
        assert record.timestamp == NOW


class TestLocationPayload:
    def test_wire_format_is_camel_case(self) -> None:
        payload = LocationPayload(
            user_id="u1", username="Ann", latitude=1.0, longitude=2.0, accuracy_meters=None, timestamp=NOW,
        )

        assert payload.to_wire() == {
            "userId": "u1",
            "username": "Ann",
            "latitude": 1.0,
            "longitude": 2.0,
            "accuracyMeters": None,
            "timestamp": "2024-05-01T12:00:00Z",
        }

    def test_populate_by_alias(self) -> None:
        payload = LocationPayload.model_validate({
            "userId": "u1", "username": "Ann", "latitude": 1.0, "longitude": 2.0, "timestamp": NOW,
        })

        assert payload.user_id == "u1"


def test_presence_info_rejects_negative_accuracy() -> None:
    with pytest.raises(ValidationError):
        PresenceInfo(user_id="u1", accuracy_meters=-1.0)
