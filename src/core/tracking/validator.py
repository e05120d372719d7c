# src/core/tracking/validator.py
"""
Валидация сэмплов: фильтр по точности и анти-спуфинг по скорости.
"""

from __future__ import annotations

from typing import Sequence

from src.common.constants import RejectReason
from src.common.geo_utils import calculate_distance
from src.core.tracking.models import LocationSample, ValidationResult


# Худшая допустимая заявленная точность, метры
DEFAULT_MAX_ACCURACY_METERS = 2000.0

# Предел скорости между соседними сэмплами, м/с
DEFAULT_MAX_SPEED_MPS = 300.0

# Нижняя граница интервала между сэмплами
DEFAULT_MIN_ELAPSED_SECONDS = 0.1


def implied_speed(
    previous: LocationSample,
    sample: LocationSample,
    min_elapsed_seconds: float = DEFAULT_MIN_ELAPSED_SECONDS,
) -> float:
    """Скорость (м/с), которую подразумевает переход previous -> sample."""
    elapsed = (sample.timestamp - previous.timestamp).total_seconds()
    # Одновременные и пришедшие не по порядку сэмплы не должны давать деление на ноль
    elapsed = max(elapsed, min_elapsed_seconds)

    distance = calculate_distance(
        previous.latitude, previous.longitude,
        sample.latitude, sample.longitude,
    )
    return distance / elapsed


def validate(
    history: Sequence[LocationSample],
    sample: LocationSample,
    *,
    max_accuracy_meters: float = DEFAULT_MAX_ACCURACY_METERS,
    max_speed_mps: float = DEFAULT_MAX_SPEED_MPS,
    min_elapsed_seconds: float = DEFAULT_MIN_ELAPSED_SECONDS,
) -> ValidationResult:
    """
    Принять или отбраковать сэмпл.

    1. Точность хуже max_accuracy_meters — отбраковка
    2. Скорость относительно последней точки истории выше max_speed_mps — отбраковка

    Сэмпл без заявленной точности по точности не отбраковывается.
    Функция чистая: историю не изменяет.
    """
    if sample.accuracy_meters is not None and sample.accuracy_meters > max_accuracy_meters:
        return ValidationResult.reject(RejectReason.ACCURACY_TOO_LOW)

    if not history:
        return ValidationResult.accept()

    speed = implied_speed(history[-1], sample, min_elapsed_seconds)
    if speed > max_speed_mps:
        return ValidationResult.reject(RejectReason.SPEED_TOO_HIGH, speed_mps=speed)

    return ValidationResult.accept(speed_mps=speed)
