# src/common/geo_utils.py
"""
Геометрия на сферической Земле.
Одна функция расстояния используется и валидатором, и троттлингом записи.
"""

import math

from src.common.constants import EARTH_RADIUS_METERS


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в метрах) по формуле Haversine.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Широта в [-90, 90], долгота в [-180, 180]."""
    return -90 <= lat <= 90 and -180 <= lon <= 180
