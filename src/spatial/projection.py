"""Web-Mercator helpers mapping lng/lat to the unit square and back."""

from __future__ import annotations

import math

import numpy as np


def lng_to_x(lng):
    """Longitude (degrees) to projected x in [0, 1]."""
    return np.asarray(lng, dtype=float) / 360.0 + 0.5


def lat_to_y(lat):
    """Latitude (degrees) to projected y in [0, 1], north at 0.

    Latitudes beyond the Mercator limit (~85.05) clamp to the square's edge.
    """
    sin = np.sin(np.radians(np.asarray(lat, dtype=float)))
    with np.errstate(divide="ignore"):
        y = 0.5 - 0.25 * np.log((1.0 + sin) / (1.0 - sin)) / math.pi
    return np.clip(y, 0.0, 1.0)


def x_to_lng(x: float) -> float:
    return (x - 0.5) * 360.0


def y_to_lat(y: float) -> float:
    y2 = (180.0 - y * 360.0) * math.pi / 180.0
    return 360.0 * math.atan(math.exp(y2)) / math.pi - 90.0


def normalize_lng(lng: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    return ((lng + 180.0) % 360.0 + 360.0) % 360.0 - 180.0


def clamp_lat(lat: float) -> float:
    return max(-90.0, min(90.0, lat))
