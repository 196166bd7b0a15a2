"""Geographic utility functions."""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models import Location

EARTH_RADIUS = 6371000  # meters


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS * c


def distance(a: "Location", b: "Location") -> float:
    """Great-circle distance between two locations in meters"""
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def trail_length(points: Sequence["Location"]) -> float:
    """Total length of a breadcrumb trail in meters"""
    total = 0.0
    for i in range(1, len(points)):
        total += distance(points[i - 1], points[i])
    return total


def offset_point(lat: float, lng: float, distance_m: float, bearing: float) -> tuple[float, float]:
    """Point reached by travelling distance_m from (lat, lng) on the given bearing"""
    delta = distance_m / EARTH_RADIUS
    theta = math.radians(bearing)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lng)

    phi2 = math.asin(math.sin(phi1) * math.cos(delta) +
                     math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lambda2 = lambda1 + math.atan2(math.sin(theta) * math.sin(delta) * math.cos(phi1),
                                   math.cos(delta) - math.sin(phi1) * math.sin(phi2))

    # Normalise longitude to [-180, 180)
    lng2 = (math.degrees(lambda2) + 540) % 360 - 180
    return math.degrees(phi2), lng2


def interpolate(lat1: float, lng1: float, lat2: float, lng2: float,
                fraction: float) -> tuple[float, float]:
    """Linear interpolation between two nearby points (fine for short legs)"""
    return (lat1 + (lat2 - lat1) * fraction, lng1 + (lng2 - lng1) * fraction)


def retry_with_backoff(func, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation"):
    """Retry a function with exponential backoff.

    Args:
        func: Function that returns a truthy value on success, falsy on failure
        max_time: Maximum total time to retry (seconds)
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        description: Description for logging

    Returns:
        The result of func() on success, or None if all retries failed
    """
    start_time = time.time()
    delay = initial_delay
    attempt = 1

    while True:
        result = func()
        if result:
            return result

        elapsed = time.time() - start_time
        if elapsed >= max_time:
            print(f"Failed to complete {description} after {elapsed:.1f}s ({attempt} attempts)")
            return None

        remaining = max_time - elapsed
        sleep_time = min(delay, remaining, max_delay)
        if sleep_time > 0:
            print(f"Retrying {description} in {sleep_time:.1f}s (attempt {attempt})...")
            time.sleep(sleep_time)

        delay = min(delay * 2, max_delay)
        attempt += 1
