"""Circular route generation around a start point."""

import math
import random
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .config import CONFIG
from .errors import (
    LocationUnavailable, NetworkError, NoRouteFound, ProviderStatusError, WalkError, error_for_status,
)
from .geo import offset_point
from .logger import Logger
from .models import COMPLEXITIES, GeneratedRoute, Location, RouteGenerationOptions
from .providers import RoutingProvider


def estimate_distance(duration_minutes: float, speed_kmh: float = CONFIG["walking_speed_kmh"]) -> float:
    """Distance in km covered in duration_minutes at a steady walking speed"""
    return (duration_minutes / 60) * speed_kmh


def estimate_duration(distance_km: float, speed_kmh: float = CONFIG["walking_speed_kmh"]) -> int:
    """Walking time in whole minutes for distance_km"""
    return round((distance_km / speed_kmh) * 60)


@dataclass
class RouteResult:
    route: Optional[GeneratedRoute] = None
    error: Optional[WalkError] = None

    @property
    def success(self) -> bool:
        return self.route is not None and self.error is None


class RouteGenerator:
    """Builds loop routes that start and end at the walker's location.

    The provider does the path-finding; this class decides where the loop
    should go by scattering waypoints around the start point. Waypoint
    placement is randomised so retries give visibly different loops. Pass a
    seeded random.Random for reproducible shapes.
    """

    def __init__(self, provider: RoutingProvider, rng: Optional[random.Random] = None,
                 logger: Optional[Logger] = None, sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.rng = rng or random.Random()
        self.logger = logger
        self.sleep = sleep

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def build_waypoints(self, center: Location, radius_km: float, complexity: str) -> list[Location]:
        """Scatter waypoints around center at roughly even angular spacing"""
        count = CONFIG["waypoint_counts"][complexity]
        low, high = CONFIG["waypoint_radius_factor"]
        max_radius = radius_km * 1000 * CONFIG["max_radius_factor"]
        gap = 360.0 / count
        max_jitter = gap / 2 * CONFIG["waypoint_angle_jitter"]
        rotation = self.rng.uniform(0, 360)

        waypoints = []
        for i in range(count):
            bearing = (rotation + gap * i + self.rng.uniform(-max_jitter, max_jitter)) % 360
            radius_m = min(radius_km * 1000 * self.rng.uniform(low, high), max_radius)
            lat, lng = offset_point(center.lat, center.lng, radius_m, bearing)
            waypoints.append(Location(lat=lat, lng=lng))
        return waypoints

    def generate(self, options: RouteGenerationOptions) -> RouteResult:
        """Request one loop from the provider; never raises"""
        start = options.start_location
        if start is None:
            return RouteResult(error=LocationUnavailable("No start location for the route"))
        if options.preferred_distance_km:
            target_km = options.preferred_distance_km
        else:
            minutes = options.duration_minutes
            if minutes is None:
                minutes = CONFIG["default_duration_minutes"]
            target_km = estimate_distance(minutes)

        if target_km <= 0 or math.isnan(target_km):
            return RouteResult(error=NoRouteFound("Requested walk length must be positive"))

        waypoints = self.build_waypoints(start, target_km / 2, options.complexity)
        self._log("Requesting route", {
            "provider": self.provider.name,
            "target_km": round(target_km, 2),
            "complexity": options.complexity,
            "waypoints": len(waypoints),
        })

        try:
            data = self.provider.route(
                start, waypoints, start,
                mode="walking",
                avoid_highways=options.avoid_highways,
                avoid_tolls=options.avoid_tolls,
                optimize_waypoints=True,
            )
        except ProviderStatusError as e:
            error = error_for_status(e.status)
            self._log("Route request rejected", {"status": e.status, "detail": e.detail})
            return RouteResult(error=error)
        except WalkError as e:
            self._log("Route request failed", e.to_dict())
            return RouteResult(error=e)
        except Exception as e:
            self._log("Route generation error", {"error": repr(e)})
            return RouteResult(error=NetworkError(f"Route generation failed: {e}"))

        coordinates = [Location(lat=lat, lng=lng) for lat, lng in data.get("coordinates", [])]
        if not coordinates:
            return RouteResult(error=NoRouteFound("Provider returned an empty route"))

        route = GeneratedRoute(
            coordinates=coordinates,
            waypoints=waypoints,
            distance=float(data.get("distance", 0)),
            duration=float(data.get("duration", 0)),
            instructions=data.get("instructions") or None,
            provider=self.provider.name,
            complexity=options.complexity,
        )
        self._log("Route generated", {
            "distance": route.distance,
            "duration": route.duration,
            "points": len(coordinates),
        })
        return RouteResult(route=route)

    def generate_alternatives(self, options: RouteGenerationOptions,
                              count: int = 3) -> list[RouteResult]:
        """Request count loops, cycling complexity levels between calls"""
        results = []
        for i in range(count):
            alt_options = replace(options, complexity=COMPLEXITIES[i % len(COMPLEXITIES)])
            results.append(self.generate(alt_options))

            # Stay under provider rate limits
            if i < count - 1:
                self.sleep(CONFIG["alternatives_delay"])
        return results
