"""Wanderer - Circular walking routes and walk session tracking."""

from .config import CONFIG
from .models import (
    Location,
    WalkMoment,
    WalkSession,
    GeneratedRoute,
    LiveStats,
    RouteGenerationOptions,
)
from .errors import (
    WalkError,
    LocationUnavailable,
    LocationError,
    NetworkError,
    ProviderAuthError,
    ProviderQuotaError,
    NoRouteFound,
    PersistenceError,
)
from .logger import Logger
from .geo import (
    haversine_distance,
    distance,
    trail_length,
    offset_point,
    retry_with_backoff,
)
from .gps import LocationSource, TermuxGPS, FixedLocation, GPSRecorder, GPSPlayback
from .live import WebSocketLocationSource
from .providers import (
    RoutingProvider,
    GoogleDirectionsProvider,
    MapboxDirectionsProvider,
    OSRMProvider,
    build_provider,
)
from .routing import RouteGenerator, RouteResult, estimate_distance, estimate_duration
from .history import HistoryDB
from .engine import WalkSessionEngine
from .__main__ import main

__all__ = [
    "CONFIG",
    "Location",
    "WalkMoment",
    "WalkSession",
    "GeneratedRoute",
    "LiveStats",
    "RouteGenerationOptions",
    "WalkError",
    "LocationUnavailable",
    "LocationError",
    "NetworkError",
    "ProviderAuthError",
    "ProviderQuotaError",
    "NoRouteFound",
    "PersistenceError",
    "Logger",
    "haversine_distance",
    "distance",
    "trail_length",
    "offset_point",
    "retry_with_backoff",
    "LocationSource",
    "TermuxGPS",
    "FixedLocation",
    "GPSRecorder",
    "GPSPlayback",
    "WebSocketLocationSource",
    "RoutingProvider",
    "GoogleDirectionsProvider",
    "MapboxDirectionsProvider",
    "OSRMProvider",
    "build_provider",
    "RouteGenerator",
    "RouteResult",
    "estimate_distance",
    "estimate_duration",
    "HistoryDB",
    "WalkSessionEngine",
    "main",
]
