"""Data classes for Wanderer."""

import uuid
from dataclasses import dataclass, asdict, field
from typing import Optional

from .config import CONFIG

# Engine phases
IDLE = "idle"
GENERATING = "generating"
PREVIEW = "preview"
ACTIVE = "active"
PAUSED = "paused"
COMPLETED = "completed"

PHASES = (IDLE, GENERATING, PREVIEW, ACTIVE, PAUSED, COMPLETED)

# Route complexity levels, in the order alternatives cycle through them
COMPLEXITIES = ("simple", "medium", "complex")


@dataclass
class Location:
    lat: float
    lng: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        # Older traces and some clients send "lon"
        lng = d["lng"] if "lng" in d else d["lon"]
        return cls(lat=d["lat"], lng=lng,
                   accuracy=d.get("accuracy"), timestamp=d.get("timestamp"))

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class WalkMoment:
    """A point of interest pinned during an active walk"""
    id: str
    lat: float
    lng: float
    timestamp: float
    photo_ref: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def create(cls, location: Location, timestamp: float,
               description: Optional[str] = None,
               photo_ref: Optional[str] = None) -> "WalkMoment":
        return cls(
            id=uuid.uuid4().hex,
            lat=location.lat,
            lng=location.lng,
            timestamp=timestamp,
            photo_ref=photo_ref,
            description=description,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WalkSession:
    user_id: str
    title: str
    start_time: float
    id: Optional[int] = None
    end_time: Optional[float] = None
    total_distance: float = 0.0  # meters
    total_duration: int = 0  # seconds
    route_path: list[Location] = field(default_factory=list)
    planned_route: tuple[Location, ...] = ()
    moments: list[WalkMoment] = field(default_factory=list)
    status: str = ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_distance": self.total_distance,
            "total_duration": self.total_duration,
            "route_path": [p.to_dict() for p in self.route_path],
            "planned_route": [p.to_dict() for p in self.planned_route],
            "moments": [m.to_dict() for m in self.moments],
            "status": self.status,
        }


@dataclass
class GeneratedRoute:
    """A suggested loop returned by the routing provider"""
    coordinates: list[Location]  # dense path geometry
    waypoints: list[Location]  # sparse control points sent to the provider
    distance: float  # meters
    duration: float  # seconds
    instructions: Optional[list[str]] = None
    provider: Optional[str] = None
    complexity: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "coordinates": [p.to_dict() for p in self.coordinates],
            "waypoints": [p.to_dict() for p in self.waypoints],
            "distance": self.distance,
            "duration": self.duration,
            "instructions": self.instructions,
            "provider": self.provider,
            "complexity": self.complexity,
        }


@dataclass
class LiveStats:
    duration: int = 0  # seconds
    distance: float = 0.0  # meters
    pace: float = 0.0  # minutes per km
    speed: float = 0.0  # km/h

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RouteGenerationOptions:
    start_location: Optional[Location] = None
    duration_minutes: Optional[float] = None
    preferred_distance_km: Optional[float] = None  # overrides duration if provided
    complexity: str = CONFIG["default_complexity"]
    avoid_highways: bool = True
    avoid_tolls: bool = True

    def __post_init__(self):
        if self.complexity not in COMPLEXITIES:
            raise ValueError(f"Unknown complexity: {self.complexity}")
        if self.duration_minutes is None and self.preferred_distance_km is None:
            self.duration_minutes = CONFIG["default_duration_minutes"]
