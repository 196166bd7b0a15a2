"""Routing provider adapters (Google Directions, Mapbox Directions, OSRM)."""

import html
import os
import re
from typing import Optional

import polyline
import requests

from .config import CONFIG
from .errors import NetworkError, ProviderAuthError, ProviderStatusError
from .models import Location


class RoutingProvider:
    """Interface every routing backend implements.

    route() returns a dict with keys coordinates (list of (lat, lng)),
    distance (meters), duration (seconds) and instructions (list of str).
    Provider-side failures raise ProviderStatusError with a normalised
    status; transport failures raise NetworkError.
    """

    name = "base"

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout if timeout is not None else CONFIG["request_timeout"]
        self.http = session or requests.Session()

    def route(self, origin: Location, waypoints: list[Location], destination: Location,
              mode: str = "walking", avoid_highways: bool = True, avoid_tolls: bool = True,
              optimize_waypoints: bool = True) -> dict:
        raise NotImplementedError

    def _get(self, url: str, params: Optional[dict] = None) -> requests.Response:
        try:
            return self.http.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"{self.name} request timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise NetworkError(f"Cannot reach {self.name}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"{self.name} request failed: {e}") from e

    def _check_http_status(self, response: requests.Response):
        """Map transport-level HTTP errors that carry provider meaning"""
        if response.status_code in (401, 403):
            raise ProviderStatusError(ProviderStatusError.ACCESS_DENIED, f"HTTP {response.status_code}")
        if response.status_code == 429:
            raise ProviderStatusError(ProviderStatusError.OVER_QUOTA, "HTTP 429")
        if response.status_code >= 500:
            raise NetworkError(f"{self.name} returned HTTP {response.status_code}")

    def _json(self, response: requests.Response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{self.name} returned a non-JSON response") from e


def _append_path(coordinates: list[tuple[float, float]], points):
    """Extend a dense path, skipping the point shared by consecutive steps"""
    for point in points:
        point = (float(point[0]), float(point[1]))
        if coordinates and coordinates[-1] == point:
            continue
        coordinates.append(point)


def _strip_html(text: str) -> str:
    text = re.sub(r"<[^>]+>", " ", text or "")
    return re.sub(r"\s+", " ", html.unescape(text)).strip()


class GoogleDirectionsProvider(RoutingProvider):
    """Google Maps Directions API"""

    name = "google"

    STATUS_MAP = {
        "NOT_FOUND": ProviderStatusError.NOT_FOUND,
        "ZERO_RESULTS": ProviderStatusError.ZERO_RESULTS,
        "MAX_WAYPOINTS_EXCEEDED": ProviderStatusError.TOO_MANY_WAYPOINTS,
        "MAX_ROUTE_LENGTH_EXCEEDED": ProviderStatusError.INVALID_REQUEST,
        "INVALID_REQUEST": ProviderStatusError.INVALID_REQUEST,
        "OVER_QUERY_LIMIT": ProviderStatusError.OVER_QUOTA,
        "OVER_DAILY_LIMIT": ProviderStatusError.OVER_QUOTA,
        "REQUEST_DENIED": ProviderStatusError.ACCESS_DENIED,
        "UNKNOWN_ERROR": ProviderStatusError.UNKNOWN,
    }

    def __init__(self, api_key: str, url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.url = url or CONFIG["google_directions_url"]

    @staticmethod
    def _latlng(loc: Location) -> str:
        return f"{loc.lat:.6f},{loc.lng:.6f}"

    def route(self, origin, waypoints, destination, mode="walking",
              avoid_highways=True, avoid_tolls=True, optimize_waypoints=True):
        params = {
            "origin": self._latlng(origin),
            "destination": self._latlng(destination),
            "mode": mode,
            "key": self.api_key,
        }
        if waypoints:
            # Waypoint optimisation only applies to stopovers; plain shaping points use via:
            if optimize_waypoints:
                parts = ["optimize:true"] + [self._latlng(w) for w in waypoints]
            else:
                parts = [f"via:{self._latlng(w)}" for w in waypoints]
            params["waypoints"] = "|".join(parts)
        avoid = []
        if avoid_highways:
            avoid.append("highways")
        if avoid_tolls:
            avoid.append("tolls")
        if avoid:
            params["avoid"] = "|".join(avoid)

        response = self._get(self.url, params)
        self._check_http_status(response)
        data = self._json(response)

        status = data.get("status", "UNKNOWN_ERROR")
        if status != "OK":
            raise ProviderStatusError(self.STATUS_MAP.get(status, ProviderStatusError.UNKNOWN),
                                      data.get("error_message", status))
        if not data.get("routes"):
            raise ProviderStatusError(ProviderStatusError.ZERO_RESULTS)

        route = data["routes"][0]
        coordinates: list[tuple[float, float]] = []
        instructions = []
        distance = 0.0
        duration = 0.0
        for leg in route.get("legs", []):
            distance += leg.get("distance", {}).get("value", 0)
            duration += leg.get("duration", {}).get("value", 0)
            for step in leg.get("steps", []):
                points = step.get("polyline", {}).get("points")
                if points:
                    _append_path(coordinates, polyline.decode(points))
                text = _strip_html(step.get("html_instructions", ""))
                if text:
                    instructions.append(text)

        if not coordinates and route.get("overview_polyline", {}).get("points"):
            _append_path(coordinates, polyline.decode(route["overview_polyline"]["points"]))

        return {
            "coordinates": coordinates,
            "distance": distance,
            "duration": duration,
            "instructions": instructions,
        }


class _GeoJSONDirectionsProvider(RoutingProvider):
    """Shared parsing for Mapbox and OSRM, which use the same response layout"""

    CODE_MAP = {
        "NoRoute": ProviderStatusError.ZERO_RESULTS,
        "NoSegment": ProviderStatusError.NOT_FOUND,
        "NoMatch": ProviderStatusError.NOT_FOUND,
        "InvalidInput": ProviderStatusError.INVALID_REQUEST,
        "InvalidQuery": ProviderStatusError.INVALID_REQUEST,
        "InvalidValue": ProviderStatusError.INVALID_REQUEST,
        "InvalidOptions": ProviderStatusError.INVALID_REQUEST,
        "InvalidUrl": ProviderStatusError.INVALID_REQUEST,
        "InvalidService": ProviderStatusError.INVALID_REQUEST,
        "InvalidVersion": ProviderStatusError.INVALID_REQUEST,
        "ProfileNotFound": ProviderStatusError.INVALID_REQUEST,
        "TooBig": ProviderStatusError.TOO_MANY_WAYPOINTS,
        "TooManyCoordinates": ProviderStatusError.TOO_MANY_WAYPOINTS,
        "NotAuthorized": ProviderStatusError.ACCESS_DENIED,
        "Forbidden": ProviderStatusError.ACCESS_DENIED,
        "InvalidToken": ProviderStatusError.ACCESS_DENIED,
    }

    @staticmethod
    def _coords(points: list[Location]) -> str:
        # These APIs take lng,lat pairs separated by semicolons
        return ";".join(f"{p.lng:.6f},{p.lat:.6f}" for p in points)

    def _step_text(self, step: dict) -> str:
        return step.get("maneuver", {}).get("instruction", "")

    def _parse(self, response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            self._check_http_status(response)
            raise NetworkError(f"{self.name} returned a non-JSON response") from e
        code = data.get("code")
        if code != "Ok":
            self._check_http_status(response)
            raise ProviderStatusError(self.CODE_MAP.get(code, ProviderStatusError.UNKNOWN),
                                      data.get("message", code or f"HTTP {response.status_code}"))
        if not data.get("routes"):
            raise ProviderStatusError(ProviderStatusError.ZERO_RESULTS)

        route = data["routes"][0]
        coordinates: list[tuple[float, float]] = []
        _append_path(coordinates, [(lat, lng) for lng, lat in route["geometry"]["coordinates"]])

        instructions = []
        for leg in route.get("legs", []):
            for step in leg.get("steps", []):
                text = self._step_text(step)
                if text:
                    instructions.append(text)

        return {
            "coordinates": coordinates,
            "distance": route.get("distance", 0.0),
            "duration": route.get("duration", 0.0),
            "instructions": instructions,
        }


class MapboxDirectionsProvider(_GeoJSONDirectionsProvider):
    """Mapbox Directions API (walking profile)"""

    name = "mapbox"
    MAX_COORDINATES = 25

    def __init__(self, access_token: str, url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token
        self.url = url or CONFIG["mapbox_directions_url"]

    def route(self, origin, waypoints, destination, mode="walking",
              avoid_highways=True, avoid_tolls=True, optimize_waypoints=True):
        # Walking profile has no motorway/toll exclusions and no waypoint optimisation
        points = [origin] + list(waypoints) + [destination]
        if len(points) > self.MAX_COORDINATES:
            raise ProviderStatusError(ProviderStatusError.TOO_MANY_WAYPOINTS,
                                      f"{len(points)} coordinates")
        url = f"{self.url}/mapbox/{mode}/{self._coords(points)}"
        params = {
            "geometries": "geojson",
            "overview": "full",
            "steps": "true",
            "access_token": self.access_token,
        }
        return self._parse(self._get(url, params))


class OSRMProvider(_GeoJSONDirectionsProvider):
    """Open Source Routing Machine (public demo server or self-hosted)"""

    name = "osrm"

    def __init__(self, url: Optional[str] = None, profile: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.url = (url or CONFIG["osrm_url"]).rstrip("/")
        self.profile = profile or CONFIG["osrm_profile"]

    def _step_text(self, step: dict) -> str:
        maneuver = step.get("maneuver", {})
        kind = maneuver.get("type", "")
        modifier = maneuver.get("modifier")
        name = step.get("name") or ""
        if kind == "depart":
            text = "Head out"
        elif kind == "arrive":
            return "Arrive at destination"
        elif kind in ("new name", "continue") or modifier in (None, "straight"):
            text = "Continue"
        else:
            text = f"Turn {modifier}"
        if name:
            text += f" onto {name}"
        return text

    def route(self, origin, waypoints, destination, mode="walking",
              avoid_highways=True, avoid_tolls=True, optimize_waypoints=True):
        points = [origin] + list(waypoints) + [destination]
        url = f"{self.url}/route/v1/{self.profile}/{self._coords(points)}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
        }
        return self._parse(self._get(url, params))


def build_provider(name: Optional[str] = None, **kwargs) -> RoutingProvider:
    """Create a routing provider by name, reading credentials from the environment"""
    name = name or CONFIG["default_provider"]
    if name == "google":
        api_key = kwargs.pop("api_key", None) or os.environ.get("GOOGLE_MAPS_API_KEY")
        if not api_key:
            raise ProviderAuthError("GOOGLE_MAPS_API_KEY is not set")
        return GoogleDirectionsProvider(api_key, **kwargs)
    if name == "mapbox":
        token = kwargs.pop("access_token", None) or os.environ.get("MAPBOX_ACCESS_TOKEN")
        if not token:
            raise ProviderAuthError("MAPBOX_ACCESS_TOKEN is not set")
        return MapboxDirectionsProvider(token, **kwargs)
    if name == "osrm":
        return OSRMProvider(**kwargs)
    raise ValueError(f"Unknown routing provider: {name}")
