"""Error taxonomy shared by the routing, location and persistence layers."""


class WalkError(Exception):
    """Base class for every error the session engine reports"""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class LocationUnavailable(WalkError):
    """No current fix to seed a route or start a walk"""
    kind = "location_unavailable"


class LocationError(LocationUnavailable):
    """A geolocation source failed with a specific reason"""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or f"Location {reason.replace('_', ' ')}")
        self.reason = reason

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["reason"] = self.reason
        return d


class NetworkError(WalkError):
    """A routing or persistence call timed out or could not be reached"""
    kind = "network_error"


class ProviderAuthError(WalkError):
    kind = "provider_auth_error"


class ProviderQuotaError(WalkError):
    kind = "provider_quota_error"


class NoRouteFound(WalkError):
    kind = "no_route_found"


class PersistenceError(WalkError):
    """A write to the session store failed"""
    kind = "persistence_error"


class ProviderStatusError(Exception):
    """Raised by routing providers with a normalised status code"""

    NOT_FOUND = "not_found"
    ZERO_RESULTS = "zero_results"
    TOO_MANY_WAYPOINTS = "too_many_waypoints"
    INVALID_REQUEST = "invalid_request"
    OVER_QUOTA = "over_quota"
    ACCESS_DENIED = "access_denied"
    UNKNOWN = "unknown"

    def __init__(self, status: str, detail: str = ""):
        super().__init__(f"{status}: {detail}" if detail else status)
        self.status = status
        self.detail = detail


# Provider status -> (error class, message)
STATUS_ERRORS = {
    ProviderStatusError.NOT_FOUND: (NoRouteFound, "Location not found"),
    ProviderStatusError.ZERO_RESULTS: (NoRouteFound, "No route found between the specified points"),
    ProviderStatusError.TOO_MANY_WAYPOINTS: (NoRouteFound, "Too many waypoints specified"),
    ProviderStatusError.INVALID_REQUEST: (NoRouteFound, "Invalid route request"),
    ProviderStatusError.OVER_QUOTA: (ProviderQuotaError, "API quota exceeded"),
    ProviderStatusError.ACCESS_DENIED: (ProviderAuthError, "Directions API access denied"),
    ProviderStatusError.UNKNOWN: (NetworkError, "Unknown error occurred"),
}


def error_for_status(status: str) -> WalkError:
    """Map a provider status code onto the error taxonomy"""
    cls, message = STATUS_ERRORS.get(status, STATUS_ERRORS[ProviderStatusError.UNKNOWN])
    return cls(message)
