"""Configuration settings for Wanderer."""

CONFIG = {
    "tick_interval": 1,  # seconds between live stat recomputations
    "min_trail_step": 5,  # meters - GPS fixes closer than this to the last trail point are jitter
    "walking_speed_kmh": 5,  # assumed pace for duration <-> distance conversion
    "default_duration_minutes": 30,
    "default_complexity": "medium",
    # Waypoints placed around the start point, per complexity level
    "waypoint_counts": {
        "simple": 2,
        "medium": 4,
        "complex": 6,
    },
    "waypoint_radius_factor": (0.3, 0.7),  # fraction of the loop radius
    "waypoint_angle_jitter": 0.25,  # fraction of half the angular gap between waypoints
    "max_radius_factor": 1.3,  # waypoints never land further out than this x radius
    "alternatives_delay": 0.1,  # seconds between provider calls for alternative routes
    "request_timeout": 15,  # seconds - routing provider HTTP calls
    "error_clear_after": 5,  # seconds before last_error is dropped
    "log_interval": 10,  # seconds between STATE log entries while walking
    "gps_poll_interval": 3,  # seconds between fixes when watching a polled source
    "gps_fix_timeout": 10,  # seconds for a one-shot fix
    "gps_fix_max_wait": 30,  # seconds of retries when acquiring the first fix
    "db_path": "wanderer_history.db",
    "default_provider": "osrm",
    "google_directions_url": "https://maps.googleapis.com/maps/api/directions/json",
    "mapbox_directions_url": "https://api.mapbox.com/directions/v5",
    "osrm_url": "https://router.project-osrm.org",
    "osrm_profile": "foot",
    "websocket_port": 8765,
}
