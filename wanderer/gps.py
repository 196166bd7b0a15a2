"""GPS access, recording/playback and continuous watching."""

import json
import subprocess
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from .config import CONFIG
from .errors import LocationError
from .models import Location


class LocationSource:
    """Base class for geolocation sources.

    Subclasses implement get_current_position(). watch() polls it from a
    background thread and hands every fix to the callback until unwatch().
    """

    def __init__(self):
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0
        self._watch_thread: Optional[threading.Thread] = None
        self._watch_stop = threading.Event()

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        raise NotImplementedError

    def get_location(self, timeout: Optional[float] = None) -> Optional[Location]:
        """Like get_current_position() but returns None on failure"""
        try:
            return self.get_current_position(timeout)
        except LocationError:
            return None

    def get_poll_interval(self) -> float:
        return CONFIG["gps_poll_interval"]

    def is_finished(self) -> bool:
        return False

    def is_watching(self) -> bool:
        return self._watch_thread is not None and self._watch_thread.is_alive()

    def watch(self, callback: Callable[[Location], None],
              on_error: Optional[Callable[[LocationError], None]] = None):
        """Deliver fixes to callback from a background thread"""
        if self.is_watching():
            return
        self._watch_stop.clear()
        self._watch_thread = threading.Thread(
            target=self._watch_loop, args=(callback, on_error), daemon=True
        )
        self._watch_thread.start()

    def _watch_loop(self, callback, on_error):
        while not self._watch_stop.is_set() and not self.is_finished():
            try:
                location = self.get_current_position()
            except LocationError as e:
                if on_error:
                    on_error(e)
            else:
                callback(location)
            self._watch_stop.wait(self.get_poll_interval())

    def unwatch(self):
        self._watch_stop.set()
        thread = self._watch_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=CONFIG["gps_fix_timeout"])
        self._watch_thread = None

    def _accept(self, location: Location) -> Location:
        self.last_location = location
        self.consecutive_failures = 0
        return location

    def _fail(self, reason: str, message: str = "") -> LocationError:
        self.consecutive_failures += 1
        return LocationError(reason, message)

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_location.accuracy:.0f}m" if self.last_location and self.last_location.accuracy else ""
            return f"GPS OK{acc}"
        else:
            return f"GPS: {self.consecutive_failures} consecutive failures"


class TermuxGPS(LocationSource):
    """GPS access via Termux API"""

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        """Get current location using termux-location"""
        timeout = timeout or CONFIG["gps_fix_timeout"]
        try:
            result = subprocess.run(
                ["termux-location", "-p", "gps", "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            raise self._fail(LocationError.TIMEOUT)
        except FileNotFoundError:
            raise self._fail(LocationError.UNAVAILABLE, "termux-location not installed")

        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "unknown error"
            if "permission" in error_msg.lower():
                raise self._fail(LocationError.PERMISSION_DENIED, error_msg)
            raise self._fail(LocationError.UNAVAILABLE, error_msg)

        if not result.stdout or not result.stdout.strip():
            raise self._fail(LocationError.UNAVAILABLE, "empty response")

        try:
            data = json.loads(result.stdout)
            location = Location(
                lat=data["latitude"],
                lng=data["longitude"],
                accuracy=data.get("accuracy"),
                timestamp=time.time()
            )
        except (json.JSONDecodeError, KeyError) as e:
            raise self._fail(LocationError.UNAVAILABLE, f"unreadable fix: {e}")
        return self._accept(location)


class FixedLocation(LocationSource):
    """Always reports the same position (testing without GPS)"""

    def __init__(self, lat: float, lng: float):
        super().__init__()
        self.lat = lat
        self.lng = lng

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        return self._accept(Location(lat=self.lat, lng=self.lng, accuracy=0, timestamp=time.time()))

    def get_status(self) -> str:
        return f"Fixed location {self.lat:.5f}, {self.lng:.5f}"


class GPSRecorder(LocationSource):
    """Records GPS trace to file"""

    def __init__(self, source: LocationSource, record_path: str):
        super().__init__()
        self.source = source
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        """Get location and record it"""
        location = None
        try:
            location = self.source.get_current_position(timeout)
            return self._accept(location)
        except LocationError:
            self.consecutive_failures += 1
            raise
        finally:
            # Record even failed attempts
            self.trace.append({
                "elapsed": time.time() - self.start_time,
                "timestamp": time.time(),
                "location": location.to_dict() if location else None,
                "status": self.source.get_status()
            })

    def get_poll_interval(self) -> float:
        return self.source.get_poll_interval()

    def is_finished(self) -> bool:
        return self.source.is_finished()

    def get_status(self) -> str:
        return self.source.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback(LocationSource):
    """Plays back GPS trace from file"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        super().__init__()
        self.playback_path = playback_path
        self.speed = speed
        self.trace: list[dict] = []
        self.index = 0

        # Load trace
        with open(playback_path) as f:
            data = json.load(f)
            self.trace = data["trace"]
        print(f"Loaded GPS trace from {playback_path} ({len(self.trace)} entries)")

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        """Get next location from trace sequentially"""
        if self.index >= len(self.trace):
            raise self._fail(LocationError.UNAVAILABLE, "playback finished")

        entry = self.trace[self.index]
        self.index += 1

        if entry["location"]:
            return self._accept(Location.from_dict(entry["location"]))
        raise self._fail(LocationError.UNAVAILABLE, entry.get("status", "recorded failure"))

    def get_poll_interval(self) -> float:
        """Get the interval to wait between polls based on trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        # Calculate time delta between current and previous entry
        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        delta = curr_elapsed - prev_elapsed

        # Apply speed multiplier and clamp to reasonable range
        interval = delta / self.speed
        return max(0.1, min(interval, 5.0))

    def is_finished(self) -> bool:
        """Check if playback is complete"""
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"
