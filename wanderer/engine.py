"""Walk session state machine."""

import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from .config import CONFIG
from .errors import LocationError, LocationUnavailable, NetworkError, PersistenceError, WalkError
from .geo import distance, trail_length
from .gps import LocationSource
from .history import HistoryDB
from .logger import Logger
from .models import (
    ACTIVE, COMPLETED, COMPLEXITIES, GENERATING, IDLE, PAUSED, PREVIEW,
    GeneratedRoute, LiveStats, Location, RouteGenerationOptions, WalkMoment, WalkSession,
)
from .routing import RouteGenerator, RouteResult


class WalkSessionEngine:
    """Owns one walk from route suggestion to the stored summary.

    Commands (generate_route, try_another_route, start_walk, pause_walk,
    resume_walk, add_moment, end_walk, save_session, reset_session) move the
    engine through idle -> generating -> preview -> active <-> paused ->
    completed. A command that does not apply to the current phase is ignored.

    Two producers run concurrently with the caller: the tick thread, which
    recomputes live stats once per second while active, and the location
    source's watch thread, which feeds handle_location(). Both only read or
    append to the trail, under self._lock.

    Network work (route generation, the final save) goes through dispatch,
    a callable that runs a function in the background. auto_tick=False turns
    off the tick thread and the timer that announces last_error clearing;
    tests pass that with a synchronous dispatcher and a fake clock.
    """

    def __init__(self, generator: RouteGenerator, store: Optional[HistoryDB] = None,
                 location_source: Optional[LocationSource] = None,
                 user_id: Optional[str] = None, logger: Optional[Logger] = None,
                 clock: Callable[[], float] = time.time,
                 dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
                 auto_tick: bool = True):
        self.generator = generator
        self.store = store
        self.location_source = location_source
        self.user_id = user_id
        self.logger = logger or Logger()
        self.clock = clock
        self.dispatch = dispatch or self._spawn
        self.auto_tick = auto_tick

        self._lock = threading.RLock()
        self._listeners: list[Callable[[dict], None]] = []
        self._workers: list[threading.Thread] = []

        self.phase = IDLE
        self.current_session: Optional[WalkSession] = None
        self.generated_route: Optional[GeneratedRoute] = None
        self.current_location: Optional[Location] = None
        self.live_stats = LiveStats()
        self.is_loading = False

        self._route_options: Optional[RouteGenerationOptions] = None
        self._generation = 0  # bumped on reset so late route results are dropped
        self._error: Optional[WalkError] = None
        self._error_at = 0.0
        self._active_since: Optional[float] = None
        self._elapsed_offset = 0.0
        self._session_saved = False
        self._moments_saved = False
        self._last_state_log = 0.0

        self._tick_thread: Optional[threading.Thread] = None
        self._tick_stop: Optional[threading.Event] = None

    # ------------------------------------------------------------------
    # Observable state

    @property
    def route_path(self) -> list[Location]:
        with self._lock:
            return list(self.current_session.route_path) if self.current_session else []

    @property
    def moments(self) -> list[WalkMoment]:
        with self._lock:
            return list(self.current_session.moments) if self.current_session else []

    @property
    def last_error(self) -> Optional[WalkError]:
        with self._lock:
            if self._error and self.clock() - self._error_at >= CONFIG["error_clear_after"]:
                self._error = None
            return self._error

    @property
    def is_tracking(self) -> bool:
        return self.phase == ACTIVE

    @property
    def has_active_session(self) -> bool:
        return self.current_session is not None

    @property
    def can_start_walk(self) -> bool:
        return self.phase == PREVIEW and self.generated_route is not None

    @property
    def is_saved(self) -> bool:
        return self._session_saved and self._moments_saved

    def elapsed_active_seconds(self) -> float:
        """Time spent walking, excluding paused spans"""
        with self._lock:
            running = self.clock() - self._active_since if self._active_since is not None else 0.0
            return self._elapsed_offset + running

    def get_state(self) -> dict:
        """Snapshot of everything a UI needs, as plain JSON-friendly data"""
        with self._lock:
            error = self.last_error
            session = self.current_session
            return {
                "phase": self.phase,
                "live_stats": self.live_stats.to_dict(),
                "route_path": [p.to_dict() for p in self.route_path],
                "moments": [m.to_dict() for m in self.moments],
                "generated_route": self.generated_route.to_dict() if self.generated_route else None,
                "last_error": error.to_dict() if error else None,
                "session": {
                    "id": session.id,
                    "title": session.title,
                    "status": session.status,
                    "start_time": session.start_time,
                    "end_time": session.end_time,
                    "total_distance": session.total_distance,
                    "total_duration": session.total_duration,
                    "saved": self.is_saved,
                } if session else None,
                "current_location": self.current_location.to_dict() if self.current_location else None,
                "is_loading": self.is_loading,
                "is_tracking": self.is_tracking,
                "has_active_session": self.has_active_session,
                "can_start_walk": self.can_start_walk,
            }

    def add_listener(self, callback: Callable[[dict], None]):
        """Call callback with get_state() after every state change"""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[dict], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self):
        if not self._listeners:
            return
        state = self.get_state()
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                self.logger.log("Listener error", {"error": repr(e)})

    def _set_error(self, error: WalkError):
        self._error = error
        self._error_at = self.clock()
        self.logger.log("Error", error.to_dict())
        if self.auto_tick:
            timer = threading.Timer(CONFIG["error_clear_after"], self._expire_error, args=(error,))
            timer.daemon = True
            timer.start()

    def _expire_error(self, error: WalkError):
        """Clear error and tell listeners, unless a newer error replaced it"""
        with self._lock:
            if self._error is not None and self._error is not error:
                return
            self._error = None
        self._notify()

    def _ignore(self, command: str):
        self.logger.log("Ignored command", {"command": command, "phase": self.phase})

    # ------------------------------------------------------------------
    # Background work

    def _spawn(self, func: Callable[[], None]):
        thread = threading.Thread(target=func, daemon=True)
        self._workers = [w for w in self._workers if w.is_alive()]
        self._workers.append(thread)
        thread.start()

    def wait_for_pending(self, timeout: Optional[float] = None):
        """Block until dispatched route requests and saves have finished"""
        for worker in list(self._workers):
            worker.join(timeout)

    def _start_ticking(self):
        if not self.auto_tick or self._tick_thread is not None:
            return
        stop = threading.Event()
        self._tick_stop = stop
        self._tick_thread = threading.Thread(target=self._tick_loop, args=(stop,), daemon=True)
        self._tick_thread.start()

    def _tick_loop(self, stop: threading.Event):
        while not stop.wait(CONFIG["tick_interval"]):
            self.tick()

    def _stop_ticking(self):
        if self._tick_stop:
            self._tick_stop.set()
        thread = self._tick_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=CONFIG["tick_interval"] * 2)
        self._tick_thread = None
        self._tick_stop = None

    def _start_watching(self):
        if self.location_source:
            self.location_source.watch(self.handle_location, on_error=self._on_location_error)

    def _stop_watching(self):
        if self.location_source:
            self.location_source.unwatch()

    def _on_location_error(self, error: LocationError):
        self.logger.log("Location update failed", error.to_dict())

    def _store_call(self, description: str, func, *args):
        """Run a store method, turning any failure into PersistenceError"""
        try:
            return func(*args)
        except Exception as e:
            raise PersistenceError(f"{description} failed: {e}") from e

    # ------------------------------------------------------------------
    # Route generation

    def _resolve_start(self, options: RouteGenerationOptions) -> Location:
        if options.start_location:
            return options.start_location
        if self.current_location:
            return self.current_location
        if self.location_source:
            location = self.location_source.get_current_position(CONFIG["gps_fix_timeout"])
            self.current_location = location
            return location
        raise LocationUnavailable("Current location is unknown")

    def generate_route(self, options: RouteGenerationOptions):
        with self._lock:
            if self.phase != IDLE:
                self._ignore("generate_route")
                return
        try:
            start = self._resolve_start(options)
        except LocationUnavailable as e:
            with self._lock:
                self._set_error(e)
            self._notify()
            return

        self._request_route(replace(options, start_location=start))

    def try_another_route(self):
        with self._lock:
            if self.phase != PREVIEW or self._route_options is None:
                self._ignore("try_another_route")
                return
            current = self._route_options.complexity
            next_complexity = COMPLEXITIES[(COMPLEXITIES.index(current) + 1) % len(COMPLEXITIES)]
            options = replace(self._route_options, complexity=next_complexity)
        self._request_route(options)

    def _request_route(self, options: RouteGenerationOptions):
        with self._lock:
            self.phase = GENERATING
            self.is_loading = True
            self._error = None
            self._route_options = options
            self._generation += 1
            token = self._generation
            self.logger.log("Generating route", {
                "start": options.start_location.to_dict(),
                "duration_minutes": options.duration_minutes,
                "distance_km": options.preferred_distance_km,
                "complexity": options.complexity,
            })
        self._notify()
        self.dispatch(lambda: self._run_generation(options, token))

    def _run_generation(self, options: RouteGenerationOptions, token: int):
        try:
            result = self.generator.generate(options)
        except Exception as e:
            # generate() reports failures in the result; anything else is a bug upstream
            result = RouteResult(error=NetworkError(f"Route generation failed: {e}"))

        with self._lock:
            if token != self._generation or self.phase != GENERATING:
                return
            self.is_loading = False
            if result.success:
                self.generated_route = result.route
                self.phase = PREVIEW
                self.logger.log("Route ready", {
                    "distance": result.route.distance,
                    "duration": result.route.duration,
                    "complexity": options.complexity,
                })
            else:
                self.generated_route = None
                self.phase = IDLE
                self._set_error(result.error)
        self._notify()

    # ------------------------------------------------------------------
    # Walking

    def start_walk(self, title: Optional[str] = None):
        with self._lock:
            if self.phase != PREVIEW or self.generated_route is None:
                self._ignore("start_walk")
                return
            if not self.user_id:
                self._set_error(WalkError("Cannot start walk: no user"))
                self._notify()
                return
            location = self.current_location or self._route_options.start_location
            if location is None:
                self._set_error(LocationUnavailable("Cannot start walk: location unknown"))
                self._notify()
                return

            now = self.clock()
            self.current_session = WalkSession(
                user_id=self.user_id,
                title=title or f"Walk {datetime.fromtimestamp(now).strftime('%Y-%m-%d')}",
                start_time=now,
                route_path=[location],
                planned_route=tuple(self.generated_route.coordinates),
                status=ACTIVE,
            )
            self.phase = ACTIVE
            self._active_since = now
            self._elapsed_offset = 0.0
            self._last_state_log = now
            self._session_saved = False
            self._moments_saved = False
            self.live_stats = LiveStats()
            self.logger.log("Walk started", {
                "title": self.current_session.title,
                "start": location.to_dict(),
                "planned_distance": self.generated_route.distance,
            })

        self._persist_start()
        self._start_ticking()
        self._start_watching()
        self._notify()

    def _persist_start(self):
        if not self.store:
            return
        session = self.current_session
        try:
            session_id = self._store_call("Saving new walk", self.store.insert_session, session)
        except PersistenceError as e:
            # end_walk inserts the record if this one never landed
            with self._lock:
                self._set_error(e)
            return
        with self._lock:
            session.id = session_id
        self.logger.log("Walk stored", {"id": session_id})

    def _persist_status(self, status: str):
        session = self.current_session
        if not self.store or session is None or session.id is None:
            return
        try:
            self._store_call("Updating walk status", self.store.update_session_status,
                             session.id, status)
        except PersistenceError as e:
            with self._lock:
                self._set_error(e)

    def pause_walk(self):
        with self._lock:
            if self.phase != ACTIVE:
                self._ignore("pause_walk")
                return
            self._elapsed_offset += self.clock() - self._active_since
            self._active_since = None
            self.phase = PAUSED
            self.current_session.status = PAUSED
            self.live_stats = self._compute_stats()
            self.logger.log("Walk paused", self.live_stats.to_dict())
        self._stop_ticking()
        self._persist_status(PAUSED)
        self._notify()

    def resume_walk(self):
        with self._lock:
            if self.phase != PAUSED:
                self._ignore("resume_walk")
                return
            self._active_since = self.clock()
            self.phase = ACTIVE
            self.current_session.status = ACTIVE
            self.logger.log("Walk resumed", {"elapsed": self._elapsed_offset})
        self._start_ticking()
        self._persist_status(ACTIVE)
        self._notify()

    def _compute_stats(self) -> LiveStats:
        duration = int(self.elapsed_active_seconds())
        walked = trail_length(self.current_session.route_path) if self.current_session else 0.0
        speed = (walked / 1000) / (duration / 3600) if duration > 0 else 0.0
        pace = 60 / speed if speed > 0 else 0.0
        return LiveStats(duration=duration, distance=walked, pace=pace, speed=speed)

    def tick(self):
        """Recompute live stats; a no-op unless a walk is active"""
        with self._lock:
            if self.phase != ACTIVE:
                return
            self.live_stats = self._compute_stats()
            now = self.clock()
            if now - self._last_state_log >= CONFIG["log_interval"]:
                self._last_state_log = now
                self.logger.log("STATE", {
                    **self.live_stats.to_dict(),
                    "trail_points": len(self.current_session.route_path),
                    "moments": len(self.current_session.moments),
                    "gps_status": self.location_source.get_status() if self.location_source else "none",
                })
        self._notify()

    def handle_location(self, location: Location) -> bool:
        """Ingest a GPS fix; returns True if it extended the trail"""
        with self._lock:
            self.current_location = location
            if self.phase != ACTIVE or self.current_session is None:
                return False
            trail = self.current_session.route_path
            if trail and distance(trail[-1], location) <= CONFIG["min_trail_step"]:
                return False
            trail.append(location)
        self._notify()
        return True

    def add_moment(self, location: Optional[Location] = None, description: Optional[str] = None,
                   photo_ref: Optional[str] = None) -> Optional[WalkMoment]:
        with self._lock:
            if self.phase != ACTIVE:
                self._ignore("add_moment")
                return None
            location = location or self.current_location or self.current_session.route_path[-1]
            moment = WalkMoment.create(location, self.clock(), description=description,
                                       photo_ref=photo_ref)
            self.current_session.moments.append(moment)
            self.logger.log("Moment added", {"lat": moment.lat, "lng": moment.lng,
                                             "description": description})
        self._notify()
        return moment

    # ------------------------------------------------------------------
    # Completion

    def end_walk(self):
        with self._lock:
            if self.phase not in (ACTIVE, PAUSED) or self.current_session is None:
                self._ignore("end_walk")
                return
            now = self.clock()
            if self._active_since is not None:
                self._elapsed_offset += now - self._active_since
                self._active_since = None

            # Totals are frozen here and never re-derived
            session = self.current_session
            session.end_time = now
            session.total_distance = trail_length(session.route_path)
            session.total_duration = int(self._elapsed_offset)
            session.status = COMPLETED
            self.live_stats = self._compute_stats()
            self.phase = COMPLETED
            self.is_loading = bool(self.store)
            self.logger.log("Walk ended", {
                "distance": session.total_distance,
                "duration": session.total_duration,
                "trail_points": len(session.route_path),
                "moments": len(session.moments),
            })

        self._stop_ticking()
        self._stop_watching()
        self._notify()
        if self.store:
            self.dispatch(self._persist_completed)

    def save_session(self):
        """Retry the final write of a completed walk that did not fully save"""
        with self._lock:
            if self.phase != COMPLETED or self.is_saved or self.is_loading or not self.store:
                self._ignore("save_session")
                return
            self.is_loading = True
        self._notify()
        self.dispatch(self._persist_completed)

    def _persist_completed(self):
        with self._lock:
            session = self.current_session
            if session is None:
                return
            route_path = list(session.route_path)
            moments = list(session.moments)

        try:
            if not self._session_saved:
                if session.id is None:
                    session.id = self._store_call("Saving walk", self.store.insert_session, session)
                self._store_call("Saving walk", self.store.finalize_session, session.id,
                                 session.end_time, session.total_distance,
                                 session.total_duration, route_path)
                self._session_saved = True
                self.logger.log("Walk saved", {"id": session.id})
        except PersistenceError as e:
            with self._lock:
                self.is_loading = False
                self._set_error(e)
            self._notify()
            return

        # Moments failing does not undo the walk record
        try:
            if moments:
                self._store_call("Saving moments", self.store.insert_moments, session.id, moments)
                self.logger.log("Moments saved", {"id": session.id, "count": len(moments)})
            self._moments_saved = True
        except PersistenceError as e:
            with self._lock:
                self._set_error(e)

        with self._lock:
            self.is_loading = False
        self._notify()

    def reset_session(self):
        """Drop all in-memory state and stop timers and streams; nothing is persisted"""
        self._stop_ticking()
        self._stop_watching()
        with self._lock:
            previous = self.phase
            self._generation += 1
            self.phase = IDLE
            self.current_session = None
            self.generated_route = None
            self._route_options = None
            self.live_stats = LiveStats()
            self.is_loading = False
            self._error = None
            self._active_since = None
            self._elapsed_offset = 0.0
            self._session_saved = False
            self._moments_saved = False
            self.logger.log("Session reset", {"from": previous})
        self._notify()

    def shutdown(self):
        """Stop background threads without touching session state"""
        self._stop_ticking()
        self._stop_watching()
