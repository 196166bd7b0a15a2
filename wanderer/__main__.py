#!/usr/bin/env python3
"""
Wanderer - Generate a walking loop and track the walk

Usage:
    python -m wanderer [minutes] [options]

Options:
    --distance KM      Target loop length in km (overrides minutes)
    --complexity C     simple, medium or complex (default: medium)
    --provider NAME    Routing provider: google, mapbox or osrm (default: osrm)
    --lat LAT          Starting latitude (for testing without GPS)
    --lon LON          Starting longitude (for testing without GPS)
    --playback FILE    Playback GPS trace from JSON file
    --speed FACTOR     Playback speed multiplier (default: 1.0)
    --record FILE      Record GPS trace to JSON file for debugging
    --websocket PORT   Receive locations from a phone/browser over WebSocket
    --title TITLE      Title for the walk
    --user ID          User the walk belongs to (default: $USER)
    --preview          Show the suggested route without walking
    --alternatives N   With --preview, also list N alternative loops
    --history          List recent walks and exit
    --stats            Show walking totals and exit
    --db PATH          History database (default: wanderer_history.db)
    --log FILE         Log file path (default: wanderer_TIMESTAMP.log)

Credentials are read from GOOGLE_MAPS_API_KEY and MAPBOX_ACCESS_TOKEN.
"""

import argparse
import os
import sys
import time
from datetime import datetime
from pathlib import Path

from .config import CONFIG
from .engine import WalkSessionEngine
from .errors import ProviderAuthError
from .geo import retry_with_backoff
from .gps import FixedLocation, GPSPlayback, GPSRecorder, LocationSource, TermuxGPS
from .history import HistoryDB
from .live import WebSocketLocationSource
from .logger import Logger
from .models import ACTIVE, COMPLEXITIES, COMPLETED, PAUSED, PREVIEW, RouteGenerationOptions
from .providers import build_provider
from .routing import RouteGenerator, estimate_duration


def _format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m{secs:02d}s"


def _print_route(route, label: str = "Suggested route"):
    print(f"\n{label} ({route.complexity}, via {route.provider})")
    print(f"  Distance: {route.distance / 1000:.2f} km")
    print(f"  Estimated time: {estimate_duration(route.distance / 1000)} min "
          f"(provider says {route.duration / 60:.0f} min)")
    print(f"  Waypoints: {len(route.waypoints)}, path points: {len(route.coordinates)}")
    if route.instructions:
        for i, step in enumerate(route.instructions[:8], 1):
            print(f"  {i:2}. {step}")
        if len(route.instructions) > 8:
            print(f"      ... {len(route.instructions) - 8} more steps")


def _print_stats(stats, prefix: str = ""):
    pace = f"{stats.pace:.1f} min/km" if stats.pace else "-"
    print(f"{prefix}{_format_duration(stats.duration)}  {stats.distance / 1000:.2f} km  "
          f"{stats.speed:.1f} km/h  pace {pace}")


def _show_history(db: HistoryDB, user_id: str):
    walks = db.list_sessions(user_id=user_id)
    if not walks:
        print("No walks recorded yet.")
        return
    print(f"Recent walks for {user_id}:")
    for walk in walks:
        moments = len(db.get_moments(walk["id"]))
        print(f"  #{walk['id']:<4} {walk['start_time'][:16]}  {walk['title']:<24} "
              f"{walk['total_distance'] / 1000:6.2f} km  "
              f"{_format_duration(walk['total_duration']):>8}  "
              f"{moments} moments  [{walk['status']}]")


def _show_stats(db: HistoryDB, user_id: str):
    stats = db.get_stats(user_id=user_id)
    print(f"Walking stats for {user_id}:")
    print(f"  Walks: {stats['total_walks']}")
    print(f"  Distance: {stats['total_distance_km']:.2f} km")
    print(f"  Time: {stats['total_duration_minutes']:.0f} min")
    print(f"  Moments: {stats['total_moments']}")


def _build_source(args) -> LocationSource:
    if args.websocket:
        source = WebSocketLocationSource(port=args.websocket)
        source.start()
    elif args.playback:
        source = GPSPlayback(args.playback, args.speed)
    elif args.lat is not None:
        source = FixedLocation(args.lat, args.lon)
    else:
        source = TermuxGPS()
    if args.record:
        source = GPSRecorder(source, args.record)
    return source


def main():
    parser = argparse.ArgumentParser(
        description="Wanderer - Generate a walking loop and track the walk"
    )
    parser.add_argument("minutes", type=float, nargs="?",
                        default=CONFIG["default_duration_minutes"],
                        help=f"Walk duration in minutes (default: {CONFIG['default_duration_minutes']})")
    parser.add_argument("--distance", type=float, metavar="KM",
                        help="Target loop length in km (overrides minutes)")
    parser.add_argument("--complexity", choices=COMPLEXITIES, default=CONFIG["default_complexity"],
                        help="Number of waypoints in the loop")
    parser.add_argument("--provider", choices=("google", "mapbox", "osrm"),
                        default=CONFIG["default_provider"],
                        help="Routing provider")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Starting latitude (for testing without GPS)")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Starting longitude (for testing without GPS)")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--websocket", type=int, metavar="PORT",
                        help="Receive locations over WebSocket on PORT")
    parser.add_argument("--title", help="Title for the walk")
    parser.add_argument("--user", default=os.environ.get("USER") or "local",
                        help="User the walk belongs to")
    parser.add_argument("--preview", action="store_true",
                        help="Show the suggested route without walking")
    parser.add_argument("--alternatives", type=int, default=0, metavar="N",
                        help="With --preview, also list N alternative loops")
    parser.add_argument("--history", action="store_true",
                        help="List recent walks and exit")
    parser.add_argument("--stats", action="store_true",
                        help="Show walking totals and exit")
    parser.add_argument("--db", default=CONFIG["db_path"], metavar="PATH",
                        help=f"History database (default: {CONFIG['db_path']})")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: wanderer_TIMESTAMP.log)")

    args = parser.parse_args()

    # Validate lat/lon - must provide both or neither
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")
    if args.alternatives and not args.preview:
        parser.error("--alternatives requires --preview")
    if args.playback and not Path(args.playback).exists():
        print(f"Playback file not found: {args.playback}")
        sys.exit(1)

    # History and stats: early exit
    if args.history or args.stats:
        db = HistoryDB(args.db)
        if args.history:
            _show_history(db, args.user)
        if args.stats:
            _show_stats(db, args.user)
        db.close()
        return

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"wanderer_{timestamp}.log"
    logger = Logger(log_path, echo=False)

    try:
        provider = build_provider(args.provider)
    except ProviderAuthError as e:
        print(f"Cannot use {args.provider}: {e.message}")
        sys.exit(1)

    generator = RouteGenerator(provider, logger=logger)
    source = _build_source(args)
    db = None if args.preview else HistoryDB(args.db)
    engine = WalkSessionEngine(generator, store=db, location_source=source,
                               user_id=args.user, logger=logger)
    if isinstance(source, WebSocketLocationSource):
        engine.add_listener(source.send_state)

    print("\n=== Wanderer ===")
    if args.distance:
        print(f"Target distance: {args.distance} km")
    else:
        print(f"Target duration: {args.minutes:.0f} min")
    print(f"Location: {source.get_status()}")

    # Acquire starting fix
    start = retry_with_backoff(
        lambda: source.get_location(CONFIG["gps_fix_timeout"]),
        max_time=CONFIG["gps_fix_max_wait"],
        description="GPS fix"
    )
    if not start:
        print("Could not get a location fix")
        logger.log("No starting fix")
        sys.exit(1)
    print(f"Starting at {start.lat:.5f}, {start.lng:.5f}")

    options = RouteGenerationOptions(
        start_location=start,
        duration_minutes=None if args.distance else args.minutes,
        preferred_distance_km=args.distance,
        complexity=args.complexity,
    )

    print("Generating route...")
    engine.generate_route(options)
    engine.wait_for_pending()
    if engine.phase != PREVIEW:
        error = engine.last_error
        print(f"Route generation failed: {error.message if error else 'unknown error'}")
        sys.exit(1)
    _print_route(engine.generated_route)

    if args.preview:
        if args.alternatives:
            for i, result in enumerate(generator.generate_alternatives(options, args.alternatives), 1):
                if result.success:
                    _print_route(result.route, f"Alternative {i}")
                else:
                    print(f"\nAlternative {i}: {result.error.message}")
        engine.shutdown()
        logger.close()
        return

    engine.start_walk(args.title)
    if engine.phase != ACTIVE:
        error = engine.last_error
        print(f"Could not start walk: {error.message if error else 'unknown error'}")
        sys.exit(1)

    if isinstance(source, GPSPlayback):
        print(f"Playback mode: {source.speed}x speed")
    print("Walking. Press Ctrl+C to finish.\n")

    last_print = 0.0
    try:
        while engine.phase in (ACTIVE, PAUSED):
            if source.is_finished():
                print("\nPlayback finished")
                logger.log("Playback finished")
                break
            time.sleep(CONFIG["tick_interval"])
            now = time.time()
            if now - last_print >= CONFIG["log_interval"]:
                last_print = now
                _print_stats(engine.live_stats, "  ")
    except KeyboardInterrupt:
        print("\nWalk finished")
        logger.log("Walk ended by user")
    finally:
        engine.end_walk()
        engine.wait_for_pending()

        if isinstance(source, GPSRecorder):
            source.save()
        if isinstance(source, WebSocketLocationSource):
            source.stop()

        session = engine.current_session
        if engine.phase == COMPLETED and session:
            print(f"\n{session.title}")
            print(f"  Distance: {session.total_distance / 1000:.2f} km")
            print(f"  Time: {_format_duration(session.total_duration)}")
            print(f"  Moments: {len(session.moments)}")
            if engine.is_saved:
                print(f"  Saved as walk #{session.id}")
            else:
                error = engine.last_error
                print(f"  Not saved: {error.message if error else 'unknown error'}")
        logger.log("Walk summary", engine.get_state()["session"])
        db.close()
        logger.close()


if __name__ == "__main__":
    main()
