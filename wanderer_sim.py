#!/usr/bin/env python3
"""
Wanderer Simulator - Walk a generated route without GPS/Termux

Generates a loop, then walks it by feeding fixes interpolated along the
route geometry into the session engine at walking pace, pinning a moment
halfway round. Simulated time is used, so a 30 minute walk finishes at once.
"""

import argparse

from wanderer import (
    CONFIG, HistoryDB, Location, Logger, RouteGenerationOptions, RouteGenerator,
    RoutingProvider, WalkSessionEngine, build_provider, distance,
)
from wanderer.geo import interpolate, trail_length
from wanderer.models import COMPLETED, PREVIEW


class StraightLineProvider(RoutingProvider):
    """Joins the waypoints with straight legs (no network needed)"""

    name = "straight"

    def route(self, origin, waypoints, destination, mode="walking",
              avoid_highways=True, avoid_tolls=True, optimize_waypoints=True):
        points = [origin] + list(waypoints) + [destination]
        length = trail_length(points)
        return {
            "coordinates": [p.as_tuple() for p in points],
            "distance": length,
            "duration": length / (CONFIG["walking_speed_kmh"] / 3.6),
            "instructions": [f"Walk to waypoint {i}" for i in range(1, len(waypoints) + 1)]
                            + ["Return to start"],
        }


class SimClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class WanderSimulator:
    """Simulate walking a generated loop"""

    def __init__(self, provider: RoutingProvider, db_path: str, step: float = 10.0):
        self.clock = SimClock()
        self.logger = Logger(echo=False)
        self.history = HistoryDB(db_path)
        self.step = step
        self.engine = WalkSessionEngine(
            RouteGenerator(provider, logger=self.logger),
            store=self.history,
            user_id="simulator",
            logger=self.logger,
            clock=self.clock,
            dispatch=lambda func: func(),
            auto_tick=False,
        )

    def plan(self, lat: float, lng: float, minutes: float, complexity: str) -> bool:
        print(f"Generating {minutes:.0f} minute {complexity} loop at ({lat}, {lng})...")
        self.engine.generate_route(RouteGenerationOptions(
            start_location=Location(lat=lat, lng=lng),
            duration_minutes=minutes,
            complexity=complexity,
        ))
        if self.engine.phase != PREVIEW:
            print(f"Route generation failed: {self.engine.last_error.message}")
            return False
        route = self.engine.generated_route
        print(f"Route: {route.distance / 1000:.2f} km, {len(route.coordinates)} points")
        return True

    def fixes(self):
        """Yield locations every `step` meters along the planned route"""
        coords = self.engine.generated_route.coordinates
        for a, b in zip(coords, coords[1:]):
            leg = distance(a, b)
            n = max(1, int(leg // self.step))
            for i in range(1, n + 1):
                lat, lng = interpolate(a.lat, a.lng, b.lat, b.lng, i / n)
                yield Location(lat=lat, lng=lng, accuracy=5.0), leg / n

    def walk(self, title: str):
        self.engine.start_walk(title)
        speed = CONFIG["walking_speed_kmh"] / 3.6
        fixes = list(self.fixes())
        halfway = len(fixes) // 2

        for i, (location, leg) in enumerate(fixes):
            self.clock.advance(leg / speed)
            self.engine.handle_location(location)
            self.engine.tick()
            if i == halfway:
                self.engine.add_moment(description="Halfway point")
                stats = self.engine.live_stats
                print(f"Halfway: {stats.distance:.0f}m in {stats.duration}s")

        self.engine.end_walk()

    def report(self):
        session = self.engine.current_session
        if self.engine.phase != COMPLETED or session is None:
            print("Walk did not complete")
            return
        print(f"\n{session.title}")
        print(f"  Distance: {session.total_distance:.0f}m")
        print(f"  Duration: {session.total_duration // 60}m{session.total_duration % 60:02d}s")
        print(f"  Trail points: {len(session.route_path)}")
        print(f"  Moments: {len(session.moments)}")
        print(f"  Saved: {'walk #' + str(session.id) if self.engine.is_saved else 'no'}")

    def close(self):
        self.history.close()
        self.logger.close()


def main():
    parser = argparse.ArgumentParser(description="Simulate a walk along a generated loop")
    # Default: Central Park, NYC
    parser.add_argument("lat", type=float, nargs="?", default=40.7829)
    parser.add_argument("lon", type=float, nargs="?", default=-73.9654)
    parser.add_argument("--minutes", type=float, default=CONFIG["default_duration_minutes"])
    parser.add_argument("--complexity", default=CONFIG["default_complexity"])
    parser.add_argument("--provider", help="Use a real routing provider instead of straight legs")
    parser.add_argument("--db", default="wanderer_sim_history.db")
    args = parser.parse_args()

    provider = build_provider(args.provider) if args.provider else StraightLineProvider()
    sim = WanderSimulator(provider, args.db)
    try:
        if sim.plan(args.lat, args.lon, args.minutes, args.complexity):
            sim.walk("Simulated walk")
            sim.report()
    finally:
        sim.close()


if __name__ == "__main__":
    main()
