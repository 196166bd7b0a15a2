import random
from typing import Callable, Optional

import pytest

from wanderer.logger import Logger
from wanderer.models import Location
from wanderer.providers import RoutingProvider
from wanderer.routing import RouteGenerator
from wanderer.engine import WalkSessionEngine

START = Location(lat=51.5007, lng=-0.1246)


class FakeProvider(RoutingProvider):
    """Returns a fixed square loop, or raises the configured error."""

    name = "fake"

    def __init__(self, error: Optional[Exception] = None):
        super().__init__(timeout=1)
        self.error = error
        self.calls = []

    def route(self, origin, waypoints, destination, mode="walking",
              avoid_highways=True, avoid_tolls=True, optimize_waypoints=True):
        self.calls.append({"origin": origin, "waypoints": waypoints, "destination": destination})
        if self.error is not None:
            raise self.error
        coords = [origin.as_tuple()] + [w.as_tuple() for w in waypoints] + [destination.as_tuple()]
        return {
            "coordinates": coords,
            "distance": 2500.0,
            "duration": 1800.0,
            "instructions": ["Head north", "Turn right"],
        }


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def quiet_logger() -> Logger:
    return Logger(echo=False)


@pytest.fixture()
def make_engine(provider, clock, quiet_logger) -> Callable[..., WalkSessionEngine]:
    """Engine with synchronous dispatch, fake clock and manual ticks unless overridden."""

    def create(**kwargs) -> WalkSessionEngine:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("auto_tick", False)
        kwargs.setdefault("user_id", "user-1")
        generator = kwargs.pop("generator", None) or RouteGenerator(
            kwargs.pop("provider", provider), rng=random.Random(42), sleep=lambda s: None
        )
        kwargs.setdefault("dispatch", lambda func: func())
        return WalkSessionEngine(
            generator,
            logger=quiet_logger,
            **kwargs,
        )

    return create
