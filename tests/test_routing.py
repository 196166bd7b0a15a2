import random

import pytest

from conftest import START, FakeProvider
from wanderer.config import CONFIG
from wanderer.errors import (
    LocationUnavailable, NetworkError, NoRouteFound, ProviderAuthError, ProviderQuotaError,
    ProviderStatusError,
)
from wanderer.geo import distance
from wanderer.models import RouteGenerationOptions
from wanderer.routing import RouteGenerator, estimate_distance, estimate_duration


def make_generator(provider=None, seed=7, sleep=lambda s: None):
    return RouteGenerator(provider or FakeProvider(), rng=random.Random(seed), sleep=sleep)


def test_estimate_distance():
    assert estimate_distance(30) == pytest.approx(2.5)
    assert estimate_distance(60) == pytest.approx(5.0)


def test_estimate_duration_rounds_to_minutes():
    assert estimate_duration(2.5) == 30
    assert estimate_duration(1.0) == 12
    assert estimate_duration(0.1) == 1


@pytest.mark.parametrize("complexity,count", [("simple", 2), ("medium", 4), ("complex", 6)])
def test_waypoint_count_follows_complexity(complexity, count):
    waypoints = make_generator().build_waypoints(START, 1.25, complexity)
    assert len(waypoints) == count


@pytest.mark.parametrize("seed", range(10))
def test_waypoints_stay_within_radius_bounds(seed):
    radius_km = 1.25
    low, high = CONFIG["waypoint_radius_factor"]
    for w in make_generator(seed=seed).build_waypoints(START, radius_km, "complex"):
        d = distance(START, w)
        assert radius_km * 1000 * low * 0.999 <= d <= radius_km * 1000 * high * 1.001
        assert d <= radius_km * 1000 * CONFIG["max_radius_factor"]


def test_same_seed_gives_same_waypoints():
    a = make_generator(seed=3).build_waypoints(START, 1.0, "medium")
    b = make_generator(seed=3).build_waypoints(START, 1.0, "medium")
    assert a == b


def test_generate_builds_loop_through_provider():
    provider = FakeProvider()
    result = make_generator(provider).generate(
        RouteGenerationOptions(start_location=START, duration_minutes=30)
    )

    assert result.success
    route = result.route
    assert route.distance == 2500.0
    assert route.duration == 1800.0
    assert route.provider == "fake"
    assert route.complexity == "medium"
    assert len(route.waypoints) == 4
    assert route.coordinates[0] == route.coordinates[-1]
    call = provider.calls[0]
    assert call["origin"] == START and call["destination"] == START


def test_preferred_distance_overrides_duration():
    gen = make_generator()
    result = gen.generate(RouteGenerationOptions(
        start_location=START, duration_minutes=300, preferred_distance_km=2.0
    ))
    # Loop radius is half the target, waypoints are at most 0.7 of it
    assert all(distance(START, w) <= 1000 * 0.7 * 1.001 for w in result.route.waypoints)


def test_missing_start_location_is_reported():
    result = make_generator().generate(RouteGenerationOptions(duration_minutes=30))
    assert not result.success
    assert isinstance(result.error, LocationUnavailable)


@pytest.mark.parametrize("distance_km", [0, None])
def test_zero_preferred_distance_falls_back_to_default_duration(distance_km):
    options = RouteGenerationOptions(start_location=START, preferred_distance_km=distance_km)
    options.duration_minutes = None
    result = make_generator().generate(options)

    assert result.success
    # 30 minutes at 5 km/h is a 2.5 km loop, so waypoints stay within 0.7 x 1.25 km
    assert all(distance(START, w) <= 1250 * 0.7 * 1.001 for w in result.route.waypoints)
    assert all(r.success for r in make_generator().generate_alternatives(options, count=2))


def test_non_positive_length_is_no_route():
    result = make_generator().generate(RouteGenerationOptions(start_location=START, duration_minutes=0))
    assert isinstance(result.error, NoRouteFound)


def test_unknown_complexity_is_rejected():
    with pytest.raises(ValueError):
        RouteGenerationOptions(start_location=START, complexity="extreme")


@pytest.mark.parametrize("status,error_cls", [
    (ProviderStatusError.NOT_FOUND, NoRouteFound),
    (ProviderStatusError.ZERO_RESULTS, NoRouteFound),
    (ProviderStatusError.TOO_MANY_WAYPOINTS, NoRouteFound),
    (ProviderStatusError.INVALID_REQUEST, NoRouteFound),
    (ProviderStatusError.OVER_QUOTA, ProviderQuotaError),
    (ProviderStatusError.ACCESS_DENIED, ProviderAuthError),
    (ProviderStatusError.UNKNOWN, NetworkError),
])
def test_provider_status_maps_to_error(status, error_cls):
    gen = make_generator(FakeProvider(error=ProviderStatusError(status)))
    result = gen.generate(RouteGenerationOptions(start_location=START))
    assert result.route is None
    assert type(result.error) is error_cls


def test_network_error_passes_through():
    error = NetworkError("timed out")
    result = make_generator(FakeProvider(error=error)).generate(
        RouteGenerationOptions(start_location=START)
    )
    assert result.error is error


def test_unexpected_exception_becomes_network_error():
    result = make_generator(FakeProvider(error=KeyError("routes"))).generate(
        RouteGenerationOptions(start_location=START)
    )
    assert isinstance(result.error, NetworkError)


def test_alternatives_cycle_complexity_with_delay():
    sleeps = []
    gen = make_generator(sleep=sleeps.append)
    results = gen.generate_alternatives(RouteGenerationOptions(start_location=START), count=4)

    assert [r.route.complexity for r in results] == ["simple", "medium", "complex", "simple"]
    assert [len(r.route.waypoints) for r in results] == [2, 4, 6, 2]
    assert sleeps == [CONFIG["alternatives_delay"]] * 3


def test_alternatives_keep_failures_in_place():
    gen = make_generator(FakeProvider(error=ProviderStatusError(ProviderStatusError.ZERO_RESULTS)))
    results = gen.generate_alternatives(RouteGenerationOptions(start_location=START), count=2)
    assert len(results) == 2
    assert all(isinstance(r.error, NoRouteFound) for r in results)
