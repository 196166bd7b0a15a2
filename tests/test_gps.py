import json
import subprocess
import threading
from unittest.mock import MagicMock

import pytest

from wanderer.errors import LocationError, LocationUnavailable
from wanderer.gps import FixedLocation, GPSPlayback, GPSRecorder, TermuxGPS
from wanderer.live import WebSocketLocationSource


def write_trace(path, entries):
    path.write_text(json.dumps({"recorded_at": "2026-01-01T09:00:00", "trace": entries}))
    return str(path)


@pytest.fixture()
def trace_file(tmp_path):
    return write_trace(tmp_path / "trace.json", [
        {"elapsed": 0.0, "location": {"lat": 51.5, "lng": -0.12, "accuracy": 4.0}, "status": "GPS OK"},
        {"elapsed": 3.0, "location": None, "status": "GPS: 1 consecutive failures"},
        {"elapsed": 6.0, "location": {"lat": 51.5001, "lon": -0.12}, "status": "GPS OK"},
    ])


def test_playback_replays_trace_in_order(trace_file):
    playback = GPSPlayback(trace_file)

    first = playback.get_current_position()
    assert (first.lat, first.lng, first.accuracy) == (51.5, -0.12, 4.0)

    with pytest.raises(LocationError) as exc_info:
        playback.get_current_position()
    assert exc_info.value.reason == LocationError.UNAVAILABLE
    assert playback.consecutive_failures == 1

    third = playback.get_current_position()
    assert third.lng == -0.12
    assert playback.consecutive_failures == 0
    assert playback.is_finished()
    assert playback.get_location() is None


def test_playback_interval_follows_recorded_timing(trace_file):
    playback = GPSPlayback(trace_file, speed=2.0)
    playback.get_current_position()
    assert playback.get_poll_interval() == pytest.approx(1.5)


def test_location_error_is_location_unavailable():
    error = LocationError(LocationError.PERMISSION_DENIED)
    assert isinstance(error, LocationUnavailable)
    assert error.to_dict() == {
        "kind": "location_unavailable",
        "message": "Location permission denied",
        "reason": "permission_denied",
    }


def test_recorder_records_fixes_and_failures(trace_file, tmp_path):
    out = tmp_path / "recorded.json"
    recorder = GPSRecorder(GPSPlayback(trace_file), str(out))

    recorder.get_current_position()
    assert recorder.get_location() is None
    recorder.get_current_position()
    recorder.save()

    saved = json.loads(out.read_text())
    assert [e["location"] is not None for e in saved["trace"]] == [True, False, True]
    assert saved["trace"][0]["location"]["lat"] == 51.5
    assert recorder.is_finished()


def test_recorded_trace_plays_back(trace_file, tmp_path):
    out = tmp_path / "again.json"
    recorder = GPSRecorder(FixedLocation(40.0, -73.0), str(out))
    recorder.get_current_position()
    recorder.save()

    location = GPSPlayback(str(out)).get_current_position()
    assert (location.lat, location.lng) == (40.0, -73.0)


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_termux_parses_fix(monkeypatch):
    run = MagicMock(return_value=completed(stdout=json.dumps(
        {"latitude": 51.5, "longitude": -0.12, "accuracy": 8.5}
    )))
    monkeypatch.setattr("wanderer.gps.subprocess.run", run)

    location = TermuxGPS().get_current_position(timeout=5)

    assert (location.lat, location.lng, location.accuracy) == (51.5, -0.12, 8.5)
    assert run.call_args.kwargs["timeout"] == 5


@pytest.mark.parametrize("outcome,reason", [
    (subprocess.TimeoutExpired("termux-location", 10), LocationError.TIMEOUT),
    (FileNotFoundError(), LocationError.UNAVAILABLE),
    (completed(returncode=1, stderr="Permission denied for location"), LocationError.PERMISSION_DENIED),
    (completed(returncode=1, stderr="provider disabled"), LocationError.UNAVAILABLE),
    (completed(stdout=""), LocationError.UNAVAILABLE),
    (completed(stdout="{not json"), LocationError.UNAVAILABLE),
])
def test_termux_failures(monkeypatch, outcome, reason):
    if isinstance(outcome, Exception):
        run = MagicMock(side_effect=outcome)
    else:
        run = MagicMock(return_value=outcome)
    monkeypatch.setattr("wanderer.gps.subprocess.run", run)
    gps = TermuxGPS()

    with pytest.raises(LocationError) as exc_info:
        gps.get_current_position()
    assert exc_info.value.reason == reason
    assert gps.consecutive_failures == 1
    assert "1 consecutive failures" in gps.get_status()


def test_watch_delivers_fixes_until_unwatched(monkeypatch):
    monkeypatch.setattr(FixedLocation, "get_poll_interval", lambda self: 0.01)
    source = FixedLocation(51.5, -0.12)
    received = []
    got_three = threading.Event()

    def on_fix(location):
        received.append(location)
        if len(received) >= 3:
            got_three.set()

    source.watch(on_fix)
    assert got_three.wait(timeout=2)
    source.unwatch()
    assert not source.is_watching()
    assert all(loc.lat == 51.5 for loc in received)


def test_watch_reports_errors(trace_file, monkeypatch):
    monkeypatch.setattr(GPSPlayback, "get_poll_interval", lambda self: 0.01)
    playback = GPSPlayback(trace_file)
    fixes, errors = [], []
    playback.watch(fixes.append, on_error=errors.append)
    playback._watch_thread.join(timeout=2)

    assert len(fixes) == 2
    assert [e.reason for e in errors] == [LocationError.UNAVAILABLE]


@pytest.mark.parametrize("message,expected", [
    ('{"type": "location", "data": {"lat": 51.5, "lng": -0.12, "accuracy": 6}}', (51.5, -0.12)),
    ('{"type": "location", "data": {"lat": 51.5, "lon": -0.12}}', (51.5, -0.12)),
    ('{"type": "state", "data": {}}', None),
    ('{"type": "location", "data": {"lat": 51.5}}', None),
    ("not json", None),
])
def test_websocket_message_parsing(message, expected):
    source = WebSocketLocationSource(port=0)
    location = source._parse_message(message)
    if expected is None:
        assert location is None
    else:
        assert location.as_tuple() == expected
        assert location.timestamp is not None


def test_websocket_source_serves_queued_fixes():
    source = WebSocketLocationSource(port=0)
    pushed = source._parse_message('{"type": "location", "data": {"lat": 1.0, "lng": 2.0}}')
    source.location_queue.put(pushed)

    assert source.get_current_position(timeout=0.1) is pushed
    with pytest.raises(LocationError) as exc_info:
        source.get_current_position(timeout=0.01)
    assert exc_info.value.reason == LocationError.TIMEOUT
