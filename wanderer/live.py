"""WebSocket bridge: location fixes pushed from a phone or browser, state pushed back."""

import asyncio
import json
import queue
import threading
import time
from typing import Callable, Optional

import websockets

from .config import CONFIG
from .errors import LocationError
from .gps import LocationSource
from .models import Location


class WebSocketLocationSource(LocationSource):
    """Location source fed by clients sending {"type": "location", "data": {...}}.

    Every connected client also receives the engine state as
    {"type": "state", "data": {...}} whenever send_state() is called, so this
    object can be registered directly as an engine listener.
    """

    def __init__(self, host: str = "localhost", port: Optional[int] = None):
        super().__init__()
        self.host = host
        self.port = port or CONFIG["websocket_port"]
        self.location_queue: queue.Queue = queue.Queue()
        self.connected_clients: set = set()
        self.ws_thread: Optional[threading.Thread] = None
        self.ws_loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._ready = threading.Event()

    def start(self):
        """Start the WebSocket server in a background thread"""
        if self._running:
            return
        self._running = True
        self.ws_thread = threading.Thread(target=self._run_ws_server, daemon=True)
        self.ws_thread.start()
        self._ready.wait(timeout=2)
        print(f"Waiting for location updates on ws://{self.host}:{self.port}")

    def _parse_message(self, message: str) -> Optional[Location]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or data.get("type") != "location":
            return None
        loc_data = data.get("data") or {}
        try:
            location = Location.from_dict(loc_data)
        except (KeyError, TypeError):
            return None
        if location.timestamp is None:
            location.timestamp = time.time()
        return location

    def _run_ws_server(self):
        """Run the WebSocket server"""
        self.ws_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.ws_loop)

        async def handler(websocket):
            self.connected_clients.add(websocket)
            try:
                async for message in websocket:
                    location = self._parse_message(message)
                    if location:
                        self.location_queue.put(location)
            finally:
                self.connected_clients.discard(websocket)

        async def main():
            try:
                async with websockets.serve(handler, self.host, self.port):
                    self._ready.set()
                    while self._running:
                        await asyncio.sleep(0.1)
            except OSError as e:
                print(f"WebSocket server error: {e}")
                self._ready.set()

        self.ws_loop.run_until_complete(main())

    def get_current_position(self, timeout: Optional[float] = None) -> Location:
        """Block until a client pushes a location"""
        timeout = timeout or CONFIG["gps_fix_timeout"]
        try:
            location = self.location_queue.get(timeout=timeout)
        except queue.Empty:
            raise self._fail(LocationError.TIMEOUT, "no location received from clients")
        return self._accept(location)

    def _watch_loop(self, callback: Callable[[Location], None], on_error):
        # Pushed fixes are delivered as they arrive, without a poll interval
        while not self._watch_stop.is_set():
            try:
                location = self.location_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            callback(self._accept(location))

    def _send_message(self, msg_type: str, data: dict):
        """Send a message to all connected WebSocket clients"""
        if not self.connected_clients or not self.ws_loop:
            return

        message = json.dumps({"type": msg_type, "data": data}, default=str)

        async def send_to_all():
            for client in list(self.connected_clients):
                try:
                    await client.send(message)
                except websockets.ConnectionClosed:
                    self.connected_clients.discard(client)

        asyncio.run_coroutine_threadsafe(send_to_all(), self.ws_loop)

    def send_state(self, state: dict):
        """Send engine state to every client"""
        self._send_message("state", state)

    def get_status(self) -> str:
        return f"WebSocket ({len(self.connected_clients)} clients)"

    def stop(self):
        """Stop the server"""
        self.unwatch()
        self._running = False
