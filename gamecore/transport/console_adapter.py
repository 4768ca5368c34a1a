"""
Debug transport that prints game events to stdout.

Handy when running the engine headless. Clock lines are throttled to one
per min_clock_interval wall seconds.
"""

import time

from gamecore.transport.base import TransportAdapter


class ConsoleAdapter(TransportAdapter):

    def __init__(self, min_clock_interval: float = 30.0) -> None:
        self._min_clock_interval = min_clock_interval
        self._last_clock_print: float | None = None

    @property
    def name(self) -> str:
        return "console"

    async def connect(self) -> None:
        print("[CONSOLE] Printing game events")

    async def disconnect(self) -> None:
        print("[CONSOLE] Stopped")

    async def push_event(self, event: dict) -> None:
        print(f"[{event.get('timestamp', '--')}] {self.describe_event(event)}")

    async def push_clock(self, state: dict) -> None:
        now = time.monotonic()
        if self._last_clock_print is not None and now - self._last_clock_print < self._min_clock_interval:
            return
        self._last_clock_print = now
        running = "running" if state.get("running", True) else "paused"
        print(f"[CLOCK] {state.get('sim_time')} @ {state.get('speed')}x ({running})")
