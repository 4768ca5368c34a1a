"""
Game clock with a configurable speed multiplier.

The clock maps wall-clock time to virtual game time. It can run at 1x,
10x, 100x or any positive multiplier, and supports pause/resume. Systems
that need "now" in game time (duration tracking, the host loop) query
this clock instead of the wall clock.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

logger = logging.getLogger(__name__)


class GameClock:
    """
    Maps wall-clock time to game time.

    Not async: game time is calculated from the wall clock when queried.
    Speed listeners are notified after every accepted speed change, which
    is how pending scheduler entries are kept in step with the clock.
    """

    def __init__(self, start_time: datetime | None = None, speed: float = 1.0) -> None:
        if speed <= 0:
            raise ValueError(f"Invalid clock speed: {speed}")
        self._start_time = start_time or datetime.now(timezone.utc)
        self._speed = speed
        self._running = False
        self._wall_start: float | None = None
        self._accumulated: timedelta = timedelta()
        self._tick_callbacks: list[Callable[[datetime], None]] = []
        self._speed_listeners: list[Callable[[float], None]] = []

    @property
    def speed(self) -> float:
        """Current speed multiplier."""
        return self._speed

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def start_time(self) -> datetime:
        return self._start_time

    def start(self) -> None:
        """Begin advancing time."""
        if self._running:
            return
        self._running = True
        self._wall_start = time.monotonic()

    def pause(self) -> None:
        """Pause time advancement. Accumulates elapsed game time."""
        if not self._running:
            return
        self._accumulated = self.get_elapsed()
        self._running = False
        self._wall_start = None

    def resume(self) -> None:
        self.start()

    def reset(self) -> None:
        """Reset to elapsed = 0. Clock is left paused."""
        self._running = False
        self._wall_start = None
        self._accumulated = timedelta()

    def set_speed(self, multiplier: float) -> bool:
        """Change speed. Returns False (and changes nothing) for a non-positive multiplier."""
        if multiplier is None or multiplier <= 0:
            logger.error(f"Ignoring invalid clock speed {multiplier!r}")
            return False
        if self._running:
            self._accumulated = self.get_elapsed()
            self._wall_start = time.monotonic()
        self._speed = multiplier
        for listener in self._speed_listeners:
            listener(multiplier)
        return True

    def get_elapsed(self) -> timedelta:
        """Elapsed game time since start."""
        if not self._running or self._wall_start is None:
            return self._accumulated
        wall_elapsed = time.monotonic() - self._wall_start
        return self._accumulated + timedelta(seconds=wall_elapsed * self._speed)

    def get_sim_time(self) -> datetime:
        """Current game datetime."""
        return self._start_time + self.get_elapsed()

    def add_speed_listener(self, listener: Callable[[float], None]) -> None:
        """Register a function called with the new multiplier on each speed change."""
        self._speed_listeners.append(listener)

    def add_tick_callback(self, callback: Callable[[datetime], None]) -> None:
        """Register a function to be called on each tick."""
        self._tick_callbacks.append(callback)

    def tick(self) -> None:
        """Process one frame: call all tick callbacks with the current game time."""
        now = self.get_sim_time()
        for cb in self._tick_callbacks:
            cb(now)
