"""
Virtual-time callback scheduler.

Callbacks are scheduled with a delay in virtual (game) milliseconds. The
delay is converted to real time using the speed multiplier in effect when
the callback is armed. When the speed changes, every pending callback is
re-armed so that the virtual time it still has to wait is preserved.

The scheduler never touches a concrete timer API directly. It arms host
timers through a HostTimer: AsyncioHostTimer for a running event loop,
FrameTimer for frame-driven hosts and deterministic tests.
"""

import asyncio
import heapq
import itertools
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


class HostTimer(ABC):
    """Real-time timer primitive supplied by the host loop. Units are ms."""

    @abstractmethod
    def now(self) -> float:
        """Current real time in milliseconds."""
        ...

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        """Arm a one-shot timer. Returns a handle accepted by cancel()."""
        ...

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Disarm a timer. No-op if it already fired."""
        ...


class AsyncioHostTimer(HostTimer):
    """Host timer backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay_ms) / 1000.0, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class FrameTimer(HostTimer):
    """
    Manually advanced host timer.

    Real time only moves when advance() is called, so a frame loop (or a
    test) decides exactly when callbacks fire. Callbacks due at the same
    instant fire in the order they were armed.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._queue: list[tuple[float, int]] = []
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._seq = itertools.count(1)

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> int:
        handle = next(self._seq)
        self._callbacks[handle] = callback
        heapq.heappush(self._queue, (self._now + max(0.0, delay_ms), handle))
        return handle

    def cancel(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def advance(self, real_ms: float) -> int:
        """Move real time forward, firing everything that falls due. Returns fired count."""
        target = self._now + max(0.0, real_ms)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, handle = heapq.heappop(self._queue)
            callback = self._callbacks.pop(handle, None)
            if callback is None:
                continue  # cancelled
            self._now = max(self._now, due)
            callback()
            fired += 1
        self._now = target
        return fired

    @property
    def pending_count(self) -> int:
        return len(self._callbacks)


@dataclass
class ScheduledCallback:
    """A callback waiting for its virtual delay to elapse."""
    handle: int
    virtual_delay_original: float
    virtual_delay: float  # baseline for the current segment
    real_start: float
    speed: float
    callback: Callable[[], None]
    timer_handle: Any = field(default=None, repr=False)


def _is_valid_speed(speed: Any) -> bool:
    return isinstance(speed, (int, float)) and math.isfinite(speed) and speed > 0


class VirtualClockScheduler:
    """
    Schedules callbacks in virtual time and keeps them consistent
    across speed changes.

    Every entry carries the speed it was armed with and the real time it
    was armed at. Rescheduling derives the virtual time already elapsed
    from those two values, so each entry keeps its own remaining delay
    regardless of how many speed changes happen while it waits.
    """

    def __init__(self, timer: HostTimer, speed: float = 1.0) -> None:
        if not _is_valid_speed(speed):
            raise ValueError(f"Invalid initial speed: {speed}")
        self._timer = timer
        self._speed = float(speed)
        self._entries: dict[int, ScheduledCallback] = {}
        self._next_handle = itertools.count(1)

    @property
    def speed(self) -> float:
        """Speed used when schedule() is called without one."""
        return self._speed

    @property
    def pending_count(self) -> int:
        return len(self._entries)

    def schedule(
        self,
        callback: Callable[[], None],
        virtual_delay: float,
        speed: float | None = None,
    ) -> int | None:
        """Run callback after virtual_delay game ms. Returns a handle, or None if rejected."""
        speed = self._speed if speed is None else speed
        if not _is_valid_speed(speed):
            logger.error(f"Rejected schedule with invalid speed {speed!r}")
            return None

        virtual_delay = max(0.0, float(virtual_delay or 0))
        handle = next(self._next_handle)
        entry = ScheduledCallback(
            handle=handle,
            virtual_delay_original=virtual_delay,
            virtual_delay=virtual_delay,
            real_start=self._timer.now(),
            speed=float(speed),
            callback=callback,
        )
        self._entries[handle] = entry
        self._arm(entry)
        return handle

    def cancel(self, handle: int | None) -> None:
        """Cancel a pending callback. No-op if it already fired."""
        entry = self._entries.pop(handle, None)
        if entry is not None:
            self._timer.cancel(entry.timer_handle)

    def reschedule_all(self, new_speed: float) -> None:
        """Re-arm every pending callback for a new speed multiplier."""
        if not _is_valid_speed(new_speed):
            logger.error(f"Rejected reschedule with invalid speed {new_speed!r}")
            return

        self._speed = float(new_speed)
        now = self._timer.now()
        logger.debug(f"Rescheduling {len(self._entries)} pending callbacks at {new_speed}x")

        for handle in list(self._entries):
            entry = self._entries.get(handle)
            if entry is None:
                continue  # cancelled by an earlier callback in this pass

            elapsed_virtual = (now - entry.real_start) * entry.speed
            remaining = entry.virtual_delay - elapsed_virtual
            self._timer.cancel(entry.timer_handle)

            if remaining <= 0:
                self._fire(handle)
                continue

            entry.virtual_delay = remaining
            entry.speed = float(new_speed)
            entry.real_start = now
            self._arm(entry)

    def set_speed(self, new_speed: float) -> None:
        """Alias for reschedule_all, suitable as a clock speed listener."""
        self.reschedule_all(new_speed)

    def get_remaining(self, handle: int) -> float | None:
        """Virtual ms left before the callback fires, or None if not pending."""
        entry = self._entries.get(handle)
        if entry is None:
            return None
        elapsed_virtual = (self._timer.now() - entry.real_start) * entry.speed
        return max(0.0, entry.virtual_delay - elapsed_virtual)

    def is_pending(self, handle: int) -> bool:
        return handle in self._entries

    def clear(self) -> None:
        """Cancel everything still pending."""
        for handle in list(self._entries):
            self.cancel(handle)

    def _arm(self, entry: ScheduledCallback) -> None:
        real_delay = entry.virtual_delay / entry.speed
        handle = entry.handle
        entry.timer_handle = self._timer.call_later(real_delay, lambda: self._fire(handle))

    def _fire(self, handle: int) -> None:
        entry = self._entries.pop(handle, None)
        if entry is None:
            return
        try:
            entry.callback()
        except Exception:
            logger.exception(f"Scheduled callback {handle} raised")
