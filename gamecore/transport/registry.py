"""
Transport registry: fans bus traffic out to every active adapter.

Adapters are called in registration order. An adapter that raises is
logged and skipped for that push only; it stays registered.
"""

import logging
from typing import Iterable

from gamecore.transport.base import TransportAdapter

logger = logging.getLogger(__name__)


class TransportRegistry:
    """Holds the host's adapters and pushes to all of them."""

    def __init__(self) -> None:
        self._adapters: list[TransportAdapter] = []

    def register(self, adapter: TransportAdapter) -> None:
        self._adapters.append(adapter)
        logger.info(f"Registered transport: {adapter.name}")

    @property
    def transport_names(self) -> list[str]:
        return [a.name for a in self._adapters]

    @property
    def count(self) -> int:
        return len(self._adapters)

    async def connect_all(self) -> None:
        await self._fan_out("connect")

    async def disconnect_all(self) -> None:
        await self._fan_out("disconnect")

    async def push_event(self, event: dict) -> None:
        await self._fan_out("push_event", event)

    async def push_events(self, events: Iterable[dict]) -> int:
        """Push a batch in order. Returns how many events were pushed."""
        pushed = 0
        for event in events:
            await self.push_event(event)
            pushed += 1
        return pushed

    async def push_clock(self, state: dict) -> None:
        await self._fan_out("push_clock", state)

    async def _fan_out(self, method: str, *args) -> None:
        for adapter in self._adapters:
            try:
                await getattr(adapter, method)(*args)
            except Exception as e:
                logger.warning(f"Transport {adapter.name} {method} failed: {e}")
