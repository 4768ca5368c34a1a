"""
Transport adapter interface.

An adapter carries bus events ({type, timestamp, data}) and clock state
({sim_time, speed, running}) from the host loop to one presentation
layer. Adapters own their serialization and delivery; the host never
waits on a slow client beyond a single push.
"""

from abc import ABC, abstractmethod


class TransportAdapter(ABC):
    """One outbound channel for game events."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel (start a server, attach to stdout, ...)."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def push_event(self, event: dict) -> None:
        """Deliver one forwarded bus event."""
        ...

    @abstractmethod
    async def push_clock(self, state: dict) -> None:
        """Deliver the current game clock state."""
        ...

    @staticmethod
    def describe_event(event: dict) -> str:
        """'missionAvailable: missionId=m1' style one-liner for logs and consoles."""
        data = event.get("data") or {}
        fields = ", ".join(
            f"{k}={v}" for k, v in data.items() if isinstance(v, (str, int, float, bool))
        )
        return f"{event.get('type', 'event')}: {fields}" if fields else str(event.get("type", "event"))
