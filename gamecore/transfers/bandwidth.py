"""
Network throughput lookup.

Operations ask a ThroughputProvider how fast a network is. The effective
rate is the network's connection limit capped by the player's adapter
speed. Concurrent operations on one network share that rate equally.
Unknown networks and non-positive values fall back to the default.
"""

import logging
from abc import ABC, abstractmethod

from gamecore import config

logger = logging.getLogger(__name__)


def resolve_throughput(mbps: float | None, default: float | None = None) -> float:
    """Return mbps if usable, otherwise the safe default rate."""
    fallback = default if default is not None else config.DEFAULT_THROUGHPUT_MBPS
    if mbps is None or mbps <= 0:
        return fallback
    return float(mbps)


def calculate_transfer_speed(mbps: float) -> float:
    """Mbps -> MB/s."""
    return mbps / 8


def calculate_available_bandwidth(
    adapter_speed: float, connection_limit: float, active_operations: int = 0,
) -> float:
    """
    Bandwidth each operation gets on a connection, in Mbps.

    The connection runs at its limit capped by the adapter speed, split
    equally between concurrent operations.
    """
    effective = min(adapter_speed, connection_limit)
    if active_operations <= 0:
        return effective
    return effective / active_operations


class ThroughputProvider(ABC):
    @abstractmethod
    def get_throughput(self, network_id: str | None) -> float:
        """Throughput in Mbps for a network."""
        ...

    def get_available(self, network_id: str | None, active_operations: int = 0) -> float:
        """Per-operation throughput when active_operations share the network."""
        rate = self.get_throughput(network_id)
        return calculate_available_bandwidth(rate, rate, active_operations)


class NetworkThroughputProvider(ThroughputProvider):
    """Per-network connection limits capped by the adapter speed."""

    def __init__(
        self,
        limits: dict[str, float] | None = None,
        adapter_speed: float | None = None,
        default: float | None = None,
    ) -> None:
        self._limits: dict[str, float] = dict(limits or {})
        self._adapter_speed = adapter_speed or config.ADAPTER_SPEED_MBPS
        self._default = default or config.DEFAULT_THROUGHPUT_MBPS

    @property
    def adapter_speed(self) -> float:
        return self._adapter_speed

    def set_adapter_speed(self, mbps: float) -> None:
        self._adapter_speed = resolve_throughput(mbps, self._adapter_speed)

    def set_limit(self, network_id: str, mbps: float) -> None:
        self._limits[network_id] = mbps

    def remove_limit(self, network_id: str) -> None:
        self._limits.pop(network_id, None)

    def get_throughput(self, network_id: str | None) -> float:
        return self.get_available(network_id)

    def get_available(self, network_id: str | None, active_operations: int = 0) -> float:
        limit = resolve_throughput(self._limits.get(network_id), self._default)
        return calculate_available_bandwidth(self._adapter_speed, limit, active_operations)
