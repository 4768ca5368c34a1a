"""
Duration engine for long-running simulated operations.

File operations take game time proportional to their size and the
throughput of the network they run over. Progress is polled from the host
loop with tick(now). If throughput changes while an operation is in
flight, the data still to move is re-timed at the new rate.
"""

import itertools
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from gamecore.core.event_bus import NotificationBus
from gamecore.transfers.bandwidth import (
    NetworkThroughputProvider,
    ThroughputProvider,
    calculate_transfer_speed,
    resolve_throughput,
)

logger = logging.getLogger(__name__)

# Relative cost per MB moved. Copy only duplicates a reference.
OPERATION_MULTIPLIERS = {"repair": 2.0, "delete": 0.5, "paste": 1.5}

MIN_DURATION_MS = 2000.0  # progress must stay visible
MIN_REMAINING_MS = 500.0

COPY_BASE_MS = 200.0
COPY_MS_PER_MB = 3.7
COPY_MAX_MS = 4000.0

RECALC_MAX_PROGRESS = 95.0
THROUGHPUT_HYSTERESIS = 0.05
PROGRESS_STEP = 10

_SIZE_RE = re.compile(r"([0-9.]+)\s*(KB|MB|GB)", re.IGNORECASE)


def parse_size_to_mb(size: str | float | int) -> float:
    """'2.5 KB' -> 0.00244, '150 MB' -> 150. Unparseable sizes count as 1 MB."""
    if isinstance(size, (int, float)):
        return float(size)
    match = _SIZE_RE.search(size or "")
    if not match:
        return 1.0
    value = float(match.group(1))
    unit = match.group(2).upper()
    if unit == "KB":
        return value / 1024
    if unit == "GB":
        return value * 1024
    return value


def compute_duration(size_mb: float, kind: str, throughput_mbps: float | None) -> float:
    """Game-time duration in ms. Baseline: 1 MB at 50 Mbps takes about 1000 ms."""
    if kind == "copy":
        return min(COPY_MAX_MS, COPY_BASE_MS + size_mb * COPY_MS_PER_MB)
    rate = calculate_transfer_speed(resolve_throughput(throughput_mbps))
    multiplier = OPERATION_MULTIPLIERS.get(kind, 1.0)
    return max(MIN_DURATION_MS, size_mb / rate * multiplier * 1000)


def _elapsed_ms(start: datetime, now: datetime) -> float:
    return max(0.0, (now - start).total_seconds() * 1000)


@dataclass
class ActiveOperation:
    """A file operation in flight. Duration and throughput change only on recalculation."""
    id: str
    kind: str
    size_mb: float
    start_time: datetime
    duration_ms: float
    throughput_mbps: float
    network_id: str | None = None
    file_name: str | None = None
    reported_progress: int = 0

    def elapsed_ms(self, now: datetime) -> float:
        return _elapsed_ms(self.start_time, now)

    def progress(self, now: datetime) -> float:
        if self.duration_ms <= 0:
            return 100.0
        return min(100.0, self.elapsed_ms(now) / self.duration_ms * 100)

    def to_dict(self) -> dict:
        return {
            "operationId": self.id,
            "operation": self.kind,
            "sizeMB": self.size_mb,
            "startTime": self.start_time.isoformat(),
            "durationMs": self.duration_ms,
            "throughputMbps": self.throughput_mbps,
            "networkId": self.network_id,
            "fileName": self.file_name,
        }


class DurationEngine:
    """Times file operations and reports progress/completion on the bus."""

    def __init__(
        self,
        bus: NotificationBus,
        throughput_provider: ThroughputProvider | None = None,
    ) -> None:
        self._bus = bus
        self._provider = throughput_provider or NetworkThroughputProvider()
        self._operations: dict[str, ActiveOperation] = {}
        self._counts: dict[str, int] = {}
        self._last_now: datetime | None = None
        self._ids = itertools.count(1)

    @property
    def active_operations(self) -> list[ActiveOperation]:
        return list(self._operations.values())

    def get_operation(self, operation_id: str) -> ActiveOperation | None:
        return self._operations.get(operation_id)

    def get_operation_counts(self) -> dict[str, int]:
        """Cumulative completed operations per kind."""
        return dict(self._counts)

    def reset_operation_counts(self) -> None:
        self._counts.clear()

    def start_operation(
        self,
        kind: str,
        size_mb: float,
        network_id: str | None,
        now: datetime,
        file_name: str | None = None,
        source_network_id: str | None = None,
        operation_id: str | None = None,
    ) -> ActiveOperation:
        """
        Begin timing an operation.

        Non-copy operations share their network's bandwidth equally with the
        operations already pending on it. Cross-network pastes run at the
        slower side's rate.
        """
        joining = 0 if kind == "copy" else 1
        throughput = resolve_throughput(
            self._provider.get_available(network_id, self._sharing(network_id) + joining)
        )
        if kind == "paste" and source_network_id and source_network_id != network_id:
            source = resolve_throughput(
                self._provider.get_available(source_network_id, self._sharing(source_network_id) + 1)
            )
            throughput = min(throughput, source)

        op = ActiveOperation(
            id=operation_id or f"{kind}-{next(self._ids)}",
            kind=kind,
            size_mb=size_mb,
            start_time=now,
            duration_ms=compute_duration(size_mb, kind, throughput),
            throughput_mbps=throughput,
            network_id=network_id,
            file_name=file_name,
        )
        self._operations[op.id] = op
        logger.debug(f"Started {kind} {op.id}: {size_mb:.2f}MB @ {throughput}Mbps -> {op.duration_ms:.0f}ms")
        return op

    def cancel_operation(self, operation_id: str) -> bool:
        return self._operations.pop(operation_id, None) is not None

    def clear(self) -> None:
        self._operations.clear()

    def get_progress(self, operation_id: str, now: datetime) -> float | None:
        op = self._operations.get(operation_id)
        return op.progress(now) if op else None

    def tick(self, now: datetime) -> list[ActiveOperation]:
        """Advance progress to game time now. Returns operations that completed."""
        self._last_now = now
        completed = []
        for op in list(self._operations.values()):
            progress = op.progress(now)
            if progress >= 100:
                self._finalize(op)
                completed.append(op)
                continue
            step = int(progress // PROGRESS_STEP) * PROGRESS_STEP
            if step > op.reported_progress:
                op.reported_progress = step
                self._bus.emit("operationProgress", {
                    "operationId": op.id,
                    "operation": op.kind,
                    "progress": step,
                })
        return completed

    def recalculate_on_throughput_change(
        self,
        new_throughput_mbps: float | None,
        now: datetime | None = None,
        network_id: str | None = None,
    ) -> list[ActiveOperation]:
        """
        Re-time pending operations for a new throughput.

        Copies and operations at or beyond 95% are left alone, as are
        operations whose throughput moves by 5% or less. If network_id is
        given only operations on that network are considered. Returns the
        operations that were re-timed.
        """
        new_throughput = resolve_throughput(new_throughput_mbps)
        now = now or self._last_now
        updated = []

        for op in self._operations.values():
            if op.kind == "copy":
                continue
            if network_id is not None and op.network_id != network_id:
                continue
            if op.throughput_mbps > 0 and abs(new_throughput - op.throughput_mbps) / op.throughput_mbps <= THROUGHPUT_HYSTERESIS:
                continue

            elapsed = op.elapsed_ms(now) if now else 0.0
            progress = min(100.0, elapsed / op.duration_ms * 100) if op.duration_ms > 0 else 100.0
            if progress >= RECALC_MAX_PROGRESS:
                continue

            remaining_mb = op.size_mb * (1 - progress / 100)
            multiplier = OPERATION_MULTIPLIERS.get(op.kind, 1.0)
            new_remaining = max(
                MIN_REMAINING_MS,
                remaining_mb / calculate_transfer_speed(new_throughput) * multiplier * 1000,
            )
            logger.debug(
                f"Re-timing {op.id}: {progress:.1f}% done, {op.throughput_mbps}->{new_throughput}Mbps, "
                f"remaining {new_remaining:.0f}ms"
            )
            op.duration_ms = elapsed + new_remaining
            op.throughput_mbps = new_throughput
            updated.append(op)

        return updated

    def refresh_network(self, network_id: str, now: datetime | None = None) -> list[ActiveOperation]:
        """Re-read a network's throughput from the provider and re-time its operations."""
        return self.recalculate_on_throughput_change(
            self._provider.get_available(network_id, self._sharing(network_id)), now, network_id=network_id,
        )

    def _sharing(self, network_id: str | None) -> int:
        """Pending operations competing for a network's bandwidth."""
        return sum(
            1 for op in self._operations.values()
            if op.kind != "copy" and op.network_id == network_id
        )

    def _finalize(self, op: ActiveOperation) -> None:
        self._operations.pop(op.id, None)
        self._counts[op.kind] = self._counts.get(op.kind, 0) + 1
        self._bus.emit("fileOperationComplete", {
            "operation": op.kind,
            "filesAffected": 1,
            "fileNames": [op.file_name] if op.file_name else [],
            "operationId": op.id,
            "networkId": op.network_id,
        })
