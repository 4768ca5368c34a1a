"""
Main entry point for the game engine host.

Loads mission definitions, wires the clock, scheduler, notification bus,
trigger engine, scripted-event executor and duration engine together,
and runs the frame loop. Each frame: tick the clock (which advances
file-operation progress), then forward produced events to transports.
"""

import asyncio
import logging
import signal
from datetime import datetime, timezone

import click

from gamecore import config
from gamecore.core.clock import GameClock
from gamecore.core.event_bus import NotificationBus
from gamecore.core.scheduler import AsyncioHostTimer, VirtualClockScheduler
from gamecore.missions.loader import MissionDefinition, MissionLoader
from gamecore.missions.objectives import StateSnapshot
from gamecore.missions.scripted_events import ScriptedEventExecutor
from gamecore.missions.trigger_engine import TriggerEngine
from gamecore.transfers.bandwidth import NetworkThroughputProvider
from gamecore.transfers.duration_engine import DurationEngine, parse_size_to_mb
from gamecore.transport.console_adapter import ConsoleAdapter
from gamecore.transport.registry import TransportRegistry
from gamecore.transport.websocket_adapter import WebSocketAdapter
from scripts.health_server import HealthServer

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Events relayed to presentation layers
FORWARDED_EVENTS = (
    "missionAvailable",
    "objectiveComplete",
    "missionObjectivesComplete",
    "missionComplete",
    "scriptedEventStart",
    "scriptedEventProgress",
    "scriptedEventComplete",
    "storyEventTriggered",
    "operationProgress",
    "fileOperationComplete",
    "forceNetworkDisconnect",
    "missionStatusChanged",
    "revokeNAREntry",
    "sabotageFileOperation",
    "playerControlBlocked",
)


class ObservedState:
    """
    Game state reconstructed from bus events, for objective snapshots.

    Stands in for the UI/state layer when the engine runs headless.
    """

    def __init__(self, bus: NotificationBus, duration_engine: DurationEngine) -> None:
        self._duration_engine = duration_engine
        self.active_connections: list[dict] = []
        self.last_scan_results: dict | None = None
        self.file_manager_connections: list[dict] = []
        self.data_recovery_connections: list[dict] = []
        self.last_file_operation: dict = {}
        self.nar_entries: list[dict] = []

        bus.on("networkConnected", self._on_connected)
        bus.on("networkDisconnected", self._on_disconnected)
        bus.on("forceNetworkDisconnect", self._on_disconnected)
        bus.on("networkScanComplete", self._on_scan)
        bus.on("fileSystemConnected", self._on_file_system)
        bus.on("fileOperationComplete", lambda d: setattr(self, "last_file_operation", dict(d)))
        bus.on("narEntryAdded", lambda d: self.nar_entries.append(dict(d)))
        bus.on("revokeNAREntry", self._on_revoke)

    def _on_connected(self, data: dict) -> None:
        self.active_connections.append(dict(data))

    def _on_disconnected(self, data: dict) -> None:
        network_id = data.get("networkId")
        self.active_connections = [c for c in self.active_connections if c.get("networkId") != network_id]

    def _on_file_system(self, data: dict) -> None:
        if data.get("app") == "dataRecoveryTool":
            self.data_recovery_connections.append(dict(data))
        else:
            self.file_manager_connections.append(dict(data))

    def _on_scan(self, data: dict) -> None:
        if data:
            self.last_scan_results = dict(data)

    def _on_revoke(self, data: dict) -> None:
        for entry in self.nar_entries:
            if entry.get("networkId") == data.get("networkId"):
                entry["authorized"] = False

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            active_connections=list(self.active_connections),
            last_scan_results=self.last_scan_results,
            file_manager_connections=list(self.file_manager_connections),
            data_recovery_connections=list(self.data_recovery_connections),
            last_file_operation=dict(self.last_file_operation),
            file_operation_counts=self._duration_engine.get_operation_counts(),
            nar_entries=list(self.nar_entries),
        )


def accept_mission(
    trigger_engine: TriggerEngine,
    duration_engine: DurationEngine,
    state: ObservedState,
    mission_id: str | None,
) -> MissionDefinition | None:
    """Start tracking a fresh copy of an accepted mission. Operation counts restart from zero."""
    mission = trigger_engine.get_mission(mission_id)
    if mission is None:
        logger.warning(f"Accepted unknown mission {mission_id}")
        return None
    duration_engine.reset_operation_counts()
    tracked = mission.fresh_copy()
    trigger_engine.track(tracked, state.snapshot)
    return tracked


async def engine_loop(
    clock: GameClock,
    registry: TransportRegistry,
    outbox: asyncio.Queue,
    tick_interval_s: float,
    stop_event: asyncio.Event,
) -> None:
    """Frame loop. Runs until stop_event is set."""
    tick_count = 0
    ticks_per_clock_push = max(1, int(round(1.0 / tick_interval_s)))

    while not stop_event.is_set():
        if clock.is_running:
            clock.tick()

        batch = []
        while not outbox.empty():
            batch.append(outbox.get_nowait())
        await registry.push_events(batch)

        tick_count += 1
        if tick_count % ticks_per_clock_push == 0:
            await registry.push_clock({
                "sim_time": clock.get_sim_time().isoformat(),
                "speed": clock.speed,
                "running": clock.is_running,
            })

        await asyncio.sleep(tick_interval_s)


async def run(
    missions_path: str, speed: float, port: int, health_port: int,
    tick_rate: float, transport: str, start_event: str,
) -> None:
    print(f"\nGame Engine Host v{VERSION}")
    print("=" * 40)

    transport_names = [t.strip() for t in transport.split(",") if t.strip()]

    missions = MissionLoader().load_path(missions_path)
    print(f"Loaded {len(missions)} missions from {missions_path}")

    clock = GameClock(start_time=datetime.now(timezone.utc), speed=speed)
    scheduler = VirtualClockScheduler(AsyncioHostTimer(), speed=speed)
    clock.add_speed_listener(scheduler.reschedule_all)

    bus = NotificationBus()
    throughput = NetworkThroughputProvider()
    duration_engine = DurationEngine(bus, throughput)
    clock.add_tick_callback(duration_engine.tick)

    completed: list[str] = []
    trigger_engine = TriggerEngine(bus, scheduler, completed_missions=lambda: completed)

    def on_objectives_complete(data: dict) -> None:
        completed.append(data["missionId"])
        trigger_engine.untrack()
        bus.emit("missionComplete", {"missionId": data["missionId"]})

    bus.on("missionObjectivesComplete", on_objectives_complete)

    executor = ScriptedEventExecutor(bus, scheduler)
    executor.start()
    state = ObservedState(bus, duration_engine)

    bus.on("missionAccepted", lambda data: accept_mission(
        trigger_engine, duration_engine, state, data.get("missionId"),
    ))

    def on_file_operation_started(data: dict) -> None:
        duration_engine.start_operation(
            data.get("operation", "copy"),
            parse_size_to_mb(data.get("size", 1.0)),
            data.get("networkId"),
            clock.get_sim_time(),
            file_name=data.get("fileName"),
            source_network_id=data.get("sourceNetworkId"),
        )

    def on_throughput_changed(data: dict) -> None:
        network_id = data.get("networkId")
        throughput.set_limit(network_id, data.get("throughputMbps"))
        duration_engine.refresh_network(network_id, clock.get_sim_time())

    bus.on("fileOperationStarted", on_file_operation_started)
    bus.on("networkThroughputChanged", on_throughput_changed)

    outbox: asyncio.Queue = asyncio.Queue()
    for event_type in FORWARDED_EVENTS:
        bus.on(event_type, lambda data, et=event_type: outbox.put_nowait({
            "type": et,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }))

    registry = TransportRegistry()
    if "console" in transport_names:
        registry.register(ConsoleAdapter())
    if "ws" in transport_names:
        registry.register(WebSocketAdapter(bus, clock, host=config.WS_HOST, port=port))
        print(f"WebSocket server on ws://{config.WS_HOST}:{port}")
    await registry.connect_all()

    def health_status() -> dict:
        return {
            "sim_time": clock.get_sim_time().isoformat(),
            "speed": clock.speed,
            "pending_timers": scheduler.pending_count,
            "active_operations": len(duration_engine.active_operations),
            "missions_registered": trigger_engine.registered_count,
            "tracked_mission": trigger_engine.get_tracking_status(),
            "events_in_history": len(bus.get_history(config.EVENT_HISTORY_SIZE)),
            "subscriptions": bus.get_subscriptions(),
            "transports": registry.transport_names,
        }

    health = HealthServer(port=health_port, status_provider=health_status, host=config.WS_HOST)
    await health.start()

    trigger_engine.start(missions)
    clock.start()
    bus.emit(start_event, {})
    print(f"\nEngine running (speed: {speed}x). Press Ctrl+C to stop\n")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine_loop(clock, registry, outbox, 1.0 / tick_rate, stop)

    print("\nShutting down...")
    clock.pause()
    scheduler.clear()
    trigger_engine.reset()
    executor.stop()
    print(f"Game time elapsed: {clock.get_elapsed().total_seconds() / 60:.1f} minutes")
    await registry.disconnect_all()
    await health.stop()
    print("Engine stopped")


@click.command()
@click.option("--missions", "-m", "missions_path", default=config.MISSIONS_PATH, help="Mission YAML file or directory")
@click.option("--speed", default=1.0, help="Game speed multiplier (1, 10, 100)")
@click.option("--port", default=config.WS_PORT, help="WebSocket server port")
@click.option("--health-port", default=config.HEALTH_PORT, help="Health endpoint port")
@click.option("--tick-rate", default=config.TICK_RATE, help="Frames per second (real-time)")
@click.option("--transport", default="ws,console", help="Comma-separated transports (ws,console)")
@click.option("--start-event", default="gameStart", help="Event emitted once the engine is up")
def main(
    missions_path: str, speed: float, port: int, health_port: int,
    tick_rate: float, transport: str, start_event: str,
) -> None:
    """Run the game engine host: virtual-time missions, triggers and transfers."""
    if speed <= 0:
        raise click.BadParameter("speed must be positive", param_hint="--speed")
    asyncio.run(run(missions_path, speed, port, health_port, tick_rate, transport, start_event))


if __name__ == "__main__":
    main()
