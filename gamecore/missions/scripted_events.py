"""
Scripted event executor.

Runs the actions of a scripted event (sabotage, forced disconnects,
mission status changes) once the trigger engine announces it with
scriptedEventStart. Actions run one after another in virtual time and
are expressed purely as bus events for other systems to apply.
"""

import logging
from typing import Callable

from gamecore.core.event_bus import NotificationBus
from gamecore.core.scheduler import VirtualClockScheduler

logger = logging.getLogger(__name__)

DEFAULT_SABOTAGE_FILE_COUNT = 8
DEFAULT_DISCONNECT_REASON = "Network administrator terminated connection"
DEFAULT_REVOKE_REASON = "Access credentials revoked by network administrator"


class ScriptedEventExecutor:
    """Executes scriptedEventStart payloads and reports scriptedEventComplete."""

    def __init__(self, bus: NotificationBus, scheduler: VirtualClockScheduler) -> None:
        self._bus = bus
        self._scheduler = scheduler
        self._player_control_blocked = False
        self._running: set[tuple[str, str]] = set()
        self._timers: set[int] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> None:
        """Subscribe to the bus. Idempotent."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._bus.on("scriptedEventStart", self._on_scripted_event_start),
            self._bus.on("playerControlBlocked", self._on_player_control),
        ]

    def stop(self) -> None:
        """Unsubscribe and abandon any events still in progress."""
        for unsub in self._unsubscribers:
            unsub()
        self._unsubscribers = []
        for handle in self._timers:
            self._scheduler.cancel(handle)
        self._timers.clear()
        self._running.clear()
        self._player_control_blocked = False

    @property
    def is_player_control_blocked(self) -> bool:
        return self._player_control_blocked

    @property
    def running_events(self) -> list[tuple[str, str]]:
        return sorted(self._running)

    def _on_player_control(self, payload: dict) -> None:
        self._player_control_blocked = bool(payload.get("blocked"))

    def _on_scripted_event_start(self, payload: dict) -> None:
        self.execute(payload.get("missionId"), payload.get("eventId"), payload.get("actions") or [])

    def execute(self, mission_id: str, event_id: str, actions: list[dict]) -> None:
        """Run actions in order; emits scriptedEventComplete after the last one."""
        key = (mission_id, event_id)
        self._running.add(key)
        logger.info(f"Executing scripted event {event_id} ({len(actions)} actions)")

        def finish() -> None:
            self._running.discard(key)
            self._bus.emit("scriptedEventComplete", {"missionId": mission_id, "eventId": event_id})

        self._run_actions(list(actions), 0, mission_id, event_id, finish)

    def _run_actions(
        self, actions: list[dict], index: int,
        mission_id: str, event_id: str, done: Callable[[], None],
    ) -> None:
        if index >= len(actions):
            done()
            return

        def next_action() -> None:
            self._run_actions(actions, index + 1, mission_id, event_id, done)

        action = actions[index]
        action_type = action.get("type")

        if action_type == "forceFileOperation":
            if action.get("operation") == "delete":
                self._force_file_delete(action, mission_id, event_id, next_action)
                return
            logger.warning(f"Unsupported forced file operation '{action.get('operation')}'")

        elif action_type == "forceDisconnect":
            self._bus.emit("forceNetworkDisconnect", {
                "networkId": action.get("network"),
                "reason": action.get("reason") or DEFAULT_DISCONNECT_REASON,
            })

        elif action_type == "setMissionStatus":
            self._bus.emit("missionStatusChanged", {
                "status": action.get("status"),
                "failureReason": action.get("failureReason"),
            })

        elif action_type == "revokeNAREntry":
            self._bus.emit("revokeNAREntry", {
                "networkId": action.get("network"),
                "reason": action.get("reason") or DEFAULT_REVOKE_REASON,
            })

        elif action_type == "sendMessage":
            message = action.get("message") or {}
            self._bus.emit("storyEventTriggered", {
                "storyEventId": action.get("eventId") or event_id,
                "eventId": message.get("id") or f"{event_id}-message",
                "message": message,
            })

        else:
            logger.warning(f"Unknown scripted action type: {action_type}")

        next_action()

    def _force_file_delete(
        self, action: dict, mission_id: str, event_id: str, done: Callable[[], None],
    ) -> None:
        files = action.get("files")
        if isinstance(files, list):
            file_names = list(files)
        else:
            count = files if isinstance(files, int) else DEFAULT_SABOTAGE_FILE_COUNT
            file_names = [f"file_{i + 1}.dat" for i in range(count)]
        file_count = len(file_names)
        if file_count <= 0:
            logger.info(f"Scripted event {event_id} has no files to delete")
            done()
            return
        time_per_file = (action.get("duration") or 0) / file_count
        blocks_player = action.get("playerControl") is False

        if blocks_player:
            self._bus.emit("playerControlBlocked", {"blocked": True})

        def delete_next(i: int) -> None:
            if i >= file_count:
                if blocks_player:
                    self._bus.emit("playerControlBlocked", {"blocked": False})
                done()
                return

            def on_due() -> None:
                self._bus.emit("sabotageFileOperation", {
                    "fileName": file_names[i],
                    "operation": "delete",
                    "source": "UNKNOWN",
                })
                self._bus.emit("scriptedEventProgress", {
                    "missionId": mission_id,
                    "eventId": event_id,
                    "filesDeleted": i + 1,
                    "totalFiles": file_count,
                    "progress": (i + 1) / file_count * 100,
                })
                delete_next(i + 1)

            self._schedule(on_due, time_per_file)

        delete_next(0)

    def _schedule(self, callback: Callable[[], None], delay: float) -> None:
        handle = None

        def fire() -> None:
            self._timers.discard(handle)
            callback()

        handle = self._scheduler.schedule(fire, delay)
        if handle is not None:
            self._timers.add(handle)
