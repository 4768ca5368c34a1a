"""
Trigger engine: mission registration, activation and objective progress.

Registering a mission subscribes its start trigger, scripted-event
triggers and story events on the notification bus. When a trigger fires,
the resulting effect is scheduled in virtual time and re-enters the bus
as a new event (missionAvailable, scriptedEventStart, storyEventTriggered).

Objective progress is evaluated against caller-supplied state snapshots.
Per mission the engine is either IDLE or EVALUATING; an evaluation that
is re-entered while completing an objective is ignored.
"""

import logging
from enum import Enum
from typing import Callable, Iterable

from gamecore.core.event_bus import NotificationBus
from gamecore.core.scheduler import VirtualClockScheduler
from gamecore.missions.loader import MissionDefinition, Objective, ScriptedEvent, StartTrigger, StoryEvent
from gamecore.missions.objectives import (
    StateSnapshot,
    all_objectives_complete,
    evaluate_objectives,
    objective_summary,
)

logger = logging.getLogger(__name__)

# Events after which the tracked mission's objectives are re-checked
OBJECTIVE_EVENTS = (
    "networkConnected",
    "networkScanComplete",
    "fileSystemConnected",
    "fileOperationComplete",
)


class EvaluationState(Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"


class TriggerEngine:
    """Registers mission definitions and drives their triggers and objectives."""

    def __init__(
        self,
        bus: NotificationBus,
        scheduler: VirtualClockScheduler,
        completed_missions: Callable[[], Iterable[str]] | None = None,
    ) -> None:
        """
        Args:
            bus: Bus the engine subscribes to and emits on.
            scheduler: Virtual-time scheduler for delayed effects.
            completed_missions: Returns ids of missions the player has
                already completed. Consulted for one-time missions.
        """
        self._bus = bus
        self._scheduler = scheduler
        self._completed_missions = completed_missions or (lambda: ())
        self._missions: dict[str, MissionDefinition] = {}
        self._unsubscribers: dict[str, list[Callable[[], None]]] = {}
        self._timers: dict[str, set[int]] = {}
        self._eval_states: dict[str, EvaluationState] = {}
        self._time_speed: float | None = None
        self._started = False

        self._tracked: MissionDefinition | None = None
        self._snapshot_provider: Callable[[], StateSnapshot] | None = None
        self._tracking_unsubscribers: list[Callable[[], None]] = []

    # -- lifecycle -----------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._started

    def start(self, missions: Iterable[MissionDefinition]) -> bool:
        """Register a batch of missions once. Later calls are no-ops until reset()."""
        if self._started:
            logger.info("Trigger engine already started, skipping")
            return False
        self._started = True
        count = 0
        for mission in missions:
            self.register(mission)
            count += 1
        logger.info(f"Trigger engine started with {count} missions/events")
        return True

    def reset(self) -> None:
        """Unregister everything and allow start() again."""
        self.untrack()
        for mission_id in list(self._missions):
            self.unregister(mission_id)
        self._eval_states.clear()
        self._started = False

    def set_time_speed(self, speed: float) -> None:
        """Speed used for newly scheduled effects (defaults to the scheduler's)."""
        self._time_speed = speed

    # -- registration --------------------------------------------------

    def register(self, mission: MissionDefinition) -> None:
        """Register a mission and subscribe its triggers. Replaces an existing registration."""
        if mission.mission_id in self._missions:
            self.unregister(mission.mission_id)
        self._missions[mission.mission_id] = mission

        for story_event in mission.story_events:
            self._subscribe_story_event(mission, story_event)
        if mission.start_trigger:
            self._subscribe_start_trigger(mission, mission.start_trigger)
        for scripted in mission.scripted_events:
            self._subscribe_scripted_event(mission, scripted)

    def unregister(self, mission_id: str) -> None:
        """Remove a mission with its subscriptions and pending effects. Idempotent."""
        for unsub in self._unsubscribers.pop(mission_id, []):
            unsub()
        for handle in self._timers.pop(mission_id, set()):
            self._scheduler.cancel(handle)
        self._missions.pop(mission_id, None)
        self._eval_states.pop(mission_id, None)

    def get_mission(self, mission_id: str) -> MissionDefinition | None:
        return self._missions.get(mission_id)

    def get_all_missions(self) -> list[MissionDefinition]:
        return list(self._missions.values())

    def get_missions_by_category(self, category: str) -> list[MissionDefinition]:
        return [m for m in self._missions.values() if m.category == category]

    @property
    def registered_count(self) -> int:
        return len(self._missions)

    # -- activation ----------------------------------------------------

    def activate(self, mission_id: str) -> bool:
        """Announce a mission as available. Returns True if missionAvailable was emitted."""
        mission = self._missions.get(mission_id)
        if mission is None:
            logger.error(f"Mission not found: {mission_id}")
            return False

        if mission.one_time and mission_id in set(self._completed_missions()):
            logger.info(f"One-time mission {mission_id} already completed, not re-offering")
            return False

        logger.info(f"Activating mission: {mission.title} ({mission_id})")
        self._bus.emit("missionAvailable", {"missionId": mission_id, "mission": mission})
        return True

    def _subscribe_start_trigger(self, mission: MissionDefinition, trigger: StartTrigger) -> None:
        if trigger.type != "timeSinceEvent":
            logger.warning(f"Unsupported start trigger '{trigger.type}' for {mission.mission_id}")
            return
        mission_id = mission.mission_id

        def on_trigger(payload: dict) -> None:
            if trigger.condition and not trigger.condition.matches(payload):
                logger.debug(f"Start condition not met for {mission_id}: {payload}")
                return
            logger.info(f"Trigger '{trigger.event}' fired for {mission_id}, activating in {trigger.delay}ms")
            self._schedule(mission_id, lambda: self._run_activation(mission_id), trigger.delay)

        self._add_unsubscriber(mission_id, self._bus.on(trigger.event, on_trigger))

    def _run_activation(self, mission_id: str) -> None:
        try:
            self.activate(mission_id)
        except Exception:
            logger.exception(f"Scheduled activation of {mission_id} failed")

    # -- scripted and story events -------------------------------------

    def _subscribe_scripted_event(self, mission: MissionDefinition, scripted: ScriptedEvent) -> None:
        if scripted.trigger_type != "afterObjectiveComplete":
            logger.warning(
                f"Unsupported scripted trigger '{scripted.trigger_type}' "
                f"for {mission.mission_id}/{scripted.id}"
            )
            return
        mission_id = mission.mission_id

        def on_objective_complete(payload: dict) -> None:
            if payload.get("missionId") != mission_id or payload.get("objectiveId") != scripted.objective_id:
                return
            logger.info(f"Scheduling scripted event {scripted.id} in {scripted.delay}ms")
            self._schedule(
                mission_id,
                lambda: self._execute_scripted_event(mission_id, scripted),
                scripted.delay,
            )

        self._add_unsubscriber(mission_id, self._bus.on("objectiveComplete", on_objective_complete))

    def _execute_scripted_event(self, mission_id: str, scripted: ScriptedEvent) -> None:
        self._bus.emit("scriptedEventStart", {
            "missionId": mission_id,
            "eventId": scripted.id,
            "actions": [dict(a) for a in scripted.actions],
        })

    def _subscribe_story_event(self, mission: MissionDefinition, story_event: StoryEvent) -> None:
        trigger = story_event.trigger
        if trigger.type != "timeSinceEvent":
            logger.warning(f"Unsupported story trigger '{trigger.type}' for {story_event.id}")
            return
        mission_id = mission.mission_id

        def on_trigger(payload: dict) -> None:
            if trigger.condition and not trigger.condition.matches(payload):
                return
            self._schedule(
                mission_id,
                lambda: self._bus.emit("storyEventTriggered", {
                    "storyEventId": mission_id,
                    "eventId": story_event.id,
                    "message": story_event.message,
                }),
                trigger.delay,
            )

        self._add_unsubscriber(mission_id, self._bus.on(trigger.event, on_trigger))

    # -- objectives ----------------------------------------------------

    def evaluate_objectives(self, mission: MissionDefinition, snapshot: StateSnapshot) -> Objective | None:
        """Pure check: the first incomplete objective if satisfied, else None."""
        return evaluate_objectives(mission, snapshot)

    def evaluation_state(self, mission_id: str) -> EvaluationState:
        return self._eval_states.get(mission_id, EvaluationState.IDLE)

    def check_objectives(self, mission: MissionDefinition, snapshot: StateSnapshot) -> Objective | None:
        """Evaluate and, if satisfied, complete the current objective. Returns it or None."""
        mission_id = mission.mission_id
        if self.evaluation_state(mission_id) == EvaluationState.EVALUATING:
            logger.debug(f"Ignoring re-entrant objective check for {mission_id}")
            return None

        self._eval_states[mission_id] = EvaluationState.EVALUATING
        try:
            objective = evaluate_objectives(mission, snapshot)
            if objective is not None:
                logger.info(f"Objective auto-completed: {mission_id}/{objective.id}")
                self.complete_objective(mission, objective.id)
            return objective
        finally:
            self._eval_states[mission_id] = EvaluationState.IDLE

    def complete_objective(self, mission: MissionDefinition, objective_id: str) -> bool:
        """Mark an objective complete and announce it. Returns False if unknown or already complete."""
        objective = mission.get_objective(objective_id)
        if objective is None:
            logger.warning(f"Objective {objective_id} not found in {mission.mission_id}")
            return False
        if objective.is_complete:
            return False

        objective.mark_complete()
        self._bus.emit("objectiveComplete", {
            "missionId": mission.mission_id,
            "objectiveId": objective_id,
        })
        if all_objectives_complete(mission.objectives):
            logger.info(f"All objectives complete for {mission.mission_id}")
            self._bus.emit("missionObjectivesComplete", {"missionId": mission.mission_id})
        return True

    def track(self, mission: MissionDefinition, snapshot_provider: Callable[[], StateSnapshot]) -> None:
        """Auto-check mission objectives whenever a relevant game event arrives."""
        self.untrack()
        self._tracked = mission
        self._snapshot_provider = snapshot_provider
        self._tracking_unsubscribers = [
            self._bus.on(event_type, self._on_objective_event) for event_type in OBJECTIVE_EVENTS
        ]
        # Some objectives may already be satisfied when the mission is accepted
        self._on_objective_event({})

    def untrack(self) -> None:
        for unsub in self._tracking_unsubscribers:
            unsub()
        self._tracking_unsubscribers = []
        self._tracked = None
        self._snapshot_provider = None

    @property
    def tracked_mission(self) -> MissionDefinition | None:
        return self._tracked

    def get_tracking_status(self) -> dict | None:
        if self._tracked is None:
            return None
        return objective_summary(self._tracked)

    def _on_objective_event(self, payload: dict) -> None:
        if self._tracked is None or self._snapshot_provider is None:
            return
        self.check_objectives(self._tracked, self._snapshot_provider())

    # -- helpers -------------------------------------------------------

    def _add_unsubscriber(self, mission_id: str, unsub: Callable[[], None]) -> None:
        self._unsubscribers.setdefault(mission_id, []).append(unsub)

    def _schedule(self, mission_id: str, callback: Callable[[], None], delay: float) -> None:
        handle = None

        def fire() -> None:
            self._timers.get(mission_id, set()).discard(handle)
            callback()

        speed = self._time_speed if self._time_speed is not None else self._scheduler.speed
        handle = self._scheduler.schedule(fire, delay, speed)
        if handle is not None:
            self._timers.setdefault(mission_id, set()).add(handle)
