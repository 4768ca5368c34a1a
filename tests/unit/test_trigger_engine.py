"""Tests for the trigger engine."""

import pytest

from gamecore.core.event_bus import NotificationBus
from gamecore.core.scheduler import FrameTimer, VirtualClockScheduler
from gamecore.missions.loader import parse_mission
from gamecore.missions.objectives import StateSnapshot
from gamecore.missions.trigger_engine import EvaluationState, TriggerEngine


@pytest.fixture
def timer():
    return FrameTimer()


@pytest.fixture
def scheduler(timer):
    return VirtualClockScheduler(timer, speed=1.0)


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def completed():
    return []


@pytest.fixture
def engine(bus, scheduler, completed):
    return TriggerEngine(bus, scheduler, completed_missions=lambda: completed)


def record(bus, *event_types):
    seen = []
    for event_type in event_types:
        bus.on(event_type, lambda p, et=event_type: seen.append((et, p)))
    return seen


def make_mission(mission_id="m1", **overrides):
    raw = {
        "missionId": mission_id,
        "category": "tutorial",
        "triggers": {"start": {"type": "timeSinceEvent", "event": "testEvent", "delay": 10}},
        "objectives": [
            {"id": "obj-1", "type": "networkConnection", "target": "net-1"},
            {"id": "obj-2", "type": "verification"},
        ],
        "scriptedEvents": [{
            "id": "sabotage",
            "trigger": {"type": "afterObjectiveComplete", "objectiveId": "obj-1", "delay": 5000},
            "actions": [{"type": "forceDisconnect", "network": "net-1"}],
        }],
    }
    raw.update(overrides)
    return parse_mission(raw)


class TestEndToEnd:
    def test_trigger_then_scripted_event(self, bus, timer, engine):
        seen = record(bus, "missionAvailable", "scriptedEventStart")
        mission = make_mission()
        engine.register(mission)

        bus.emit("testEvent", {})
        timer.advance(9)
        assert seen == []
        timer.advance(1)
        assert seen[0][0] == "missionAvailable"
        assert seen[0][1]["missionId"] == "m1"
        assert seen[0][1]["mission"] is mission

        bus.emit("objectiveComplete", {"missionId": "m1", "objectiveId": "obj-1"})
        timer.advance(4999)
        assert len(seen) == 1
        timer.advance(1)
        event_type, payload = seen[1]
        assert event_type == "scriptedEventStart"
        assert payload["missionId"] == "m1"
        assert payload["eventId"] == "sabotage"
        assert payload["actions"] == [{"type": "forceDisconnect", "network": "net-1"}]

    def test_scripted_event_ignores_other_missions_and_objectives(self, bus, timer, engine):
        seen = record(bus, "scriptedEventStart")
        engine.register(make_mission())
        bus.emit("objectiveComplete", {"missionId": "other", "objectiveId": "obj-1"})
        bus.emit("objectiveComplete", {"missionId": "m1", "objectiveId": "obj-2"})
        timer.advance(10_000)
        assert seen == []

    def test_speed_applies_to_trigger_delay(self, bus, timer, scheduler, engine):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission(triggers={"start": {"event": "testEvent", "delay": 1000}}))
        engine.set_time_speed(10)
        bus.emit("testEvent", {})
        timer.advance(100)
        assert len(seen) == 1

    def test_speed_change_mid_flight(self, bus, timer, scheduler, engine):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission(triggers={"start": {"event": "testEvent", "delay": 1000}}))
        bus.emit("testEvent", {})
        timer.advance(500)
        scheduler.reschedule_all(10)
        timer.advance(49)
        assert seen == []
        timer.advance(1)
        assert len(seen) == 1


class TestConditions:
    def test_condition_mismatch_skipped(self, bus, timer, engine):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission(triggers={"start": {
            "event": "missionComplete", "delay": 0, "condition": {"missionId": "tutorial-part-1"},
        }}))
        bus.emit("missionComplete", {"missionId": "something-else"})
        bus.emit("missionComplete", {})
        timer.advance(100)
        assert seen == []
        assert engine._timers.get("m1", set()) == set()

        bus.emit("missionComplete", {"missionId": "tutorial-part-1", "reward": 10})
        timer.advance(0)
        assert len(seen) == 1


class TestActivation:
    def test_missing_mission_logged(self, engine, caplog):
        assert engine.activate("ghost") is False
        assert "Mission not found: ghost" in caplog.text

    def test_one_time_mission_not_reoffered(self, bus, engine, completed):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission(oneTime=True))
        completed.append("m1")
        assert engine.activate("m1") is False
        assert seen == []

    def test_repeatable_mission_offered_again(self, bus, engine, completed):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission())
        completed.append("m1")
        assert engine.activate("m1") is True
        assert len(seen) == 1


class TestRegistration:
    def test_reregister_replaces(self, bus, timer, engine):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission())
        engine.register(make_mission(title="Second version"))
        bus.emit("testEvent", {})
        timer.advance(10)
        assert len(seen) == 1
        assert seen[0][1]["mission"].title == "Second version"

    def test_unregister_removes_subscriptions_and_timers(self, bus, timer, scheduler, engine):
        seen = record(bus, "missionAvailable")
        engine.register(make_mission())
        bus.emit("testEvent", {})
        assert scheduler.pending_count == 1

        engine.unregister("m1")
        engine.unregister("m1")  # idempotent
        assert scheduler.pending_count == 0
        assert "testEvent" not in bus.get_subscriptions()
        assert "objectiveComplete" not in bus.get_subscriptions()
        timer.advance(100)
        assert seen == []
        assert engine.get_mission("m1") is None

    def test_getters(self, engine):
        engine.register(make_mission("a"))
        engine.register(make_mission("b", category="story"))
        assert engine.registered_count == 2
        assert [m.mission_id for m in engine.get_all_missions()] == ["a", "b"]
        assert [m.mission_id for m in engine.get_missions_by_category("story")] == ["b"]

    def test_start_is_idempotent(self, bus, timer, engine):
        seen = record(bus, "missionAvailable")
        assert engine.start([make_mission()]) is True
        assert engine.start([make_mission()]) is False
        assert engine.is_started
        bus.emit("testEvent", {})
        timer.advance(10)
        assert len(seen) == 1

    def test_reset_allows_restart(self, bus, engine):
        engine.start([make_mission()])
        engine.reset()
        assert engine.registered_count == 0
        assert not engine.is_started
        assert engine.start([make_mission("m2")]) is True
        assert engine.registered_count == 1

    def test_unsupported_trigger_type_not_subscribed(self, bus, engine, caplog):
        engine.register(make_mission(triggers={"start": {"type": "onSunrise", "event": "testEvent"}}))
        assert "testEvent" not in bus.get_subscriptions()
        assert "Unsupported start trigger" in caplog.text


class TestStoryEvents:
    def test_story_event_delivered_after_delay(self, bus, timer, engine):
        seen = record(bus, "storyEventTriggered")
        engine.register(parse_mission({
            "missionId": "story",
            "events": [{
                "id": "welcome",
                "trigger": {"type": "timeSinceEvent", "event": "gameStart", "delay": 500},
                "message": {"subject": "Hi"},
            }],
        }))
        bus.emit("gameStart", {})
        timer.advance(499)
        assert seen == []
        timer.advance(1)
        assert seen == [("storyEventTriggered", {
            "storyEventId": "story", "eventId": "welcome", "message": {"subject": "Hi"},
        })]


class TestObjectiveProgress:
    def test_complete_objective_emits(self, bus, engine):
        seen = record(bus, "objectiveComplete", "missionObjectivesComplete")
        mission = make_mission()
        assert engine.complete_objective(mission, "obj-1") is True
        assert engine.complete_objective(mission, "obj-1") is False
        assert engine.complete_objective(mission, "nope") is False
        assert engine.complete_objective(mission, "obj-2") is True
        assert [et for et, _ in seen] == ["objectiveComplete", "objectiveComplete", "missionObjectivesComplete"]
        assert seen[0][1] == {"missionId": "m1", "objectiveId": "obj-1"}

    def test_evaluate_is_pure(self, engine):
        mission = make_mission()
        snapshot = StateSnapshot(active_connections=[{"networkId": "net-1"}])
        assert engine.evaluate_objectives(mission, snapshot).id == "obj-1"
        assert not mission.objectives[0].is_complete

    def test_check_objectives_is_idempotent(self, bus, engine):
        seen = record(bus, "objectiveComplete")
        mission = make_mission()
        snapshot = StateSnapshot(active_connections=[{"networkId": "net-1"}])
        assert engine.check_objectives(mission, snapshot).id == "obj-1"
        # obj-2 is verification, so the same state completes nothing further
        assert engine.check_objectives(mission, snapshot) is None
        assert len(seen) == 1

    def test_reentrant_check_ignored(self, bus, engine):
        mission = make_mission()
        snapshot = StateSnapshot(active_connections=[{"networkId": "net-1"}])
        states, nested = [], []

        def on_complete(payload):
            states.append(engine.evaluation_state("m1"))
            nested.append(engine.check_objectives(mission, snapshot))

        bus.on("objectiveComplete", on_complete)
        engine.check_objectives(mission, snapshot)
        assert states == [EvaluationState.EVALUATING]
        assert nested == [None]
        assert engine.evaluation_state("m1") == EvaluationState.IDLE

    def test_tracking_rechecks_on_game_events(self, bus, engine):
        seen = record(bus, "objectiveComplete")
        mission = make_mission()
        state = StateSnapshot()
        engine.track(mission, lambda: state)
        assert seen == []

        state.active_connections.append({"networkId": "net-1"})
        bus.emit("networkConnected", {"networkId": "net-1"})
        assert [p["objectiveId"] for _, p in seen] == ["obj-1"]
        assert engine.get_tracking_status()["currentObjectiveId"] == "obj-2"

        engine.untrack()
        assert engine.tracked_mission is None
        assert engine.get_tracking_status() is None
        assert "networkConnected" not in bus.get_subscriptions()

    def test_track_checks_immediately(self, bus, engine):
        seen = record(bus, "objectiveComplete")
        state = StateSnapshot(active_connections=[{"networkName": "net-1"}])
        engine.track(make_mission(), lambda: state)
        assert len(seen) == 1
