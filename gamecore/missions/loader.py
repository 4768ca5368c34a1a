"""
Mission definition model and YAML loader.

Mission files describe when a mission becomes available (start trigger),
the ordered objectives the player must satisfy, scripted events that fire
after specific objectives, and story events that only deliver messages.
Files hold either a single mission mapping or a top-level 'missions' list.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

OBJECTIVE_TYPES = {
    "networkConnection",
    "networkScan",
    "fileSystemConnection",
    "fileOperation",
    "narEntryAdded",
    "verification",
}
START_TRIGGER_TYPES = {"timeSinceEvent"}
SCRIPTED_TRIGGER_TYPES = {"afterObjectiveComplete"}


class MissionLoadError(ValueError):
    """Raised when a mission file cannot be parsed into definitions."""


class ObjectiveStatus(Enum):
    PENDING = "pending"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ConditionClause:
    key: str
    expected: Any


@dataclass(frozen=True)
class Condition:
    """Exact-match predicate: every listed key must equal its expected value."""
    clauses: tuple[ConditionClause, ...] = ()

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any] | None) -> "Condition | None":
        if not mapping:
            return None
        return cls(tuple(ConditionClause(k, v) for k, v in mapping.items()))

    def matches(self, payload: dict | None) -> bool:
        payload = payload or {}
        return all(
            c.key in payload and payload[c.key] == c.expected for c in self.clauses
        )

    def to_dict(self) -> dict[str, Any]:
        return {c.key: c.expected for c in self.clauses}


@dataclass
class Objective:
    """One ordered mission step. Status only ever moves pending -> complete."""
    id: str
    type: str
    description: str = ""
    status: ObjectiveStatus = ObjectiveStatus.PENDING
    target: str | None = None
    expected_result: str | None = None
    operation: str | None = None
    count: int | None = None
    app: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.status == ObjectiveStatus.COMPLETE

    def mark_complete(self) -> None:
        self.status = ObjectiveStatus.COMPLETE

    def to_dict(self) -> dict[str, Any]:
        d = {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "status": self.status.value,
            "target": self.target,
            "expectedResult": self.expected_result,
            "operation": self.operation,
            "count": self.count,
            "app": self.app,
        }
        d.update(self.metadata)
        return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class StartTrigger:
    """'After event X (matching condition), wait delay game ms.'"""
    event: str
    type: str = "timeSinceEvent"
    delay: float = 0
    condition: Condition | None = None

    def to_dict(self) -> dict[str, Any]:
        d = {"type": self.type, "event": self.event, "delay": self.delay}
        if self.condition:
            d["condition"] = self.condition.to_dict()
        return d


@dataclass(frozen=True)
class ScriptedEvent:
    """Side effect scheduled after an objective of the same mission completes."""
    id: str
    objective_id: str
    delay: float = 0
    trigger_type: str = "afterObjectiveComplete"
    actions: tuple[dict, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "trigger": {
                "type": self.trigger_type,
                "objectiveId": self.objective_id,
                "delay": self.delay,
            },
            "actions": [dict(a) for a in self.actions],
        }


@dataclass(frozen=True)
class StoryEvent:
    """Message-only event delivered some time after a trigger event."""
    id: str
    trigger: StartTrigger
    message: dict = field(default_factory=dict)


@dataclass
class MissionDefinition:
    """A registered mission or story-event bundle."""
    mission_id: str
    title: str = ""
    category: str = "general"
    one_time: bool = False
    start_trigger: StartTrigger | None = None
    objectives: list[Objective] = field(default_factory=list)
    scripted_events: list[ScriptedEvent] = field(default_factory=list)
    story_events: list[StoryEvent] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def get_objective(self, objective_id: str) -> Objective | None:
        return next((o for o in self.objectives if o.id == objective_id), None)

    def fresh_copy(self) -> "MissionDefinition":
        """Deep copy with every objective reset to pending (mission retry)."""
        clone = copy.deepcopy(self)
        for objective in clone.objectives:
            objective.status = ObjectiveStatus.PENDING
        return clone

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "missionId": self.mission_id,
            "title": self.title,
            "category": self.category,
            "oneTime": self.one_time,
            "objectives": [o.to_dict() for o in self.objectives],
            "scriptedEvents": [s.to_dict() for s in self.scripted_events],
        }
        if self.start_trigger:
            d["triggers"] = {"start": self.start_trigger.to_dict()}
        d.update(self.metadata)
        return d


_OBJECTIVE_KEYS = {
    "id", "type", "description", "status", "target", "expectedResult",
    "operation", "count", "app",
}
_MISSION_KEYS = {
    "missionId", "title", "category", "oneTime", "triggers", "objectives",
    "scriptedEvents", "events",
}


def _parse_trigger(raw: dict) -> StartTrigger:
    return StartTrigger(
        event=raw["event"],
        type=raw.get("type", "timeSinceEvent"),
        delay=raw.get("delay") or 0,
        condition=Condition.from_mapping(raw.get("condition")),
    )


def _parse_objective(raw: dict) -> Objective:
    return Objective(
        id=raw["id"],
        type=raw["type"],
        description=raw.get("description", ""),
        status=ObjectiveStatus(raw.get("status", "pending")),
        target=raw.get("target"),
        expected_result=raw.get("expectedResult"),
        operation=raw.get("operation"),
        count=raw.get("count"),
        app=raw.get("app"),
        metadata={k: v for k, v in raw.items() if k not in _OBJECTIVE_KEYS},
    )


def parse_mission(raw: dict) -> MissionDefinition:
    """Build a MissionDefinition from its document form (camelCase keys)."""
    try:
        start = (raw.get("triggers") or {}).get("start")
        scripted = []
        for entry in raw.get("scriptedEvents") or []:
            trigger = entry.get("trigger", {})
            scripted.append(ScriptedEvent(
                id=entry["id"],
                objective_id=trigger.get("objectiveId"),
                delay=trigger.get("delay") or 0,
                trigger_type=trigger.get("type", "afterObjectiveComplete"),
                actions=tuple(entry.get("actions") or ()),
            ))
        story = [
            StoryEvent(
                id=entry["id"],
                trigger=_parse_trigger(entry["trigger"]),
                message=entry.get("message") or {},
            )
            for entry in raw.get("events") or []
            if entry.get("trigger")
        ]
        return MissionDefinition(
            mission_id=raw["missionId"],
            title=raw.get("title", raw["missionId"]),
            category=raw.get("category", "general"),
            one_time=bool(raw.get("oneTime", False)),
            start_trigger=_parse_trigger(start) if start else None,
            objectives=[_parse_objective(o) for o in raw.get("objectives") or []],
            scripted_events=scripted,
            story_events=story,
            metadata={k: v for k, v in raw.items() if k not in _MISSION_KEYS},
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MissionLoadError(
            f"Invalid mission definition {raw.get('missionId', '?')!r}: {e}"
        ) from e


def _documents(raw: Any) -> list[dict]:
    if raw is None:
        return []
    if isinstance(raw, dict) and "missions" in raw:
        return list(raw["missions"] or [])
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list):
        return raw
    raise MissionLoadError(f"Unsupported mission document type: {type(raw).__name__}")


class MissionLoader:
    """Loads and validates mission YAML files."""

    def load(self, path: str | Path) -> list[MissionDefinition]:
        """Parse one YAML file into mission definitions."""
        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise MissionLoadError(f"File not found: {path}") from e
        except yaml.YAMLError as e:
            raise MissionLoadError(f"YAML syntax error in {path}: {e}") from e

        missions = [parse_mission(doc) for doc in _documents(raw)]
        logger.info(f"Loaded {len(missions)} mission(s) from {path}")
        return missions

    def load_directory(self, directory: str | Path) -> list[MissionDefinition]:
        """Load every .yaml/.yml file below directory, in path order."""
        root = Path(directory)
        files = sorted(p for p in root.rglob("*") if p.suffix in (".yaml", ".yml"))
        missions: list[MissionDefinition] = []
        for path in files:
            missions.extend(self.load(path))
        return missions

    def load_path(self, path: str | Path) -> list[MissionDefinition]:
        p = Path(path)
        return self.load_directory(p) if p.is_dir() else self.load(p)

    def validate(self, path: str | Path) -> list[str]:
        """Validate a mission file without registering it. Returns list of errors."""
        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            return [f"YAML syntax error: {e}"]
        except FileNotFoundError:
            return [f"File not found: {path}"]

        try:
            docs = _documents(raw)
        except MissionLoadError as e:
            return [str(e)]

        errors = []
        mission_ids = set()
        for i, doc in enumerate(docs):
            if not isinstance(doc, dict):
                errors.append(f"Mission {i} is not a mapping")
                continue
            mid = doc.get("missionId")
            if not mid:
                errors.append(f"Mission {i} missing 'missionId'")
                continue
            if mid in mission_ids:
                errors.append(f"Duplicate missionId: {mid}")
            mission_ids.add(mid)
            errors.extend(self._validate_mission(mid, doc))
        return errors

    def _validate_mission(self, mid: str, doc: dict) -> list[str]:
        errors = []

        start = (doc.get("triggers") or {}).get("start")
        if start:
            if start.get("type", "timeSinceEvent") not in START_TRIGGER_TYPES:
                errors.append(f"{mid}: unknown start trigger type '{start.get('type')}'")
            if not start.get("event"):
                errors.append(f"{mid}: start trigger missing 'event'")
            if (start.get("delay") or 0) < 0:
                errors.append(f"{mid}: start trigger delay is negative")

        objective_ids = set()
        for j, obj in enumerate(doc.get("objectives") or []):
            oid = obj.get("id")
            if not oid:
                errors.append(f"{mid}: objective {j} missing 'id'")
                continue
            if oid in objective_ids:
                errors.append(f"{mid}: duplicate objective id '{oid}'")
            objective_ids.add(oid)
            if obj.get("type") not in OBJECTIVE_TYPES:
                errors.append(f"{mid}: objective '{oid}' has unknown type '{obj.get('type')}'")

        for entry in doc.get("scriptedEvents") or []:
            sid = entry.get("id", "?")
            trigger = entry.get("trigger") or {}
            if trigger.get("type", "afterObjectiveComplete") not in SCRIPTED_TRIGGER_TYPES:
                errors.append(f"{mid}: scripted event '{sid}' has unknown trigger type '{trigger.get('type')}'")
            if trigger.get("objectiveId") not in objective_ids:
                errors.append(
                    f"{mid}: scripted event '{sid}' references objective "
                    f"'{trigger.get('objectiveId')}' which is not in objectives"
                )

        for entry in doc.get("events") or []:
            trigger = entry.get("trigger") or {}
            if trigger and not trigger.get("event"):
                errors.append(f"{mid}: story event '{entry.get('id', '?')}' trigger missing 'event'")

        return errors
