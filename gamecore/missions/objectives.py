"""
Objective predicates and ordered objective evaluation.

Each objective type has a pure predicate over a StateSnapshot, the
read-only view of game state supplied by the caller. Objectives are
evaluated strictly in list order: only the first incomplete objective is
ever inspected.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from gamecore.missions.loader import MissionDefinition, Objective

logger = logging.getLogger(__name__)


@dataclass
class StateSnapshot:
    """Game state as observed at one instant. Owned by the caller."""
    active_connections: list[dict] = field(default_factory=list)
    last_scan_results: dict | None = None
    file_manager_connections: list[dict] = field(default_factory=list)
    data_recovery_connections: list[dict] = field(default_factory=list)
    last_file_operation: dict = field(default_factory=dict)
    file_operation_counts: dict[str, int] = field(default_factory=dict)
    nar_entries: list[dict] = field(default_factory=list)


def check_network_connection(objective: Objective, snapshot: StateSnapshot) -> bool:
    return any(
        conn.get("networkId") == objective.target or conn.get("networkName") == objective.target
        for conn in snapshot.active_connections
    )


def check_network_scan(objective: Objective, snapshot: StateSnapshot) -> bool:
    results = snapshot.last_scan_results
    if not results:
        return False
    devices = results.get("machines") or results.get("devices") or []
    expected = objective.expected_result or objective.target
    return any(
        expected in (device.get("hostname"), device.get("ip"), device.get("id"))
        for device in devices
    )


def check_file_system_connection(objective: Objective, snapshot: StateSnapshot) -> bool:
    if (objective.app or "fileManager") == "dataRecoveryTool":
        connections = snapshot.data_recovery_connections
    else:
        connections = snapshot.file_manager_connections
    return any(
        conn.get("ip") == objective.target or conn.get("fileSystemId") == objective.target
        for conn in connections
    )


def check_file_operation(objective: Objective, snapshot: StateSnapshot) -> bool:
    operation = snapshot.last_file_operation
    if operation.get("operation") != objective.operation:
        return False
    if objective.count is None:
        return True
    total = snapshot.file_operation_counts.get(objective.operation) or operation.get("filesAffected", 0)
    logger.debug(f"fileOperation {objective.operation}: count={objective.count}, total={total}")
    return total >= objective.count


def check_nar_entry_added(objective: Objective, snapshot: StateSnapshot) -> bool:
    return any(
        entry.get("networkId") == objective.target and entry.get("authorized", True) is not False
        for entry in snapshot.nar_entries
    )


def check_verification(objective: Objective, snapshot: StateSnapshot) -> bool:
    # Only completed through TriggerEngine.complete_objective()
    return False


OBJECTIVE_CHECKS: dict[str, Callable[[Objective, StateSnapshot], bool]] = {
    "networkConnection": check_network_connection,
    "networkScan": check_network_scan,
    "fileSystemConnection": check_file_system_connection,
    "fileOperation": check_file_operation,
    "narEntryAdded": check_nar_entry_added,
    "verification": check_verification,
}


def is_objective_complete(objective: Objective, snapshot: StateSnapshot) -> bool:
    check = OBJECTIVE_CHECKS.get(objective.type)
    if check is None:
        logger.warning(f"Unknown objective type: {objective.type}")
        return False
    return check(objective, snapshot)


def first_incomplete(mission: MissionDefinition) -> Objective | None:
    return next((o for o in mission.objectives if not o.is_complete), None)


def evaluate_objectives(mission: MissionDefinition | None, snapshot: StateSnapshot) -> Objective | None:
    """
    Return the first incomplete objective if the snapshot now satisfies it.

    Objectives after the first incomplete one are not inspected. The
    returned objective is not modified; the caller marks it complete.
    """
    if mission is None:
        return None
    objective = first_incomplete(mission)
    if objective is None:
        return None
    return objective if is_objective_complete(objective, snapshot) else None


def all_objectives_complete(objectives: list[Objective]) -> bool:
    return bool(objectives) and all(o.is_complete for o in objectives)


def objective_summary(mission: MissionDefinition) -> dict[str, Any]:
    """Counts used by status displays."""
    done = sum(1 for o in mission.objectives if o.is_complete)
    current = first_incomplete(mission)
    return {
        "missionId": mission.mission_id,
        "completed": done,
        "total": len(mission.objectives),
        "currentObjectiveId": current.id if current else None,
    }
