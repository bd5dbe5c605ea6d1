"""
Status Lifecycle - Allowed status transitions of a machine.

AVAILABLE -> AWAITING_DROPOFF -> RUNNING, with ERROR reachable from
AWAITING_DROPOFF when the start command fails. A held machine may be
released back to AVAILABLE. RUNNING and ERROR are terminal here; resetting
them after a physical cycle belongs to a separate process.
"""

from __future__ import annotations

from typing import Final

from machine_control.core.exceptions import InvalidTransitionError
from machine_control.core.value_objects import MachineStatus


INITIAL_STATUS: Final[MachineStatus] = MachineStatus.AVAILABLE

TERMINAL_STATUSES: Final[frozenset[MachineStatus]] = frozenset(
    {MachineStatus.RUNNING, MachineStatus.ERROR}
)

TRANSITIONS: Final[dict[MachineStatus, frozenset[MachineStatus]]] = {
    MachineStatus.AVAILABLE: frozenset({MachineStatus.AWAITING_DROPOFF}),
    MachineStatus.AWAITING_DROPOFF: frozenset(
        {MachineStatus.RUNNING, MachineStatus.ERROR, MachineStatus.AVAILABLE}
    ),
    MachineStatus.RUNNING: frozenset(),
    MachineStatus.ERROR: frozenset(),
}


def allowed_targets(source: MachineStatus) -> frozenset[MachineStatus]:
    """Get the statuses reachable from ``source`` in one step."""
    return TRANSITIONS.get(source, frozenset())


def can_transition(source: MachineStatus, target: MachineStatus) -> bool:
    """Check if ``source -> target`` is an allowed transition."""
    return target in allowed_targets(source)


def is_terminal(status: MachineStatus) -> bool:
    """Check if no transition leaves ``status``."""
    return status in TERMINAL_STATUSES


def ensure_transition(source: MachineStatus, target: MachineStatus) -> None:
    """
    Validate a transition.

    Raises:
        InvalidTransitionError: If the lifecycle does not allow it.
    """
    if not can_transition(source, target):
        raise InvalidTransitionError(source, target)
