"""
Interfaces (Protocols) for the machine control system.

Defines contracts for the record store and the external collaborators
using Python's Protocol for structural subtyping (duck typing with type hints).
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from machine_control.core.value_objects import MachineRecord, MachineStatus


# =============================================================================
# Repository Interfaces
# =============================================================================


@runtime_checkable
class MachineRecordStore(Protocol):
    """
    Protocol for durable machine record storage.

    Every method is individually atomic. ``claim`` and ``release`` are
    conditional compound updates: they change status and job binding in
    one step and only if the stored status still matches.
    """

    async def list_at_location(self, location_id: str) -> list[MachineRecord]:
        """List all machines at a location in listing order."""
        ...

    async def get_by_id(self, machine_id: str) -> Optional[MachineRecord]:
        """Get a machine record by id."""
        ...

    async def update_status(self, machine_id: str, status: MachineStatus) -> None:
        """Set the status of a machine."""
        ...

    async def update_job_id(self, machine_id: str, job_id: Optional[str]) -> None:
        """Set the job binding of a machine."""
        ...

    async def claim(self, machine_id: str, job_id: str, reserved_at: float) -> bool:
        """
        Reserve an available machine for a job.

        Returns:
            True if the machine was AVAILABLE and is now held by ``job_id``.
        """
        ...

    async def release(self, machine_id: str, job_id: Optional[str] = None) -> bool:
        """
        Return a held machine to the available pool.

        Returns:
            True if the machine was AWAITING_DROPOFF (held by ``job_id``
            when given) and is now AVAILABLE.
        """
        ...

    async def save(self, record: MachineRecord) -> None:
        """Create or overwrite a machine record."""
        ...


# =============================================================================
# External Collaborators
# =============================================================================


@runtime_checkable
class DeviceController(Protocol):
    """Protocol for the controller that drives the physical machines."""

    async def start_cycle(self, machine_id: str) -> None:
        """
        Start the physical cycle of a machine.

        Raises:
            DeviceCommandError: On hardware or communication error.
        """
        ...


@runtime_checkable
class Authenticator(Protocol):
    """Protocol for request token validation."""

    async def validate_token(self, token: str) -> bool:
        """Check whether a token is valid."""
        ...
