"""
Value Objects for the machine control system.

Immutable objects that represent values in the domain.
Value objects are compared by value, not by identity.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Optional


# =============================================================================
# Enums
# =============================================================================


class MachineStatus(str, Enum):
    """Lifecycle status of a physical machine."""

    AVAILABLE = "AVAILABLE"
    AWAITING_DROPOFF = "AWAITING_DROPOFF"
    RUNNING = "RUNNING"
    ERROR = "ERROR"


class ResponseCode(IntEnum):
    """Outcome classification returned to callers."""

    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    INTERNAL_ERROR = 500
    HARDWARE_ERROR = 502


# =============================================================================
# Machine Record Value Object
# =============================================================================


@dataclass(frozen=True)
class MachineRecord:
    """
    Persisted state of one physical machine.

    Attributes:
        machine_id: Stable unique identifier.
        location_id: Physical site the machine belongs to.
        status: Current lifecycle status.
        job_id: Job currently holding the machine, if any.
        reserved_at: Epoch seconds when the current hold started.
    """

    machine_id: str
    location_id: str
    status: MachineStatus = MachineStatus.AVAILABLE
    job_id: Optional[str] = None
    reserved_at: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate the record."""
        if not self.machine_id:
            raise ValueError("machine_id cannot be empty")
        if self.status == MachineStatus.AVAILABLE and self.job_id is not None:
            raise ValueError(
                f"Available machine {self.machine_id} cannot hold job {self.job_id}"
            )

    @property
    def is_available(self) -> bool:
        """Check if the machine can be reserved."""
        return self.status == MachineStatus.AVAILABLE

    def with_status(self, status: MachineStatus) -> "MachineRecord":
        """Return a copy with a different status."""
        return replace(self, status=status)

    def reserved_for(self, job_id: str, reserved_at: float) -> "MachineRecord":
        """Return a copy held by ``job_id``."""
        return replace(
            self,
            status=MachineStatus.AWAITING_DROPOFF,
            job_id=job_id,
            reserved_at=reserved_at,
        )

    def released(self) -> "MachineRecord":
        """Return a copy back in the available pool."""
        return replace(
            self,
            status=MachineStatus.AVAILABLE,
            job_id=None,
            reserved_at=None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "machine_id": self.machine_id,
            "location_id": self.location_id,
            "status": self.status.value,
            "job_id": self.job_id,
            "reserved_at": self.reserved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MachineRecord":
        """
        Build a record from a dictionary.

        Empty strings are treated as missing values, which is how
        the Redis repository stores nullable fields.
        """
        reserved_at = data.get("reserved_at")
        return cls(
            machine_id=data["machine_id"],
            location_id=data["location_id"],
            status=MachineStatus(data.get("status") or MachineStatus.AVAILABLE.value),
            job_id=data.get("job_id") or None,
            reserved_at=float(reserved_at) if reserved_at not in (None, "") else None,
        )


# =============================================================================
# Machine Response Value Object
# =============================================================================


@dataclass(frozen=True)
class MachineResponse:
    """
    Result of a machine operation.

    Attributes:
        status_code: Outcome classification.
        machine: Machine state relevant to the outcome, if any.
        message: Human-readable message.
    """

    status_code: ResponseCode
    machine: Optional[MachineRecord] = None
    message: str = ""

    @property
    def success(self) -> bool:
        """Check if the operation succeeded."""
        return self.status_code == ResponseCode.OK

    @classmethod
    def ok(cls, machine: MachineRecord, message: str = "") -> "MachineResponse":
        """Create a successful response."""
        return cls(status_code=ResponseCode.OK, machine=machine, message=message)

    @classmethod
    def not_found(cls, message: str = "Machine not found") -> "MachineResponse":
        """Create a not-found response."""
        return cls(status_code=ResponseCode.NOT_FOUND, message=message)

    @classmethod
    def bad_request(
        cls,
        machine: Optional[MachineRecord] = None,
        message: str = "Invalid machine state",
    ) -> "MachineResponse":
        """Create a response for a violated status precondition."""
        return cls(status_code=ResponseCode.BAD_REQUEST, machine=machine, message=message)

    @classmethod
    def unauthorized(cls, message: str = "Invalid token") -> "MachineResponse":
        """Create an unauthorized response."""
        return cls(status_code=ResponseCode.UNAUTHORIZED, message=message)

    @classmethod
    def hardware_error(
        cls,
        machine: MachineRecord,
        message: str = "Machine failed to start",
    ) -> "MachineResponse":
        """Create a response for a failed device command."""
        return cls(status_code=ResponseCode.HARDWARE_ERROR, machine=machine, message=message)

    @classmethod
    def internal_error(cls, message: str = "Internal error") -> "MachineResponse":
        """Create an internal error response."""
        return cls(status_code=ResponseCode.INTERNAL_ERROR, message=message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        result: dict[str, Any] = {
            "status_code": int(self.status_code),
            "success": self.success,
            "machine": self.machine.to_dict() if self.machine else None,
        }
        if self.message:
            result["message"] = self.message
        return result
