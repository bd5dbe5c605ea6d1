"""
Custom exceptions for the machine control system.

Provides a hierarchy of typed exceptions so every failure can be
classified into a response code at the service boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from machine_control.core.value_objects import MachineRecord, MachineStatus


class MachineControlError(Exception):
    """Base exception for all machine control errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Machine Errors
# =============================================================================


class MachineError(MachineControlError):
    """Base exception for machine record errors."""

    def __init__(
        self,
        message: str,
        machine_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.machine_id = machine_id
        if machine_id:
            self.details["machine_id"] = machine_id


class MachineNotFoundError(MachineError):
    """No machine (or no available candidate) matched the request."""

    pass


class InvalidMachineStateError(MachineError):
    """Status precondition of an operation was violated."""

    def __init__(
        self,
        message: str,
        record: Optional["MachineRecord"] = None,
        **kwargs: Any,
    ) -> None:
        machine_id = kwargs.pop("machine_id", None) or (record.machine_id if record else None)
        super().__init__(message, machine_id=machine_id, **kwargs)
        self.record = record
        if record is not None:
            self.details["status"] = record.status.value


class InvalidTransitionError(MachineControlError):
    """A status change is not allowed by the lifecycle."""

    def __init__(
        self,
        source: "MachineStatus",
        target: "MachineStatus",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            f"Transition {source.value} -> {target.value} is not allowed",
            **kwargs,
        )
        self.source = source
        self.target = target
        self.details["source"] = source.value
        self.details["target"] = target.value


class StoreInconsistencyError(MachineError):
    """The store lost a record between an update and the following read."""

    pass


# =============================================================================
# Device Errors
# =============================================================================


class DeviceError(MachineControlError):
    """Base exception for device controller errors."""

    def __init__(
        self,
        message: str,
        machine_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.machine_id = machine_id
        if machine_id:
            self.details["machine_id"] = machine_id


class DeviceCommandError(DeviceError):
    """The device controller rejected or failed a command."""

    pass


class DeviceTimeoutError(DeviceCommandError):
    """The device controller did not answer in time."""

    pass


# =============================================================================
# Authentication Errors
# =============================================================================


class UnauthorizedError(MachineControlError):
    """The request token was rejected by the identity provider."""

    pass


# =============================================================================
# Repository Errors
# =============================================================================


class RepositoryError(MachineControlError):
    """Base exception for repository errors."""

    pass


class RedisConnectionError(RepositoryError):
    """Error connecting to Redis."""

    pass
