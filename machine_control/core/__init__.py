"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Value Objects
"""

from .exceptions import (
    MachineControlError,
    MachineError,
    MachineNotFoundError,
    InvalidMachineStateError,
    InvalidTransitionError,
    StoreInconsistencyError,
    DeviceError,
    DeviceCommandError,
    DeviceTimeoutError,
    UnauthorizedError,
    RepositoryError,
    RedisConnectionError,
)
from .interfaces import (
    MachineRecordStore,
    DeviceController,
    Authenticator,
)
from .value_objects import (
    MachineStatus,
    MachineRecord,
    MachineResponse,
    ResponseCode,
)


__all__ = [
    # Exceptions
    "MachineControlError",
    "MachineError",
    "MachineNotFoundError",
    "InvalidMachineStateError",
    "InvalidTransitionError",
    "StoreInconsistencyError",
    "DeviceError",
    "DeviceCommandError",
    "DeviceTimeoutError",
    "UnauthorizedError",
    "RepositoryError",
    "RedisConnectionError",
    # Interfaces
    "MachineRecordStore",
    "DeviceController",
    "Authenticator",
    # Value Objects
    "MachineStatus",
    "MachineRecord",
    "MachineResponse",
    "ResponseCode",
]
