"""
Infrastructure layer - External dependencies and implementations.

Contains:
- Record store implementations (Redis, in-memory)
- External service clients (device controller, identity provider)
"""

from .redis_repository import RedisMachineRepository
from .memory_repository import InMemoryMachineRepository
from .device_client import SmartMachineClient
from .identity_client import IdentityProviderClient


__all__ = [
    # Repositories
    "RedisMachineRepository",
    "InMemoryMachineRepository",
    # Clients
    "SmartMachineClient",
    "IdentityProviderClient",
]
