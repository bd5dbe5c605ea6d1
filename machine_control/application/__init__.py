"""
Application layer - Application services and use cases.

Contains:
- Reservation service
- API facade
- Command handlers
"""

from .reservation_service import ReservationService
from .api_facade import ApiRequest, MachineApiFacade
from .command_handler import CommandHandler, CommandResponse


__all__ = [
    "ReservationService",
    "ApiRequest",
    "MachineApiFacade",
    "CommandHandler",
    "CommandResponse",
]
