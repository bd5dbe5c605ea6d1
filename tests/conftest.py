"""
Pytest configuration for machine control tests.

Adds the repository root to sys.path so the tests run without an
installed package, and provides shared fixtures.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


# Add the repository root to sys.path for proper imports
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from machine_control.application.reservation_service import ReservationService  # noqa: E402
from machine_control.configs import DeviceControllerSettings, ReservationSettings, Settings  # noqa: E402
from machine_control.core.value_objects import MachineRecord, MachineStatus  # noqa: E402
from machine_control.domain.cache import ReadThroughCache  # noqa: E402
from machine_control.infrastructure.memory_repository import InMemoryMachineRepository  # noqa: E402


class FakeClock:
    """Settable clock returning epoch seconds."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with a short device timeout and a 15 minute hold limit."""
    return Settings(
        store_backend="memory",
        device=DeviceControllerSettings(start_timeout=0.5),
        reservation=ReservationSettings(max_hold_seconds=900.0),
    )


@pytest.fixture
def store():
    """Location L1 with one available and one running machine."""
    return InMemoryMachineRepository(
        [
            MachineRecord("m1", "L1", MachineStatus.AVAILABLE),
            MachineRecord("m2", "L1", MachineStatus.RUNNING, job_id="j0"),
        ]
    )


@pytest.fixture
def cache():
    """Empty record cache."""
    return ReadThroughCache()


@pytest.fixture
def device():
    """Device controller whose start command succeeds."""
    controller = MagicMock()
    controller.start_cycle = AsyncMock(return_value=None)
    return controller


@pytest.fixture
def service(store, cache, device, settings, clock):
    """Reservation service over the in-memory store."""
    return ReservationService(store, cache, device, settings, clock=clock)
