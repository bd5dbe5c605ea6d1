"""
In-memory implementation of the machine record store.

Used for local runs without Redis and as the store in tests.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from machine_control.core.value_objects import MachineRecord, MachineStatus


class InMemoryMachineRepository:
    """
    Dict-backed machine record store.

    Each method completes without awaiting, so every call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self, records: Iterable[MachineRecord] = ()) -> None:
        self._records: dict[str, MachineRecord] = {}
        self._by_location: dict[str, list[str]] = {}
        for record in records:
            self._put(record)

    def _put(self, record: MachineRecord) -> None:
        if record.machine_id not in self._records:
            self._by_location.setdefault(record.location_id, []).append(record.machine_id)
        self._records[record.machine_id] = record

    async def list_at_location(self, location_id: str) -> list[MachineRecord]:
        return [
            self._records[machine_id]
            for machine_id in self._by_location.get(location_id, [])
            if machine_id in self._records
        ]

    async def get_by_id(self, machine_id: str) -> Optional[MachineRecord]:
        return self._records.get(machine_id)

    async def update_status(self, machine_id: str, status: MachineStatus) -> None:
        record = self._records.get(machine_id)
        if record is not None:
            self._records[machine_id] = record.with_status(status)

    async def update_job_id(self, machine_id: str, job_id: Optional[str]) -> None:
        record = self._records.get(machine_id)
        if record is not None:
            self._records[machine_id] = replace(record, job_id=job_id)

    async def claim(self, machine_id: str, job_id: str, reserved_at: float) -> bool:
        record = self._records.get(machine_id)
        if record is None or not record.is_available:
            return False
        self._records[machine_id] = record.reserved_for(job_id, reserved_at)
        return True

    async def release(self, machine_id: str, job_id: Optional[str] = None) -> bool:
        record = self._records.get(machine_id)
        if record is None or record.status != MachineStatus.AWAITING_DROPOFF:
            return False
        if job_id is not None and record.job_id != job_id:
            return False
        self._records[machine_id] = record.released()
        return True

    async def save(self, record: MachineRecord) -> None:
        self._put(record)

    def __len__(self) -> int:
        return len(self._records)
