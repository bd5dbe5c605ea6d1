"""
Reservation Service - Reserves machines and drives their status lifecycle.

Coordinates the record store, the read-through cache and the device
controller. Every operation returns a classified ``MachineResponse``;
nothing here retries automatically.

Concurrency:
- Read-modify-write sequences on one machine run under that machine's lock.
- Candidate selection at a location runs under the location's lock, and the
  store claim is conditional, so two callers never both win one machine.
- The cache is written only after the store accepted the change.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from machine_control.core.exceptions import (
    InvalidMachineStateError,
    MachineError,
    MachineNotFoundError,
    StoreInconsistencyError,
)
from machine_control.core.interfaces import DeviceController, MachineRecordStore
from machine_control.core.value_objects import MachineRecord, MachineResponse, MachineStatus
from machine_control.domain.cache import ReadThroughCache
from machine_control.domain.locks import KeyedLock
from machine_control.domain.status_lifecycle import ensure_transition
from machine_control.configs import ReservationSettings, Settings
from machine_control.loggers import logger


class ReservationService:
    """
    Coordinator for machine reservation and cycle start.

    All collaborators are injected; the service keeps no global state.
    """

    def __init__(
        self,
        store: MachineRecordStore,
        cache: ReadThroughCache[str, MachineRecord],
        device: DeviceController,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the reservation service.

        Args:
            store: Authoritative machine record store.
            cache: Read-through cache shared by all operations.
            device: Controller that starts physical cycles.
            settings: Application settings (defaults when omitted).
            clock: Source of epoch seconds for hold timestamps.
        """
        settings = settings or Settings()
        self._store = store
        self._cache = cache
        self._device = device
        self._reservation: ReservationSettings = settings.reservation
        self._start_timeout = settings.device.start_timeout
        self._clock = clock
        self._machine_locks = KeyedLock()
        self._location_locks = KeyedLock()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _to_response(error: MachineError) -> MachineResponse:
        """Classify a machine error into a response."""
        if isinstance(error, MachineNotFoundError):
            return MachineResponse.not_found(error.message)
        if isinstance(error, InvalidMachineStateError):
            return MachineResponse.bad_request(error.record, error.message)
        logger.error(error.message)
        return MachineResponse.internal_error(error.message)

    async def _require_status(
        self,
        machine_id: str,
        expected: MachineStatus,
    ) -> MachineRecord:
        """
        Read the authoritative record and check its status.

        Raises:
            MachineNotFoundError: If the store has no such machine.
            InvalidMachineStateError: If the status differs from ``expected``.
        """
        machine = await self._store.get_by_id(machine_id)
        if machine is None:
            raise MachineNotFoundError(f"Machine {machine_id} not found", machine_id=machine_id)
        if machine.status != expected:
            raise InvalidMachineStateError(
                f"Machine {machine_id} is {machine.status.value}, expected {expected.value}",
                record=machine,
            )
        return machine

    async def _refresh(self, machine_id: str) -> MachineRecord:
        """
        Re-read a record after a store write and put it in the cache.

        Raises:
            StoreInconsistencyError: If the record is gone.
        """
        record = await self._store.get_by_id(machine_id)
        if record is None:
            raise StoreInconsistencyError(
                f"Machine {machine_id} state unavailable after update",
                machine_id=machine_id,
            )
        self._cache.put(machine_id, record)
        return record

    # =========================================================================
    # Reserve
    # =========================================================================

    async def reserve(self, location_id: str, job_id: str) -> MachineResponse:
        """
        Reserve the first available machine at a location for a job.

        Args:
            location_id: Site to pick a machine from.
            job_id: Job that will hold the machine.

        Returns:
            OK with the held machine, NOT_FOUND if nothing is available,
            INTERNAL_ERROR if the claimed record cannot be read back.
        """
        async with self._location_locks(location_id):
            candidates = await self._store.list_at_location(location_id)

            for candidate in candidates:
                if not candidate.is_available:
                    continue

                async with self._machine_locks(candidate.machine_id):
                    claimed = await self._store.claim(
                        candidate.machine_id, job_id, self._clock()
                    )
                    if not claimed:
                        # Taken by another instance since the listing
                        logger.debug(f"Lost claim on machine {candidate.machine_id}")
                        continue

                    try:
                        record = await self._refresh(candidate.machine_id)
                    except StoreInconsistencyError as e:
                        return self._to_response(e)

                logger.info(
                    f"Machine {record.machine_id} at {location_id} reserved for job {job_id}"
                )
                return MachineResponse.ok(record)

        logger.info(f"No available machine at {location_id} for job {job_id}")
        return MachineResponse.not_found(f"No available machine at location {location_id}")

    # =========================================================================
    # Get State
    # =========================================================================

    async def get_state(self, machine_id: str) -> MachineResponse:
        """
        Get the state of a machine, preferring the cache.

        A cache hit is returned without checking the store. On a miss the
        store is read and the cache populated; an unknown machine leaves
        the cache untouched.
        """
        cached = self._cache.get(machine_id)
        if cached is not None:
            return MachineResponse.ok(cached)

        record = await self._store.get_by_id(machine_id)
        if record is None:
            return MachineResponse.not_found(f"Machine {machine_id} not found")

        self._cache.put(machine_id, record)
        return MachineResponse.ok(record)

    # =========================================================================
    # Start Cycle
    # =========================================================================

    async def start_cycle(self, machine_id: str) -> MachineResponse:
        """
        Start the physical cycle of a reserved machine.

        The whole locked sequence is shielded from cancellation of the
        caller: once the device command is issued its outcome is always
        written to the store and the cache.

        Returns:
            OK with the RUNNING machine, HARDWARE_ERROR with the ERROR
            machine, BAD_REQUEST with the unchanged machine when it is not
            awaiting drop-off, NOT_FOUND or INTERNAL_ERROR.
        """
        return await asyncio.shield(self._start_cycle_locked(machine_id))

    async def _start_cycle_locked(self, machine_id: str) -> MachineResponse:
        async with self._machine_locks(machine_id):
            try:
                machine = await self._require_status(machine_id, MachineStatus.AWAITING_DROPOFF)
            except MachineError as e:
                return self._to_response(e)

            try:
                await asyncio.wait_for(
                    self._device.start_cycle(machine_id),
                    timeout=self._start_timeout,
                )
            except Exception as e:
                # A timeout counts as a failed command
                logger.error(f"Start command failed for machine {machine_id}: {e!r}")
                return await self._record_outcome(machine, MachineStatus.ERROR)

            return await self._record_outcome(machine, MachineStatus.RUNNING)

    async def _record_outcome(
        self,
        machine: MachineRecord,
        status: MachineStatus,
    ) -> MachineResponse:
        """Write the post-command status, read it back, and cache it."""
        ensure_transition(machine.status, status)
        await self._store.update_status(machine.machine_id, status)

        try:
            updated = await self._refresh(machine.machine_id)
        except StoreInconsistencyError as e:
            return self._to_response(e)

        if status == MachineStatus.ERROR:
            return MachineResponse.hardware_error(updated)

        logger.info(f"Machine {updated.machine_id} is {updated.status.value}")
        return MachineResponse.ok(updated)

    # =========================================================================
    # Release
    # =========================================================================

    async def release(
        self,
        machine_id: str,
        job_id: Optional[str] = None,
    ) -> MachineResponse:
        """
        Return a reserved machine to the available pool.

        Args:
            machine_id: Machine to release.
            job_id: When given, the hold must belong to this job.

        Returns:
            OK with the AVAILABLE machine, BAD_REQUEST with the unchanged
            machine when it is not held (by ``job_id``), NOT_FOUND or
            INTERNAL_ERROR.
        """
        async with self._machine_locks(machine_id):
            try:
                machine = await self._require_status(machine_id, MachineStatus.AWAITING_DROPOFF)
                if job_id is not None and machine.job_id != job_id:
                    raise InvalidMachineStateError(
                        f"Machine {machine_id} is not held by job {job_id}",
                        record=machine,
                    )

                ensure_transition(machine.status, MachineStatus.AVAILABLE)
                if not await self._store.release(machine_id, machine.job_id):
                    current = await self._store.get_by_id(machine_id)
                    raise InvalidMachineStateError(
                        f"Machine {machine_id} changed while being released",
                        record=current,
                        machine_id=machine_id,
                    )

                updated = await self._refresh(machine_id)
            except MachineError as e:
                return self._to_response(e)

        logger.info(f"Machine {machine_id} released from job {machine.job_id}")
        return MachineResponse.ok(updated)

    async def release_expired(self, location_id: str) -> list[MachineRecord]:
        """
        Release holds at a location older than the configured maximum.

        Does nothing unless ``max_hold_seconds`` is configured.

        Returns:
            Records of the machines that were released.
        """
        max_hold = self._reservation.max_hold_seconds
        if max_hold is None:
            return []

        now = self._clock()
        released: list[MachineRecord] = []

        for machine in await self._store.list_at_location(location_id):
            if machine.status != MachineStatus.AWAITING_DROPOFF:
                continue
            if machine.reserved_at is None or now - machine.reserved_at < max_hold:
                continue

            # Pin the job seen in the listing so a newer hold is left alone
            response = await self.release(machine.machine_id, machine.job_id)
            if response.success and response.machine is not None:
                logger.warning(
                    f"Hold of job {machine.job_id} on machine {machine.machine_id} "
                    f"expired after {now - machine.reserved_at:.0f}s"
                )
                released.append(response.machine)

        return released
