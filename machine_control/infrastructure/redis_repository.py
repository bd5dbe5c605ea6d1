"""
Redis Repository implementation of the machine record store.

Keys:
- machine:{machine_id}: hash with machine_id, location_id, status, job_id, reserved_at
- location:{location_id}:machines: list of machine ids in provisioning order

Nullable fields are stored as empty strings.
"""

from __future__ import annotations

from typing import Any, Optional

from redis import exceptions as redis_errors
from redis.asyncio import Redis

from machine_control.core.exceptions import RedisConnectionError
from machine_control.core.value_objects import MachineRecord, MachineStatus
from machine_control.loggers import logger


class RedisMachineRepository:
    """
    Machine record store backed by Redis.

    Requires a client created with ``decode_responses=True``.
    Compound updates are a single ``HSET`` with a mapping; conditional
    updates run in a ``WATCH``/``MULTI`` transaction on the machine hash.
    """

    MACHINE_KEY = "machine:{machine_id}"
    LOCATION_KEY = "location:{location_id}:machines"

    def __init__(self, redis: Redis) -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
        """
        self._redis = redis

    def _machine_key(self, machine_id: str) -> str:
        return self.MACHINE_KEY.format(machine_id=machine_id)

    def _location_key(self, location_id: str) -> str:
        return self.LOCATION_KEY.format(location_id=location_id)

    @staticmethod
    def _from_hash(data: dict[str, Any]) -> Optional[MachineRecord]:
        # A hash without an id is a leftover field write, not a machine
        if not data or not data.get("machine_id"):
            return None
        return MachineRecord.from_dict(data)

    @staticmethod
    def _to_mapping(record: MachineRecord) -> dict[str, Any]:
        return {
            "machine_id": record.machine_id,
            "location_id": record.location_id,
            "status": record.status.value,
            "job_id": record.job_id or "",
            "reserved_at": "" if record.reserved_at is None else record.reserved_at,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_by_id(self, machine_id: str) -> Optional[MachineRecord]:
        """Get a machine record by id."""
        try:
            data = await self._redis.hgetall(self._machine_key(machine_id))
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}")
        return self._from_hash(data)

    async def list_at_location(self, location_id: str) -> list[MachineRecord]:
        """List all machines at a location in provisioning order."""
        try:
            machine_ids = await self._redis.lrange(self._location_key(location_id), 0, -1)
            if not machine_ids:
                return []
            async with self._redis.pipeline(transaction=False) as pipe:
                for machine_id in machine_ids:
                    pipe.hgetall(self._machine_key(machine_id))
                rows = await pipe.execute()
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

        # Ids whose hash has gone are skipped rather than failing the listing
        return [record for record in map(self._from_hash, rows) if record is not None]

    # =========================================================================
    # Field Writes
    # =========================================================================

    async def update_status(self, machine_id: str, status: MachineStatus) -> None:
        """Set the status of a machine."""
        await self._hset(machine_id, {"status": status.value})

    async def update_job_id(self, machine_id: str, job_id: Optional[str]) -> None:
        """Set the job binding of a machine."""
        await self._hset(machine_id, {"job_id": job_id or ""})

    async def save(self, record: MachineRecord) -> None:
        """Create or overwrite a machine record."""
        key = self._machine_key(record.machine_id)
        try:
            is_new = not await self._redis.exists(key)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=self._to_mapping(record))
                if is_new:
                    pipe.rpush(self._location_key(record.location_id), record.machine_id)
                await pipe.execute()
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}")
        logger.debug(f"Saved machine {record.machine_id} at {record.location_id}")

    async def _hset(self, machine_id: str, fields: dict[str, Any]) -> None:
        """Write ``fields`` to an existing machine hash; a missing machine stays missing."""
        key = self._machine_key(machine_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        if not await pipe.exists(key):
                            await pipe.unwatch()
                            logger.warning(f"Machine {machine_id} not found, update skipped")
                            return
                        pipe.multi()
                        pipe.hset(key, mapping=fields)
                        await pipe.execute()
                        return
                    except redis_errors.WatchError:
                        # Retry against the new state
                        continue
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    # =========================================================================
    # Conditional Writes
    # =========================================================================

    async def claim(self, machine_id: str, job_id: str, reserved_at: float) -> bool:
        """Hold an AVAILABLE machine for ``job_id``."""
        return await self._compare_and_set(
            machine_id,
            expected_status=MachineStatus.AVAILABLE,
            expected_job_id=None,
            fields={
                "status": MachineStatus.AWAITING_DROPOFF.value,
                "job_id": job_id,
                "reserved_at": reserved_at,
            },
        )

    async def release(self, machine_id: str, job_id: Optional[str] = None) -> bool:
        """Return an AWAITING_DROPOFF machine to the available pool."""
        return await self._compare_and_set(
            machine_id,
            expected_status=MachineStatus.AWAITING_DROPOFF,
            expected_job_id=job_id,
            fields={
                "status": MachineStatus.AVAILABLE.value,
                "job_id": "",
                "reserved_at": "",
            },
        )

    async def _compare_and_set(
        self,
        machine_id: str,
        expected_status: MachineStatus,
        expected_job_id: Optional[str],
        fields: dict[str, Any],
    ) -> bool:
        """
        Apply ``fields`` only if the stored record still matches.

        Returns:
            False if the record is missing, no longer matches, or was
            modified by another client while the transaction was open.
        """
        key = self._machine_key(machine_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    status, current_job = await pipe.hmget(key, ["status", "job_id"])
                    if status != expected_status.value or (
                        expected_job_id is not None and current_job != expected_job_id
                    ):
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping=fields)
                    await pipe.execute()
                    return True
                except redis_errors.WatchError:
                    logger.warning(f"Concurrent modification of machine {machine_id}")
                    return False
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}")
