"""
Provision machine records before the service starts.

Usage:
    python -m machine_control.pre_start machines.json

The file holds a list of objects with ``machine_id`` and ``location_id``.
Existing machines keep their current state.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Iterable

from redis.asyncio import Redis

from machine_control.core.interfaces import MachineRecordStore
from machine_control.core.value_objects import MachineRecord
from machine_control.domain.status_lifecycle import INITIAL_STATUS
from machine_control.infrastructure.redis_repository import RedisMachineRepository
from machine_control.configs import get_settings
from machine_control.loggers import logger


async def provision_machines(
    store: MachineRecordStore,
    machines: Iterable[dict[str, Any]],
) -> list[str]:
    """
    Create records for machines the store does not know yet.

    Returns:
        Ids of the machines that were created.
    """
    created = []
    for entry in machines:
        machine_id = entry["machine_id"]
        if await store.get_by_id(machine_id) is not None:
            logger.debug(f"Machine {machine_id} already provisioned")
            continue
        await store.save(
            MachineRecord(
                machine_id=machine_id,
                location_id=entry["location_id"],
                status=INITIAL_STATUS,
            )
        )
        created.append(machine_id)
    logger.info(f"Provisioned {len(created)} machine(s)")
    return created


async def main(path: str) -> None:
    settings = get_settings()
    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        decode_responses=settings.redis.decode_responses,
    )
    try:
        machines = json.loads(Path(path).read_text(encoding="utf-8"))
        await provision_machines(RedisMachineRepository(redis), machines)
    finally:
        await redis.aclose()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
