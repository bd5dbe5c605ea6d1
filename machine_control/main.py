"""
Machine Control Service - Main entry point.

Wires the record store, cache, device controller and identity provider
together and serves commands over Redis pub/sub.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from redis.asyncio import Redis

from machine_control.application.api_facade import MachineApiFacade
from machine_control.application.command_handler import machine_control_commands
from machine_control.application.reservation_service import ReservationService
from machine_control.core.interfaces import DeviceController, MachineRecordStore
from machine_control.core.value_objects import MachineRecord
from machine_control.domain.cache import ReadThroughCache
from machine_control.infrastructure.device_client import SmartMachineClient
from machine_control.infrastructure.identity_client import IdentityProviderClient
from machine_control.infrastructure.memory_repository import InMemoryMachineRepository
from machine_control.infrastructure.redis_repository import RedisMachineRepository
from machine_control.configs import Settings, get_settings
from machine_control.loggers import logger


# =============================================================================
# Wiring
# =============================================================================


def build_store(settings: Settings, redis: Redis) -> MachineRecordStore:
    """
    Create the record store selected by ``settings.store_backend``.

    Raises:
        ValueError: For an unknown backend name.
    """
    if settings.store_backend == "redis":
        return RedisMachineRepository(redis)
    if settings.store_backend == "memory":
        logger.warning("Using in-memory machine store; state is lost on restart")
        return InMemoryMachineRepository()
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


def build_service(
    settings: Settings,
    store: MachineRecordStore,
    device: DeviceController,
) -> ReservationService:
    """Create the reservation service with a fresh process cache."""
    cache: ReadThroughCache[str, MachineRecord] = ReadThroughCache()
    return ReservationService(store, cache, device, settings)


# =============================================================================
# Redis Command Listener
# =============================================================================


async def listen_to_redis(
    redis: Redis,
    api: MachineApiFacade,
    settings: Settings,
) -> None:
    """
    Listen for commands on Redis pub/sub and process them.

    Args:
        redis: Redis client instance.
        api: MachineApiFacade instance for command execution.
        settings: Application settings.
    """
    command_channel = settings.commands.command_channel
    response_channel = settings.commands.response_channel

    pubsub = redis.pubsub()
    await pubsub.subscribe(command_channel)
    logger.info(f"Listening for commands on channel: {command_channel}")

    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue

        raw_data = message.get("data")

        # Handle ping messages
        if raw_data == "ping":
            continue

        try:
            command = json.loads(raw_data)
        except json.JSONDecodeError as e:
            logger.error(f"Command parsing error: {e}")
            continue

        if not isinstance(command, dict):
            logger.error(f"Command must be a JSON object, got: {raw_data}")
            continue

        logger.info(f"Received command: {command.get('command')} ({command.get('command_id')})")
        response = await machine_control_commands(command, api)

        await redis.publish(response_channel, json.dumps(response))
        logger.info(f"Response sent to {response_channel}: {response}")


# =============================================================================
# Hold Sweeper
# =============================================================================


async def sweep_expired_holds(service: ReservationService, settings: Settings) -> None:
    """
    Periodically release holds older than the configured maximum.

    Runs only when both ``max_hold_seconds`` and ``sweep_locations`` are set.
    """
    reservation = settings.reservation
    if reservation.max_hold_seconds is None or not reservation.sweep_locations:
        logger.debug("Hold sweeper disabled")
        return

    logger.info(
        f"Sweeping holds older than {reservation.max_hold_seconds:.0f}s "
        f"every {reservation.sweep_interval:.0f}s at {list(reservation.sweep_locations)}"
    )
    while True:
        for location_id in reservation.sweep_locations:
            try:
                await service.release_expired(location_id)
            except Exception as e:
                logger.error(f"Hold sweep failed at {location_id}: {e}")
        await asyncio.sleep(reservation.sweep_interval)


# =============================================================================
# Main Entry Point
# =============================================================================


async def main(settings: Optional[Settings] = None) -> None:
    """
    Main entry point for the machine control service.

    Initializes the Redis connection and collaborators, then starts the
    hold sweeper and the command listener.
    """
    settings = settings or get_settings()

    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        decode_responses=settings.redis.decode_responses,
    )

    store = build_store(settings, redis)
    device = SmartMachineClient(settings.device)
    service = build_service(settings, store, device)
    identity = IdentityProviderClient(settings.identity)
    api = MachineApiFacade(service, identity)

    sweeper = asyncio.create_task(sweep_expired_holds(service, settings))
    try:
        await listen_to_redis(redis, api, settings)
    finally:
        sweeper.cancel()
        await identity.aclose()
        await device.aclose()
        await redis.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
