"""
Unit tests for stores, HTTP clients, settings and wiring.
"""

import json
from unittest.mock import AsyncMock, MagicMock, call

import httpx
import pytest
from redis import exceptions as redis_errors

from machine_control.configs import (
    DeviceControllerSettings,
    IdentitySettings,
    ReservationSettings,
    Settings,
)
from machine_control.core.exceptions import (
    DeviceCommandError,
    DeviceTimeoutError,
    RedisConnectionError,
)
from machine_control.application.reservation_service import ReservationService
from machine_control.core.value_objects import MachineRecord, MachineStatus, ResponseCode
from machine_control.domain.cache import ReadThroughCache
from machine_control.infrastructure.device_client import SmartMachineClient
from machine_control.infrastructure.identity_client import IdentityProviderClient
from machine_control.infrastructure.memory_repository import InMemoryMachineRepository
from machine_control.infrastructure.redis_repository import RedisMachineRepository
from machine_control.main import build_service, build_store, listen_to_redis, sweep_expired_holds
from machine_control.pre_start import provision_machines


def make_pipeline(**methods):
    """Pipeline mock usable as ``async with redis.pipeline() as pipe``."""
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.execute = AsyncMock(return_value=[])
    pipe.watch = AsyncMock()
    pipe.unwatch = AsyncMock()
    for name, value in methods.items():
        setattr(pipe, name, value)
    return pipe


@pytest.fixture
def redis():
    """Redis client mock."""
    client = MagicMock()
    client.hgetall = AsyncMock(return_value={})
    client.hset = AsyncMock()
    client.lrange = AsyncMock(return_value=[])
    client.exists = AsyncMock(return_value=0)
    return client


# =============================================================================
# Redis Repository Tests
# =============================================================================


class TestRedisMachineRepository:
    """Tests for RedisMachineRepository."""

    @pytest.mark.asyncio
    async def test_get_by_id(self, redis):
        """Hashes are read back into records."""
        redis.hgetall.return_value = {
            "machine_id": "m1",
            "location_id": "L1",
            "status": "AWAITING_DROPOFF",
            "job_id": "j1",
            "reserved_at": "1000.0",
        }
        record = await RedisMachineRepository(redis).get_by_id("m1")

        redis.hgetall.assert_awaited_once_with("machine:m1")
        assert record == MachineRecord("m1", "L1", MachineStatus.AWAITING_DROPOFF, "j1", 1000.0)

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, redis):
        """An empty hash means no such machine."""
        assert await RedisMachineRepository(redis).get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self, redis):
        """Redis connection failures raise RedisConnectionError."""
        redis.hgetall.side_effect = redis_errors.ConnectionError("down")
        with pytest.raises(RedisConnectionError):
            await RedisMachineRepository(redis).get_by_id("m1")

    @pytest.mark.asyncio
    async def test_list_at_location_keeps_order(self, redis):
        """Machines are listed in provisioning order, skipping vanished ids."""
        redis.lrange.return_value = ["m2", "gone", "m1"]
        pipe = make_pipeline(
            execute=AsyncMock(
                return_value=[
                    {"machine_id": "m2", "location_id": "L1", "status": "RUNNING", "job_id": "j0"},
                    {},
                    {"machine_id": "m1", "location_id": "L1", "status": "AVAILABLE", "job_id": ""},
                ]
            )
        )
        redis.pipeline = MagicMock(return_value=pipe)

        records = await RedisMachineRepository(redis).list_at_location("L1")

        redis.lrange.assert_awaited_once_with("location:L1:machines", 0, -1)
        assert [r.machine_id for r in records] == ["m2", "m1"]
        assert records[1].job_id is None

    @pytest.mark.asyncio
    async def test_get_by_id_ignores_stub_hash(self, redis):
        """A hash holding only stray fields is not a machine."""
        redis.hgetall.return_value = {"status": "RUNNING"}
        assert await RedisMachineRepository(redis).get_by_id("m1") is None

    @pytest.mark.asyncio
    async def test_update_status(self, redis):
        """Status updates write the hash field of an existing machine."""
        pipe = make_pipeline(exists=AsyncMock(return_value=1))
        redis.pipeline = MagicMock(return_value=pipe)

        await RedisMachineRepository(redis).update_status("m1", MachineStatus.RUNNING)

        pipe.watch.assert_awaited_once_with("machine:m1")
        pipe.hset.assert_called_once_with("machine:m1", mapping={"status": "RUNNING"})
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_status_missing_machine(self, redis):
        """Updating a deleted machine writes nothing."""
        pipe = make_pipeline(exists=AsyncMock(return_value=0))
        redis.pipeline = MagicMock(return_value=pipe)

        await RedisMachineRepository(redis).update_status("m1", MachineStatus.RUNNING)

        pipe.unwatch.assert_awaited_once()
        pipe.hset.assert_not_called()
        pipe.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_status_retries_after_conflict(self, redis):
        """A WATCH conflict re-checks the machine and writes again."""
        pipe = make_pipeline(
            exists=AsyncMock(return_value=1),
            execute=AsyncMock(side_effect=[redis_errors.WatchError(), []]),
        )
        redis.pipeline = MagicMock(return_value=pipe)

        await RedisMachineRepository(redis).update_status("m1", MachineStatus.ERROR)

        assert pipe.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_update_job_id(self, redis):
        """Job updates write the job field, clearing it as an empty string."""
        pipe = make_pipeline(exists=AsyncMock(return_value=1))
        redis.pipeline = MagicMock(return_value=pipe)
        repo = RedisMachineRepository(redis)

        await repo.update_job_id("m1", "j2")
        await repo.update_job_id("m1", None)

        assert pipe.hset.call_args_list == [
            call("machine:m1", mapping={"job_id": "j2"}),
            call("machine:m1", mapping={"job_id": ""}),
        ]

    @pytest.mark.asyncio
    async def test_start_cycle_on_vanished_machine(self, redis, device):
        """A machine deleted during the start command is an internal error."""
        redis.hgetall.side_effect = [
            {
                "machine_id": "m1",
                "location_id": "L1",
                "status": "AWAITING_DROPOFF",
                "job_id": "j1",
                "reserved_at": "1000.0",
            },
            {},
        ]
        pipe = make_pipeline(exists=AsyncMock(return_value=0))
        redis.pipeline = MagicMock(return_value=pipe)
        cache = ReadThroughCache()
        service = ReservationService(RedisMachineRepository(redis), cache, device)

        response = await service.start_cycle("m1")

        assert response.status_code == ResponseCode.INTERNAL_ERROR
        pipe.hset.assert_not_called()
        assert cache.get("m1") is None

    @pytest.mark.asyncio
    async def test_save_new_machine_indexes_location(self, redis):
        """New machines are appended to their location list."""
        pipe = make_pipeline()
        redis.pipeline = MagicMock(return_value=pipe)

        await RedisMachineRepository(redis).save(MachineRecord("m3", "L2"))

        pipe.rpush.assert_called_once_with("location:L2:machines", "m3")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_existing_machine_does_not_reindex(self, redis):
        """Overwriting a known machine keeps the listing unchanged."""
        redis.exists.return_value = 1
        pipe = make_pipeline()
        redis.pipeline = MagicMock(return_value=pipe)

        await RedisMachineRepository(redis).save(MachineRecord("m1", "L1"))

        pipe.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_available(self, redis):
        """Claiming an available machine writes the hold."""
        pipe = make_pipeline(hmget=AsyncMock(return_value=["AVAILABLE", ""]))
        redis.pipeline = MagicMock(return_value=pipe)

        claimed = await RedisMachineRepository(redis).claim("m1", "j1", 1000.0)

        assert claimed is True
        pipe.watch.assert_awaited_once_with("machine:m1")
        pipe.multi.assert_called_once()
        pipe.hset.assert_called_once_with(
            "machine:m1",
            mapping={"status": "AWAITING_DROPOFF", "job_id": "j1", "reserved_at": 1000.0},
        )

    @pytest.mark.asyncio
    async def test_claim_taken_machine(self, redis):
        """A machine that is no longer available is not claimed."""
        pipe = make_pipeline(hmget=AsyncMock(return_value=["AWAITING_DROPOFF", "j9"]))
        redis.pipeline = MagicMock(return_value=pipe)

        assert await RedisMachineRepository(redis).claim("m1", "j1", 1000.0) is False
        pipe.unwatch.assert_awaited_once()
        pipe.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_claim_concurrent_modification(self, redis):
        """A WATCH conflict loses the claim."""
        pipe = make_pipeline(
            hmget=AsyncMock(return_value=["AVAILABLE", ""]),
            execute=AsyncMock(side_effect=redis_errors.WatchError()),
        )
        redis.pipeline = MagicMock(return_value=pipe)

        assert await RedisMachineRepository(redis).claim("m1", "j1", 1000.0) is False

    @pytest.mark.asyncio
    async def test_release_checks_job(self, redis):
        """Release with a job id only applies to that job's hold."""
        pipe = make_pipeline(hmget=AsyncMock(return_value=["AWAITING_DROPOFF", "j1"]))
        redis.pipeline = MagicMock(return_value=pipe)
        repo = RedisMachineRepository(redis)

        assert await repo.release("m1", "other") is False
        assert await repo.release("m1", "j1") is True


# =============================================================================
# In-Memory Repository Tests
# =============================================================================


class TestInMemoryMachineRepository:
    """Tests for InMemoryMachineRepository."""

    @pytest.mark.asyncio
    async def test_claim_and_release(self):
        """Claim holds an available machine, release returns it."""
        repo = InMemoryMachineRepository([MachineRecord("m1", "L1")])

        assert await repo.claim("m1", "j1", 5.0)
        assert not await repo.claim("m1", "j2", 6.0)
        assert not await repo.release("m1", "j2")
        assert await repo.release("m1", "j1")
        assert (await repo.get_by_id("m1")).is_available

    @pytest.mark.asyncio
    async def test_unknown_machine(self):
        """Unknown ids are neither claimed nor updated."""
        repo = InMemoryMachineRepository()
        assert not await repo.claim("m1", "j1", 5.0)
        await repo.update_status("m1", MachineStatus.RUNNING)
        assert await repo.get_by_id("m1") is None

    @pytest.mark.asyncio
    async def test_update_job_id(self):
        """Job updates replace the binding of a known machine only."""
        repo = InMemoryMachineRepository(
            [MachineRecord("m1", "L1", MachineStatus.AWAITING_DROPOFF, job_id="j1")]
        )

        await repo.update_job_id("m1", "j2")
        await repo.update_job_id("m9", "j2")

        assert (await repo.get_by_id("m1")).job_id == "j2"
        assert await repo.get_by_id("m9") is None

    @pytest.mark.asyncio
    async def test_save_keeps_listing_order(self):
        """Re-saving a machine keeps its position at the location."""
        repo = InMemoryMachineRepository([MachineRecord("m1", "L1"), MachineRecord("m2", "L1")])
        await repo.save(MachineRecord("m1", "L1", MachineStatus.ERROR, job_id="j1"))

        listed = await repo.list_at_location("L1")
        assert [r.machine_id for r in listed] == ["m1", "m2"]
        assert listed[0].status == MachineStatus.ERROR
        assert len(repo) == 2


# =============================================================================
# HTTP Client Tests
# =============================================================================


def mock_client(handler) -> httpx.AsyncClient:
    """HTTP client answering every request with ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSmartMachineClient:
    """Tests for SmartMachineClient."""

    @pytest.mark.asyncio
    async def test_start_cycle(self):
        """A 2xx answer means the cycle started."""
        seen = []

        def handler(request):
            seen.append((request.method, str(request.url)))
            return httpx.Response(202)

        client = SmartMachineClient(
            DeviceControllerSettings(base_url="http://gateway/"), client=mock_client(handler)
        )
        await client.start_cycle("m1")

        assert seen == [("POST", "http://gateway/machines/m1/start")]

    @pytest.mark.asyncio
    async def test_rejected_command(self):
        """Error statuses raise DeviceCommandError."""
        client = SmartMachineClient(
            DeviceControllerSettings(), client=mock_client(lambda request: httpx.Response(503))
        )
        with pytest.raises(DeviceCommandError) as exc_info:
            await client.start_cycle("m1")
        assert exc_info.value.details["http_status"] == 503

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Transport timeouts raise DeviceTimeoutError."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = SmartMachineClient(DeviceControllerSettings(), client=mock_client(handler))
        with pytest.raises(DeviceTimeoutError):
            await client.start_cycle("m1")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Other transport errors raise DeviceCommandError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = SmartMachineClient(DeviceControllerSettings(), client=mock_client(handler))
        with pytest.raises(DeviceCommandError):
            await client.start_cycle("m1")


class TestIdentityProviderClient:
    """Tests for IdentityProviderClient."""

    @pytest.mark.asyncio
    async def test_valid_token(self):
        """Tokens the provider marks valid are accepted."""

        def handler(request):
            assert request.url.path == "/tokens/validate"
            return httpx.Response(200, json={"valid": True})

        client = IdentityProviderClient(IdentitySettings(), client=mock_client(handler))
        assert await client.validate_token("t1") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"valid": False}),
            httpx.Response(401, json={"valid": True}),
            httpx.Response(200, text="not json"),
        ],
    )
    async def test_rejected_token(self, response):
        """Anything but an explicit valid answer rejects the token."""
        client = IdentityProviderClient(
            IdentitySettings(), client=mock_client(lambda request: response)
        )
        assert await client.validate_token("t1") is False

    @pytest.mark.asyncio
    async def test_empty_token_skips_provider(self):
        """Empty tokens are rejected without a request."""
        handler = MagicMock()
        client = IdentityProviderClient(IdentitySettings(), client=mock_client(handler))

        assert await client.validate_token("") is False
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_unreachable(self):
        """Transport failures reject the token."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = IdentityProviderClient(IdentitySettings(), client=mock_client(handler))
        assert await client.validate_token("t1") is False


# =============================================================================
# Settings Tests
# =============================================================================


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Unset variables fall back to defaults."""
        settings = Settings.from_env({})
        assert settings.store_backend == "redis"
        assert settings.redis.port == 6379
        assert settings.reservation.max_hold_seconds is None
        assert settings.commands.response_channel == "machine_control_commands_response"

    def test_overrides(self):
        """Prefixed variables override defaults."""
        settings = Settings.from_env(
            {
                "MACHINE_CONTROL_STORE_BACKEND": "memory",
                "MACHINE_CONTROL_REDIS_PORT": "6380",
                "MACHINE_CONTROL_DEVICE_START_TIMEOUT": "2.5",
                "MACHINE_CONTROL_MAX_HOLD_SECONDS": "600",
                "MACHINE_CONTROL_SWEEP_LOCATIONS": "L1, L2,",
                "MACHINE_CONTROL_COMMAND_CHANNEL": "laundry",
            }
        )
        assert settings.store_backend == "memory"
        assert settings.redis.port == 6380
        assert settings.device.start_timeout == 2.5
        assert settings.reservation.max_hold_seconds == 600.0
        assert settings.reservation.sweep_locations == ("L1", "L2")
        assert settings.commands.response_channel == "laundry_response"


# =============================================================================
# Wiring Tests
# =============================================================================


class TestWiring:
    """Tests for entry point helpers."""

    def test_build_store(self, redis):
        """The backend name selects the store."""
        assert isinstance(build_store(Settings(), redis), RedisMachineRepository)
        assert isinstance(
            build_store(Settings(store_backend="memory"), redis), InMemoryMachineRepository
        )
        with pytest.raises(ValueError):
            build_store(Settings(store_backend="sqlite"), redis)

    @pytest.mark.asyncio
    async def test_build_service(self, device):
        """The wired service serves reads through the store."""
        store = InMemoryMachineRepository([MachineRecord("m1", "L1")])
        service = build_service(Settings(), store, device)

        response = await service.get_state("m1")
        assert response.success

    @pytest.mark.asyncio
    async def test_sweeper_disabled_without_hold_limit(self):
        """The sweeper returns at once when expiry is off."""
        service = MagicMock()
        service.release_expired = AsyncMock()
        settings = Settings(reservation=ReservationSettings(sweep_locations=("L1",)))

        await sweep_expired_holds(service, settings)

        service.release_expired.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_listener_skips_non_object_commands(self, redis):
        """JSON payloads that are not objects are dropped without stopping the loop."""

        async def messages():
            for data in ("ping", "not json", "5", "[]", '{"command": "noop", "command_id": 3}'):
                yield {"type": "message", "data": data}

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.listen = MagicMock(return_value=messages())
        redis.pubsub = MagicMock(return_value=pubsub)
        redis.publish = AsyncMock()

        await listen_to_redis(redis, MagicMock(), Settings())

        redis.publish.assert_awaited_once()
        channel, payload = redis.publish.await_args.args
        assert channel == "machine_control_commands_response"
        assert json.loads(payload)["command_id"] == 3

    @pytest.mark.asyncio
    async def test_provision_machines(self):
        """Only unknown machines are created."""
        store = InMemoryMachineRepository(
            [MachineRecord("m1", "L1", MachineStatus.RUNNING, job_id="j0")]
        )
        created = await provision_machines(
            store,
            [
                {"machine_id": "m1", "location_id": "L1"},
                {"machine_id": "m2", "location_id": "L1"},
            ],
        )

        assert created == ["m2"]
        assert (await store.get_by_id("m1")).status == MachineStatus.RUNNING
        assert (await store.get_by_id("m2")).status == MachineStatus.AVAILABLE
