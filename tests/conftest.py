"""Shared fakes for the registry tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from flexit_nordic_lib.registry import UnitRegistry

UNIT_ID = "800131000001"
UNIT_IP = "192.0.2.10"


class FakeSink:
    """In-memory sink recording everything the registry pushes."""

    def __init__(self, unit_id=UNIT_ID, **settings):
        self.unit_id = unit_id
        self.settings = {"ip": UNIT_IP, "bacnet_port": 47808, "serial": "800131-000001"}
        self.settings.update(settings)
        self.set_capability_values = AsyncMock()
        self.apply_settings = AsyncMock()
        self.set_available = AsyncMock()
        self.set_unavailable = AsyncMock()
        self.on_fan_setpoint_changed = MagicMock()

    def get_setting(self, key):
        return self.settings.get(key)


def _make_transport():
    transport = MagicMock()
    transport.read_points = AsyncMock(return_value={})
    transport.write_point = AsyncMock(return_value=None)
    return transport


@pytest.fixture
def transport():
    return _make_transport()


@pytest.fixture
def pool(transport):
    pool = MagicMock()
    pool.get = AsyncMock(return_value=transport)
    return pool


@pytest.fixture
def discover():
    return AsyncMock(return_value=[])


@pytest.fixture
async def registry(pool, discover):
    registry = UnitRegistry(
        pool,
        discover=discover,
        auto_poll=False,
        rpc_timeout=0.5,
        poll_retry_delay=0,
        rediscovery_interval=3600,
    )
    yield registry
    await registry.shutdown()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
async def unit(registry, sink):
    return await registry.register(UNIT_ID, sink)


def written(transport):
    """Return (ref, value, priority) for every write issued so far."""
    return [
        (call.args[2], call.args[3], call.args[5]) for call in transport.write_point.call_args_list
    ]
