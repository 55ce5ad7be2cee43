"""Tests for the unit registry: write queue, mode control, polling and recovery."""

import asyncio
import logging

import pytest

from bac_py.types.enums import ErrorCode

from flexit_nordic_lib.exceptions import (
    FanProfileValidationError,
    PointBlockedError,
    ReadBackError,
    UnitNotFoundError,
    UnitUnreachableError,
    WriteFailedError,
    WriteTimeoutError,
)
from flexit_nordic_lib.model import FanLeg, FanMode, FanProfileMode
from flexit_nordic_lib.points import Point
from flexit_nordic_lib.registry import UnitState, WriteRecord
from flexit_nordic_lib.reply_parser import DiscoveredUnit

from .conftest import UNIT_ID, FakeSink, written


def _probe(unit, **values):
    for name, value in values.items():
        unit.probe_values[Point[name].ref] = value


def _poll_result(**values):
    return {Point[name].ref: value for name, value in values.items()}


class TestShouldSkipWrite:
    ref = Point.COMFORT_BUTTON.ref

    def _unit(self):
        return UnitState(unit_id=UNIT_ID, ip="192.0.2.10")

    def test_unknown_current_value(self):
        assert not self._unit().should_skip_write(self.ref, None, 1)

    def test_current_differs(self):
        assert not self._unit().should_skip_write(self.ref, 0, 1)

    def test_matches_without_previous_write(self):
        assert self._unit().should_skip_write(self.ref, 1, 1)

    def test_previous_write_before_last_poll(self):
        unit = self._unit()
        unit.last_poll_at = 10
        unit.last_write_values[self.ref] = WriteRecord(0, 5)
        assert unit.should_skip_write(self.ref, 1, 1)

    def test_newer_write_with_same_value(self):
        unit = self._unit()
        unit.last_poll_at = 10
        unit.last_write_values[self.ref] = WriteRecord(1, 15)
        assert unit.should_skip_write(self.ref, 1, 1)

    def test_newer_write_with_other_value(self):
        unit = self._unit()
        unit.last_poll_at = 10
        unit.last_write_values[self.ref] = WriteRecord(0, 15)
        assert not unit.should_skip_write(self.ref, 1, 1)


class TestRegistration:
    async def test_unknown_unit(self, registry):
        with pytest.raises(UnitNotFoundError):
            await registry.write_setpoint("missing", 20)

    async def test_register_reads_sink_settings(self, unit):
        assert unit.ip == "192.0.2.10"
        assert unit.port == 47808
        assert unit.serial == "800131-000001"
        assert unit.writer_task is not None
        assert unit.poll_task is None

    async def test_shared_unit_survives_until_last_sink(self, registry, unit, sink):
        other = FakeSink()
        assert await registry.register(UNIT_ID, other) is unit

        await registry.unregister(UNIT_ID, sink)
        assert registry.unit_ids == [UNIT_ID]

        await registry.unregister(UNIT_ID, other)
        assert registry.unit_ids == []
        assert unit.writer_task is None


class TestWriteQueue:
    async def test_writes_run_one_at_a_time(self, registry, unit, transport):
        events = []

        async def slow_write(ip, port, ref, value, kind, priority):
            events.append(("start", ref))
            await asyncio.sleep(0.01)
            events.append(("end", ref))

        transport.write_point.side_effect = slow_write

        await asyncio.gather(
            registry.write_setpoint(UNIT_ID, 21),
            registry.reset_filter_timer(UNIT_ID),
        )

        home = Point.SETPOINT_HOME.ref
        filter_time = Point.FILTER_OPERATING_TIME.ref
        assert events == [
            ("start", home),
            ("end", home),
            ("start", filter_time),
            ("end", filter_time),
        ]

    async def test_failed_job_does_not_stop_queue(self, registry, unit, transport):
        transport.write_point.side_effect = [WriteFailedError("boom"), None]

        with pytest.raises(WriteFailedError):
            await registry.write_setpoint(UNIT_ID, 21)
        await registry.reset_filter_timer(UNIT_ID)

        assert transport.write_point.await_count == 2


class TestWriteSetpoint:
    async def test_clamped_and_written_to_home(self, registry, unit, transport, sink):
        assert await registry.write_setpoint(UNIT_ID, 35) == 30.0

        assert written(transport) == [(Point.SETPOINT_HOME.ref, 30.0, 13)]
        sink.apply_settings.assert_awaited_with({"target_temperature_home": 30.0})

    async def test_away_mode_uses_away_register(self, registry, unit, transport, sink):
        _probe(unit, OPERATION_MODE=2)

        assert await registry.write_setpoint(UNIT_ID, 18.2) == 18.0

        assert written(transport) == [(Point.SETPOINT_AWAY.ref, 18.0, 13)]
        sink.apply_settings.assert_awaited_with({"target_temperature_away": 18.0})


class TestWriteErrors:
    async def test_value_out_of_range_is_soft(self, registry, unit, transport):
        transport.write_point.side_effect = WriteFailedError(
            "out of range", code=int(ErrorCode.VALUE_OUT_OF_RANGE)
        )

        assert await registry.write_setpoint(UNIT_ID, 20) == 20.0
        assert Point.SETPOINT_HOME.ref in unit.pending_write_errors

        transport.read_points.return_value = _poll_result(SETPOINT_HOME=20.0)
        assert await registry.poll_unit(UNIT_ID)
        assert unit.pending_write_errors == {}

    async def test_access_denied_blocks_point(self, registry, unit, transport):
        transport.write_point.side_effect = WriteFailedError(
            "denied", code=int(ErrorCode.WRITE_ACCESS_DENIED)
        )

        with pytest.raises(WriteFailedError):
            await registry.write_setpoint(UNIT_ID, 20)
        assert Point.SETPOINT_HOME.ref in unit.blocked_writes

        with pytest.raises(PointBlockedError):
            await registry.write_setpoint(UNIT_ID, 21)
        assert transport.write_point.await_count == 1

    async def test_mode_points_are_never_blocked(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1)
        transport.write_point.side_effect = WriteFailedError(
            "denied", code=int(ErrorCode.WRITE_ACCESS_DENIED)
        )

        with pytest.raises(WriteFailedError):
            await registry.set_fan_mode(UNIT_ID, FanMode.AWAY)
        assert Point.COMFORT_BUTTON.ref not in unit.blocked_writes

    async def test_timeout(self, registry, unit, transport):
        async def hang(*args):
            await asyncio.sleep(0.2)

        transport.write_point.side_effect = hang
        registry._rpc_timeout = 0.05

        with pytest.raises(WriteTimeoutError):
            await registry.reset_filter_timer(UNIT_ID)
        # Let the abandoned call finish
        await asyncio.sleep(0.25)


class TestSetFanMode:
    async def test_home_leaves_fireplace(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1, FIREPLACE_ACTIVE=1)

        await registry.set_fan_mode(UNIT_ID, "home")

        assert written(transport) == [
            (Point.FIREPLACE_TRIGGER.ref, 2, None),
            (Point.VENTILATION_MODE.ref, 3, 13),
        ]
        assert unit.expected_mode is FanMode.HOME

    async def test_away_clears_rapid_ventilation(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1, RAPID_ACTIVE=1)

        await registry.set_fan_mode(UNIT_ID, FanMode.AWAY)

        assert written(transport) == [
            (Point.COMFORT_BUTTON.ref, 0, 13),
            (Point.RAPID_TRIGGER.ref, 2, None),
        ]

    async def test_high_skips_matching_comfort(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1, VENTILATION_MODE=3)

        await registry.set_fan_mode(UNIT_ID, FanMode.HIGH)

        assert written(transport) == [(Point.VENTILATION_MODE.ref, 4, 13)]

    async def test_fireplace_clamps_runtime(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=0, FIREPLACE_RUNTIME=500)

        await registry.set_fan_mode(UNIT_ID, FanMode.FIREPLACE)

        assert written(transport) == [
            (Point.COMFORT_BUTTON.ref, 1, 13),
            (Point.FIREPLACE_RUNTIME.ref, 360, 13),
            (Point.FIREPLACE_TRIGGER.ref, 2, 13),
        ]

    async def test_fireplace_default_runtime(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1)

        await registry.set_fan_mode(UNIT_ID, FanMode.FIREPLACE)

        assert written(transport) == [
            (Point.FIREPLACE_RUNTIME.ref, 10, 13),
            (Point.FIREPLACE_TRIGGER.ref, 2, 13),
        ]

    async def test_invalid_mode(self, registry, unit):
        with pytest.raises(ValueError):
            await registry.set_fan_mode(UNIT_ID, "turbo")

    async def test_away_from_fireplace_forces_comfort(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=0, FIREPLACE_ACTIVE=1)

        await registry.set_fan_mode(UNIT_ID, FanMode.AWAY)

        assert written(transport) == [
            (Point.FIREPLACE_TRIGGER.ref, 2, None),
            (Point.COMFORT_BUTTON.ref, 0, 13),
        ]

    async def test_home_clears_temporary_timer(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1, REMAINING_TEMP_VENT=5)

        await registry.set_fan_mode(UNIT_ID, FanMode.HOME)

        assert written(transport) == [
            (Point.VENTILATION_MODE.ref, 3, 13),
            (Point.RAPID_TRIGGER.ref, 2, None),
        ]

    async def test_denied_trigger_clear_does_not_stop_sequence(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=1, FIREPLACE_ACTIVE=1)
        denied = WriteFailedError("denied", code=int(ErrorCode.WRITE_ACCESS_DENIED))

        async def write(ip, port, ref, value, kind, priority):
            if ref == Point.FIREPLACE_TRIGGER.ref:
                raise denied

        transport.write_point.side_effect = write

        with pytest.raises(WriteFailedError) as exc_info:
            await registry.set_fan_mode(UNIT_ID, FanMode.AWAY)

        assert exc_info.value is denied
        assert written(transport) == [
            (Point.FIREPLACE_TRIGGER.ref, 2, None),
            (Point.COMFORT_BUTTON.ref, 0, 13),
        ]

    async def test_failed_comfort_skips_ventilation_mode(self, registry, unit, transport):
        _probe(unit, COMFORT_BUTTON=0, REMAINING_TEMP_VENT=5)

        async def write(ip, port, ref, value, kind, priority):
            if ref == Point.COMFORT_BUTTON.ref:
                raise WriteFailedError("rejected")

        transport.write_point.side_effect = write

        with pytest.raises(WriteFailedError):
            await registry.set_fan_mode(UNIT_ID, FanMode.HOME)

        assert written(transport) == [
            (Point.COMFORT_BUTTON.ref, 1, 13),
            (Point.RAPID_TRIGGER.ref, 2, None),
        ]
        assert Point.VENTILATION_MODE.ref not in unit.write_context


class TestFanProfiles:
    async def test_out_of_range_writes_nothing(self, registry, unit, transport):
        with pytest.raises(FanProfileValidationError):
            await registry.set_fan_profile_mode(UNIT_ID, FanProfileMode.HIGH, 70, 90)

        transport.write_point.assert_not_awaited()

    async def test_written_and_verified(self, registry, unit, transport, sink):
        transport.read_points.return_value = _poll_result(FAN_SUPPLY_HIGH=90.0, FAN_EXHAUST_HIGH=88.0)

        result = await registry.set_fan_profile_mode(UNIT_ID, "high", 90, 88)

        assert result == (90.0, 88.0)
        assert written(transport) == [
            (Point.FAN_SUPPLY_HIGH.ref, 90, 16),
            (Point.FAN_EXHAUST_HIGH.ref, 88, 16),
        ]
        sink.apply_settings.assert_awaited_with(
            {"fan_profile_high_supply": 90, "fan_profile_high_exhaust": 88}
        )

    async def test_missing_read_back(self, registry, unit, transport):
        transport.read_points.return_value = _poll_result(FAN_SUPPLY_HOME=60.0)

        with pytest.raises(ReadBackError):
            await registry.set_fan_profile_mode(UNIT_ID, "home", 60, 58)


class TestFilter:
    async def test_interval_verified(self, registry, unit, transport, sink):
        transport.read_points.return_value = _poll_result(FILTER_LIMIT=4392.0)

        assert await registry.set_filter_change_interval(UNIT_ID, 4392) == (4392, 6)

        assert written(transport) == [(Point.FILTER_LIMIT.ref, 4392, 16)]
        sink.apply_settings.assert_awaited_with(
            {"filter_change_interval_hours": 4392, "filter_change_interval_months": 6}
        )

    async def test_reset_timer(self, registry, unit, transport):
        await registry.reset_filter_timer(UNIT_ID)

        assert written(transport) == [(Point.FILTER_OPERATING_TIME.ref, 0.0, 16)]


class TestPolling:
    async def test_capabilities(self, registry, unit, transport, sink):
        transport.read_points.return_value = _poll_result(
            SUPPLY_TEMPERATURE=19.5,
            HEATER_POWER=1.5,
            FILTER_OPERATING_TIME=1000.0,
            FILTER_LIMIT=4380.0,
            OPERATION_MODE=6,
            SETPOINT_HOME=21.0,
        )

        assert await registry.poll_unit(UNIT_ID)

        capabilities = sink.set_capability_values.await_args.args[0]
        assert capabilities["supply_temperature"] == 19.5
        assert capabilities["heater_power"] == 1500.0
        assert capabilities["filter_life"] == 77.2
        assert capabilities["fan_mode"] == "fireplace"
        assert capabilities["target_temperature"] == 21.0

    async def test_settings_synced_from_unit(self, registry, unit, transport, sink):
        transport.read_points.return_value = _poll_result(
            FAN_SUPPLY_HOME=60.0, SETPOINT_AWAY=17.0, FILTER_LIMIT=4392.0
        )

        await registry.poll_unit(UNIT_ID)

        sink.apply_settings.assert_awaited_once_with(
            {
                "fan_profile_home_supply": 60,
                "target_temperature_away": 17.0,
                "filter_change_interval_hours": 4392,
                "filter_change_interval_months": 6,
            }
        )

    async def test_timeout_retried_once(self, registry, unit, transport):
        transport.read_points.side_effect = [TimeoutError(), _poll_result(SUPPLY_TEMPERATURE=19.0)]

        assert await registry.poll_unit(UNIT_ID)
        assert transport.read_points.await_count == 2
        assert unit.consecutive_failures == 0

    async def test_availability_flips_once(self, registry, unit, transport, sink):
        transport.read_points.side_effect = UnitUnreachableError("down")

        for _ in range(2):
            assert not await registry.poll_unit(UNIT_ID)
        sink.set_unavailable.assert_not_awaited()

        for _ in range(2):
            await registry.poll_unit(UNIT_ID)
        sink.set_unavailable.assert_awaited_once()
        assert not unit.available
        assert unit.rediscovery_task is not None

        transport.read_points.side_effect = None
        transport.read_points.return_value = {}
        assert await registry.poll_unit(UNIT_ID)

        sink.set_available.assert_awaited_once()
        assert unit.available
        assert unit.rediscovery_task is None

    async def test_missing_ip_counts_as_failure(self, registry):
        sink = FakeSink(unit_id="other", ip="")
        unit = await registry.register("other", sink)

        assert not await registry.poll_unit("other")
        assert unit.consecutive_failures == 1

    async def test_fan_setpoint_change_event(self, registry, unit, transport, sink):
        transport.read_points.return_value = _poll_result(
            OPERATION_MODE=3, FAN_SUPPLY_HOME=60.0, FAN_EXHAUST_HOME=58.0
        )
        await registry.poll_unit(UNIT_ID)
        sink.on_fan_setpoint_changed.assert_not_called()

        transport.read_points.return_value = _poll_result(
            OPERATION_MODE=3, FAN_SUPPLY_HOME=65.0, FAN_EXHAUST_HOME=58.0
        )
        await registry.poll_unit(UNIT_ID)

        sink.on_fan_setpoint_changed.assert_called_once()
        event = sink.on_fan_setpoint_changed.call_args.args[0]
        assert event.mode is FanProfileMode.HOME
        assert event.leg is FanLeg.SUPPLY
        assert event.value == 65.0
        assert event.previous_value == 60.0

    async def test_mode_mismatch_logged_once(self, registry, unit, transport, caplog):
        unit.expected_mode = FanMode.HIGH
        transport.read_points.return_value = _poll_result(OPERATION_MODE=3)

        with caplog.at_level(logging.WARNING, logger="flexit_nordic_lib.registry"):
            await registry.poll_unit(UNIT_ID)
            await registry.poll_unit(UNIT_ID)

        mismatches = [r for r in caplog.records if "Mode mismatch" in r.getMessage()]
        assert len(mismatches) == 1

    async def test_away_pending_during_comfort_delay(self, registry, unit, transport, caplog):
        unit.expected_mode = FanMode.AWAY
        transport.read_points.return_value = _poll_result(
            OPERATION_MODE=3, COMFORT_BUTTON=0, AWAY_DELAY_ACTIVE=1, COMFORT_DELAY=30
        )

        with caplog.at_level(logging.INFO, logger="flexit_nordic_lib.registry"):
            await registry.poll_unit(UNIT_ID)
            await registry.poll_unit(UNIT_ID)

        pending = [r for r in caplog.records if "Away pending" in r.getMessage()]
        assert len(pending) == 1
        assert pending[0].levelno == logging.INFO
        assert "30 min" in pending[0].getMessage()
        assert not [r for r in caplog.records if "Mode mismatch" in r.getMessage()]

    async def test_ventilation_mode_write_verified(self, registry, unit, transport, caplog):
        _probe(unit, COMFORT_BUTTON=1, VENTILATION_MODE=3)
        await registry.set_fan_mode(UNIT_ID, FanMode.HIGH)
        assert Point.VENTILATION_MODE.ref in unit.write_context

        transport.read_points.return_value = _poll_result(VENTILATION_MODE=3)
        with caplog.at_level(logging.WARNING, logger="flexit_nordic_lib.registry"):
            await registry.poll_unit(UNIT_ID)

        assert [r for r in caplog.records if "Ventilation mode mismatch" in r.getMessage()]
        assert unit.write_context == {}


class TestRediscovery:
    async def test_endpoint_updated(self, registry, unit, transport, discover, sink):
        discover.return_value = [
            DiscoveredUnit("Nordic", "800131-000001", "800131000001", "192.0.2.99", 47808)
        ]

        assert await registry.rediscover_unit(unit)

        assert unit.ip == "192.0.2.99"
        sink.apply_settings.assert_any_await({"ip": "192.0.2.99", "bacnet_port": 47808})
        assert transport.read_points.await_args.args[0] == "192.0.2.99"

    async def test_other_serial_ignored(self, registry, unit, discover):
        discover.return_value = [
            DiscoveredUnit("Nordic", "800131-000002", "800131000002", "192.0.2.99", 47808)
        ]

        assert not await registry.rediscover_unit(unit)
        assert unit.ip == "192.0.2.10"

    async def test_loop_survives_unexpected_error(self, registry, unit, transport, discover, sink):
        registry._rediscovery_interval = 0.01
        discover.side_effect = [
            RuntimeError("boom"),
            [DiscoveredUnit("Nordic", "800131-000001", "800131000001", "192.0.2.10", 47808)],
        ]
        transport.read_points.side_effect = UnitUnreachableError("down")
        for _ in range(3):
            await registry.poll_unit(UNIT_ID)
        assert not unit.available

        transport.read_points.side_effect = None
        transport.read_points.return_value = {}
        for _ in range(100):
            if unit.available:
                break
            await asyncio.sleep(0.01)

        assert unit.available
        assert discover.await_count == 2
        assert unit.rediscovery_task is None
        sink.set_available.assert_awaited_once()


class TestSnapshot:
    async def test_snapshot(self, registry, unit):
        _probe(unit, SUPPLY_TEMPERATURE=19.0)

        snapshot = registry.get_unit_snapshot(UNIT_ID)

        assert snapshot["ip"] == "192.0.2.10"
        assert snapshot["available"] is True
        assert snapshot["values"] == {"supply_temperature": 19.0}
