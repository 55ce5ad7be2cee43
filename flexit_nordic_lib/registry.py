"""Unit registry: polling, serialized writes and availability for Flexit Nordic units."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol

from bac_py.types.enums import ErrorCode

from .const import (
    CAP_EXHAUST_TEMPERATURE,
    CAP_EXTRACT_FAN_RPM,
    CAP_EXTRACT_FAN_SETPOINT,
    CAP_EXTRACT_FAN_SPEED,
    CAP_EXTRACT_TEMPERATURE,
    CAP_FAN_MODE,
    CAP_FILTER_LIFE,
    CAP_HEATER_POWER,
    CAP_HUMIDITY,
    CAP_OUTDOOR_TEMPERATURE,
    CAP_SUPPLY_FAN_RPM,
    CAP_SUPPLY_FAN_SETPOINT,
    CAP_SUPPLY_FAN_SPEED,
    CAP_SUPPLY_TEMPERATURE,
    CAP_TARGET_TEMPERATURE,
    DEFAULT_BACNET_PORT,
    DEFAULT_FIREPLACE_MINUTES,
    DEFAULT_WRITE_PRIORITY,
    FAILURE_THRESHOLD,
    FILTER_HOURS_PER_MONTH,
    MAX_FIREPLACE_MINUTES,
    MIN_FIREPLACE_MINUTES,
    POLL_INTERVAL,
    POLL_RETRY_DELAY,
    REDISCOVERY_BURST_COUNT,
    REDISCOVERY_BURST_INTERVAL,
    REDISCOVERY_INTERVAL,
    REDISCOVERY_TIMEOUT,
    RPC_TIMEOUT,
    SETTING_BACNET_PORT,
    SETTING_FILTER_INTERVAL_HOURS,
    SETTING_FILTER_INTERVAL_MONTHS,
    SETTING_IP,
    SETTING_SERIAL,
    SETTING_SYNC_TOLERANCE,
    SETTING_TARGET_TEMPERATURE_AWAY,
    SETTING_TARGET_TEMPERATURE_HOME,
    TRIGGER_VALUE,
    VENDOR_APP_WRITE_PRIORITY,
    WRITE_VERIFY_WINDOW,
)
from .discovery import discover_units
from .exceptions import (
    FlexitError,
    PointBlockedError,
    ReadBackError,
    UnitNotFoundError,
    WriteFailedError,
    WriteTimeoutError,
)
from .model import (
    FAN_PROFILE_POINTS,
    FanLeg,
    FanMode,
    FanProfileMode,
    clamp,
    fan_profile_setting_key,
    fan_setpoint_mode,
    filter_interval_hours_to_months,
    filter_life,
    has_mode_signals,
    normalize_fan_profile_percent,
    normalize_setpoint,
    resolve_fan_mode,
    validate_filter_interval_hours,
    values_match,
)
from .points import NEVER_BLOCK_POINTS, POINTS_BY_REF, POLLED_POINTS, ObjectRef, Point, VentilationMode
from .reply_parser import DiscoveredUnit

_LOGGER = logging.getLogger(__name__)

SOFT_PENDING_CODES = frozenset({int(ErrorCode.VALUE_OUT_OF_RANGE)})
DENIED_CODES = frozenset({int(ErrorCode.WRITE_ACCESS_DENIED), int(ErrorCode.INVALID_DATA_TYPE)})

UNAVAILABLE_MESSAGE = "Unit is not responding, will reconnect automatically"

# Capability key -> point, for values pushed unchanged
DIRECT_CAPABILITIES: dict[str, Point] = {
    CAP_SUPPLY_TEMPERATURE: Point.SUPPLY_TEMPERATURE,
    CAP_OUTDOOR_TEMPERATURE: Point.OUTDOOR_TEMPERATURE,
    CAP_EXTRACT_TEMPERATURE: Point.EXTRACT_TEMPERATURE,
    CAP_EXHAUST_TEMPERATURE: Point.EXHAUST_TEMPERATURE,
    CAP_HUMIDITY: Point.HUMIDITY,
    CAP_SUPPLY_FAN_RPM: Point.SUPPLY_FAN_RPM,
    CAP_EXTRACT_FAN_RPM: Point.EXTRACT_FAN_RPM,
    CAP_SUPPLY_FAN_SPEED: Point.SUPPLY_FAN_SPEED,
    CAP_EXTRACT_FAN_SPEED: Point.EXTRACT_FAN_SPEED,
}


class UnitSink(Protocol):
    """Consumer of one unit's state, typically a hub device."""

    @property
    def unit_id(self) -> str: ...

    def get_setting(self, key: str) -> Any: ...

    async def set_capability_values(self, values: Mapping[str, Any]) -> None: ...

    async def apply_settings(self, settings: Mapping[str, Any]) -> None: ...

    async def set_available(self) -> None: ...

    async def set_unavailable(self, message: str) -> None: ...

    def on_fan_setpoint_changed(self, event: FanSetpointChangedEvent) -> None: ...


@dataclass(frozen=True)
class FanSetpointChangedEvent:
    """The active fan speed target of one leg changed."""

    unit_id: str
    mode: FanProfileMode
    leg: FanLeg
    value: float
    previous_value: float | None
    previous_mode: FanProfileMode | None


class WriteRecord(NamedTuple):
    value: float
    at: float


class PendingWrite(NamedTuple):
    value: float
    code: int
    at: float


class WriteContext(NamedTuple):
    value: float
    mode: FanMode
    at: float


WriteJob = Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class UnitState:
    """Runtime state of one physical unit."""

    unit_id: str
    ip: str
    port: int = DEFAULT_BACNET_PORT
    serial: str | None = None
    sinks: list[UnitSink] = field(default_factory=list)
    poll_task: asyncio.Task | None = None
    rediscovery_task: asyncio.Task | None = None
    writer_task: asyncio.Task | None = None
    write_queue: asyncio.Queue[tuple[WriteJob, asyncio.Future]] = field(default_factory=asyncio.Queue)
    probe_values: dict[ObjectRef, float] = field(default_factory=dict)
    blocked_writes: set[ObjectRef] = field(default_factory=set)
    pending_write_errors: dict[ObjectRef, PendingWrite] = field(default_factory=dict)
    last_write_values: dict[ObjectRef, WriteRecord] = field(default_factory=dict)
    last_poll_at: float | None = None
    write_context: dict[ObjectRef, WriteContext] = field(default_factory=dict)
    expected_mode: FanMode | None = None
    expected_mode_at: float | None = None
    last_mismatch_key: str | None = None
    consecutive_failures: int = 0
    available: bool = True
    current_fan_setpoint_mode: FanProfileMode | None = None
    current_fan_setpoints: dict[FanLeg, float] = field(default_factory=dict)
    fan_setpoints_initialized: bool = False

    def value(self, point: Point) -> float | None:
        return self.probe_values.get(point.ref)

    def point_values(self) -> dict[Point, float]:
        return {
            POINTS_BY_REF[ref]: value
            for ref, value in self.probe_values.items()
            if ref in POINTS_BY_REF
        }

    def should_skip_write(self, ref: ObjectRef, current: float | None, desired: float) -> bool:
        """Return True when writing ``desired`` would not change anything.

        The observed value must already match, and no write issued since
        the last poll may have moved the point somewhere else.
        """
        if current is None or not values_match(current, desired):
            return False
        last_write = self.last_write_values.get(ref)
        if last_write is None:
            return True
        if last_write.at <= (self.last_poll_at or 0):
            return True
        return values_match(last_write.value, desired)


def _normalize_serial(serial: str | None) -> str:
    return "".join(ch for ch in (serial or "") if ch.isdigit())


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class UnitRegistry:
    """Owns every registered unit and all protocol traffic towards it."""

    def __init__(
        self,
        transport_pool,
        discover: Callable[..., Awaitable[list[DiscoveredUnit]]] = discover_units,
        *,
        auto_poll: bool = True,
        poll_interval: float = POLL_INTERVAL,
        rpc_timeout: float = RPC_TIMEOUT,
        poll_retry_delay: float = POLL_RETRY_DELAY,
        rediscovery_interval: float = REDISCOVERY_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pool = transport_pool
        self._discover = discover
        self._auto_poll = auto_poll
        self._poll_interval = poll_interval
        self._rpc_timeout = rpc_timeout
        self._poll_retry_delay = poll_retry_delay
        self._rediscovery_interval = rediscovery_interval
        self._clock = clock
        self._units: dict[str, UnitState] = {}

    # Registration

    def get_unit(self, unit_id: str) -> UnitState:
        unit = self._units.get(unit_id)
        if unit is None:
            raise UnitNotFoundError(unit_id)
        return unit

    @property
    def unit_ids(self) -> list[str]:
        return list(self._units)

    async def register(self, unit_id: str, sink: UnitSink) -> UnitState:
        """Attach a sink, creating and starting the unit on first use."""
        unit = self._units.get(unit_id)
        if unit is None:
            ip = str(sink.get_setting(SETTING_IP) or "").strip()
            port = int(sink.get_setting(SETTING_BACNET_PORT) or DEFAULT_BACNET_PORT)
            serial = sink.get_setting(SETTING_SERIAL)
            unit = UnitState(
                unit_id=unit_id,
                ip=ip,
                port=port,
                serial=str(serial) if serial else None,
            )
            self._units[unit_id] = unit
            unit.writer_task = asyncio.create_task(
                self._write_consumer(unit), name=f"flexit_nordic_writer_{unit_id}"
            )
            if self._auto_poll:
                unit.poll_task = asyncio.create_task(
                    self._poll_loop(unit), name=f"flexit_nordic_poll_{unit_id}"
                )
            _LOGGER.info("Registered unit %s at %s:%s", unit_id, ip, port)
        if sink not in unit.sinks:
            unit.sinks.append(sink)
        return unit

    async def unregister(self, unit_id: str, sink: UnitSink) -> None:
        unit = self._units.get(unit_id)
        if unit is None:
            return
        if sink in unit.sinks:
            unit.sinks.remove(sink)
        if not unit.sinks:
            del self._units[unit_id]
            await self._teardown(unit)
            _LOGGER.info("Unit %s removed", unit_id)

    async def shutdown(self) -> None:
        """Stop every unit and drop all state."""
        units = list(self._units.values())
        self._units.clear()
        for unit in units:
            await self._teardown(unit)

    async def _teardown(self, unit: UnitState) -> None:
        tasks = [
            task
            for task in (unit.poll_task, unit.rediscovery_task, unit.writer_task)
            if task is not None and task is not asyncio.current_task()
        ]
        unit.poll_task = unit.rediscovery_task = unit.writer_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        while not unit.write_queue.empty():
            _job, future = unit.write_queue.get_nowait()
            if not future.done():
                future.cancel()

    # Write queue

    async def _write_consumer(self, unit: UnitState) -> None:
        while True:
            job, future = await unit.write_queue.get()
            try:
                if future.cancelled():
                    continue
                result = await job()
                if not future.done():
                    future.set_result(result)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as err:  # noqa: BLE001
                if not future.done():
                    future.set_exception(err)
            finally:
                unit.write_queue.task_done()

    async def _enqueue(self, unit: UnitState, job: WriteJob) -> Any:
        future = asyncio.get_running_loop().create_future()
        unit.write_queue.put_nowait((job, future))
        return await future

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        """Await a transport call under the RPC timeout.

        On timeout the call is abandoned rather than cancelled.
        """
        task = asyncio.ensure_future(awaitable)
        task.add_done_callback(_consume_result)
        return await asyncio.wait_for(asyncio.shield(task), self._rpc_timeout)

    async def _write_point(
        self,
        unit: UnitState,
        point: Point,
        value: float,
        *,
        priority: int | None = DEFAULT_WRITE_PRIORITY,
        idempotent: bool = False,
    ) -> bool:
        """Write one point. Must run on the unit's write queue.

        Returns True when the value was written, is pending verification or
        was already in place.
        """
        ref = point.ref
        if idempotent and unit.should_skip_write(ref, unit.probe_values.get(ref), value):
            _LOGGER.debug("%s already %s on %s, skipping write", point.label, value, unit.unit_id)
            return True
        if ref in unit.blocked_writes:
            _LOGGER.warning(
                "Skipping write to %s on %s (write access denied previously)", ref, unit.unit_id
            )
            raise PointBlockedError(f"Writes to {ref} are disabled for unit {unit.unit_id}")

        transport = await self._pool.get(unit.port)
        _LOGGER.debug("Writing %s = %s on %s (priority %s)", ref, value, unit.unit_id, priority)
        try:
            await self._call(
                transport.write_point(unit.ip, unit.port, ref, value, point.kind, priority)
            )
        except TimeoutError as err:
            _LOGGER.error("Timeout writing %s on %s", ref, unit.unit_id)
            raise WriteTimeoutError(f"Timeout writing {ref} on unit {unit.unit_id}") from err
        except WriteFailedError as err:
            now = self._clock()
            if err.code in SOFT_PENDING_CODES:
                unit.last_write_values[ref] = WriteRecord(value, now)
                unit.pending_write_errors[ref] = PendingWrite(value, err.code, now)
                _LOGGER.warning(
                    "Write to %s on %s returned code %s; will verify on next poll",
                    ref,
                    unit.unit_id,
                    err.code,
                )
                return True
            if err.code in DENIED_CODES:
                unit.last_write_values[ref] = WriteRecord(value, now)
                if point in NEVER_BLOCK_POINTS:
                    _LOGGER.warning("Write denied for %s on %s, will keep retrying", ref, unit.unit_id)
                else:
                    unit.blocked_writes.add(ref)
                    _LOGGER.warning(
                        "Disabling writes to %s on %s due to device error %s",
                        ref,
                        unit.unit_id,
                        err.code,
                    )
            else:
                _LOGGER.error("Failed to write %s = %s on %s: %s", ref, value, unit.unit_id, err)
            raise

        unit.last_write_values[ref] = WriteRecord(value, self._clock())
        _LOGGER.debug("Wrote %s = %s on %s", ref, value, unit.unit_id)
        return True

    # Operations

    async def write_setpoint(self, unit_id: str, setpoint: float) -> float:
        """Write the target temperature to the register of the active mode."""
        unit = self.get_unit(unit_id)
        value = normalize_setpoint(setpoint)
        values = unit.point_values()
        away = has_mode_signals(values) and resolve_fan_mode(values) is FanMode.AWAY
        point = Point.SETPOINT_AWAY if away else Point.SETPOINT_HOME
        setting_key = SETTING_TARGET_TEMPERATURE_AWAY if away else SETTING_TARGET_TEMPERATURE_HOME

        _LOGGER.info("Writing setpoint %s to %s (%s)", value, unit_id, point.label)

        async def job() -> float:
            await self._write_point(unit, point, value)
            return value

        await self._enqueue(unit, job)
        await self._push_settings(unit, {setting_key: value})
        return value

    async def set_fan_mode(self, unit_id: str, mode: FanMode | str) -> None:
        """Drive the unit into one of the simplified fan modes."""
        unit = self.get_unit(unit_id)
        mode = FanMode(mode)
        _LOGGER.info("Setting fan mode to %s for %s", mode, unit_id)
        await self._enqueue(unit, lambda: self._apply_fan_mode(unit, mode))

    async def _apply_fan_mode(self, unit: UnitState, mode: FanMode) -> None:
        for point in NEVER_BLOCK_POINTS:
            unit.blocked_writes.discard(point.ref)

        rapid_active = (unit.value(Point.RAPID_ACTIVE) or 0) == 1
        temp_vent_active = (unit.value(Point.REMAINING_TEMP_VENT) or 0) > 0
        fireplace_active = (unit.value(Point.FIREPLACE_ACTIVE) or 0) == 1
        temporary_active = rapid_active or temp_vent_active

        if mode is FanMode.FIREPLACE and temporary_active:
            _LOGGER.warning(
                "Fireplace requested on %s while temporary ventilation is active "
                "(rapid=%s temporary=%s); proceeding anyway",
                unit.unit_id,
                rapid_active,
                temp_vent_active,
            )

        unit.expected_mode = mode
        unit.expected_mode_at = self._clock()
        unit.last_mismatch_key = None

        # Steps are independent: a failed write is remembered and the sequence goes on
        failures: list[Exception] = []

        async def write(point: Point, value: float, **kwargs: Any) -> bool:
            try:
                return await self._write_point(unit, point, value, **kwargs)
            except (FlexitError, OSError) as err:
                failures.append(err)
                return False

        async def write_ventilation_mode(value: VentilationMode, *, force: bool = False) -> bool:
            ok = await write(Point.VENTILATION_MODE, int(value), idempotent=not force)
            if ok:
                unit.write_context[Point.VENTILATION_MODE.ref] = WriteContext(
                    int(value), mode, self._clock()
                )
            return ok

        if mode is not FanMode.FIREPLACE and fireplace_active:
            await write(Point.FIREPLACE_TRIGGER, TRIGGER_VALUE, priority=None)

        match mode:
            case FanMode.HOME:
                comfort_ok = await write(Point.COMFORT_BUTTON, 1, idempotent=True)
                if comfort_ok and Point.VENTILATION_MODE.ref not in unit.blocked_writes:
                    # Re-assert even when already HOME to leave fireplace/high overlays
                    await write_ventilation_mode(VentilationMode.HOME, force=True)
                if temporary_active:
                    await write(Point.RAPID_TRIGGER, TRIGGER_VALUE, priority=None)
            case FanMode.AWAY:
                await write(Point.COMFORT_BUTTON, 0, idempotent=not fireplace_active)
                if temporary_active:
                    await write(Point.RAPID_TRIGGER, TRIGGER_VALUE, priority=None)
            case FanMode.HIGH:
                comfort_ok = await write(Point.COMFORT_BUTTON, 1, idempotent=True)
                if Point.VENTILATION_MODE.ref in unit.blocked_writes:
                    _LOGGER.warning("Ventilation mode write blocked on %s; cannot set high", unit.unit_id)
                elif comfort_ok:
                    await write_ventilation_mode(VentilationMode.HIGH)
            case FanMode.FIREPLACE:
                if unit.value(Point.COMFORT_BUTTON) != 1:
                    await write(Point.COMFORT_BUTTON, 1, idempotent=True)
                runtime = unit.value(Point.FIREPLACE_RUNTIME)
                minutes = clamp(
                    round(runtime if runtime is not None else DEFAULT_FIREPLACE_MINUTES),
                    MIN_FIREPLACE_MINUTES,
                    MAX_FIREPLACE_MINUTES,
                )
                await write(Point.FIREPLACE_RUNTIME, minutes)
                await write(Point.FIREPLACE_TRIGGER, TRIGGER_VALUE)

        if failures:
            _LOGGER.warning(
                "Fan mode %s on %s finished with %s failed write(s)",
                mode,
                unit.unit_id,
                len(failures),
            )
            raise failures[0]

    async def set_fan_profile_mode(
        self,
        unit_id: str,
        mode: FanProfileMode | str,
        supply: float,
        exhaust: float,
    ) -> tuple[float, float]:
        """Write the supply/exhaust speed pair of one mode and verify it.

        Returns the values read back from the unit.
        """
        unit = self.get_unit(unit_id)
        mode = FanProfileMode(mode)
        supply_value = normalize_fan_profile_percent(supply, mode, FanLeg.SUPPLY)
        exhaust_value = normalize_fan_profile_percent(exhaust, mode, FanLeg.EXHAUST)
        supply_point = FAN_PROFILE_POINTS[mode][FanLeg.SUPPLY]
        exhaust_point = FAN_PROFILE_POINTS[mode][FanLeg.EXHAUST]

        _LOGGER.info(
            "Setting %s fan profile on %s to supply %s%%, exhaust %s%%",
            mode,
            unit_id,
            supply_value,
            exhaust_value,
        )

        async def job() -> dict[Point, float]:
            await self._write_point(
                unit, supply_point, supply_value, priority=VENDOR_APP_WRITE_PRIORITY
            )
            await self._write_point(
                unit, exhaust_point, exhaust_value, priority=VENDOR_APP_WRITE_PRIORITY
            )
            return await self._read_back(unit, supply_point, exhaust_point)

        verified = await self._enqueue(unit, job)
        verified_supply = verified[supply_point]
        verified_exhaust = verified[exhaust_point]
        for point, requested in ((supply_point, supply_value), (exhaust_point, exhaust_value)):
            if not values_match(verified[point], requested):
                _LOGGER.warning(
                    "%s on %s reads back %s after writing %s",
                    point.label,
                    unit_id,
                    verified[point],
                    requested,
                )

        await self._push_settings(
            unit,
            {
                fan_profile_setting_key(mode, FanLeg.SUPPLY): round(verified_supply),
                fan_profile_setting_key(mode, FanLeg.EXHAUST): round(verified_exhaust),
            },
        )
        return verified_supply, verified_exhaust

    async def set_filter_change_interval(self, unit_id: str, hours: float) -> tuple[int, int]:
        """Write the filter replacement interval; returns verified (hours, months)."""
        unit = self.get_unit(unit_id)
        value = validate_filter_interval_hours(hours)
        _LOGGER.info("Setting filter change interval on %s to %s h", unit_id, value)

        async def job() -> dict[Point, float]:
            await self._write_point(
                unit, Point.FILTER_LIMIT, value, priority=VENDOR_APP_WRITE_PRIORITY
            )
            return await self._read_back(unit, Point.FILTER_LIMIT)

        verified = await self._enqueue(unit, job)
        verified_hours = round(verified[Point.FILTER_LIMIT])
        months = filter_interval_hours_to_months(verified_hours)
        if verified_hours != value:
            _LOGGER.warning(
                "Filter interval on %s reads back %s h after writing %s h",
                unit_id,
                verified_hours,
                value,
            )
        if months * FILTER_HOURS_PER_MONTH != verified_hours:
            _LOGGER.warning(
                "Filter interval %s h on %s is not a whole number of months, showing %s",
                verified_hours,
                unit_id,
                months,
            )

        await self._push_settings(
            unit,
            {
                SETTING_FILTER_INTERVAL_HOURS: verified_hours,
                SETTING_FILTER_INTERVAL_MONTHS: months,
            },
        )
        return verified_hours, months

    async def reset_filter_timer(self, unit_id: str) -> None:
        """Zero the filter operating time counter."""
        unit = self.get_unit(unit_id)
        _LOGGER.info("Resetting filter timer on %s", unit_id)
        await self._enqueue(
            unit,
            lambda: self._write_point(
                unit, Point.FILTER_OPERATING_TIME, 0.0, priority=VENDOR_APP_WRITE_PRIORITY
            ),
        )

    async def _read_back(self, unit: UnitState, *points: Point) -> dict[Point, float]:
        transport = await self._pool.get(unit.port)
        try:
            values = await self._call(
                transport.read_points(unit.ip, unit.port, [point.ref for point in points])
            )
        except (TimeoutError, FlexitError, OSError) as err:
            raise ReadBackError(f"Could not read back {len(points)} point(s) from {unit.unit_id}") from err

        result: dict[Point, float] = {}
        for point in points:
            if point.ref not in values:
                raise ReadBackError(f"{point.label} missing from read back on {unit.unit_id}")
            result[point] = values[point.ref]
            unit.probe_values[point.ref] = values[point.ref]
        return result

    # Polling

    async def _poll_loop(self, unit: UnitState) -> None:
        while True:
            try:
                await self.poll_unit(unit.unit_id)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected error polling %s", unit.unit_id)
            await asyncio.sleep(self._poll_interval)

    async def poll_unit(self, unit_id: str) -> bool:
        """Read all points once and distribute the result.

        Never raises for communication problems; returns False on failure.
        """
        unit = self._units.get(unit_id)
        if unit is None:
            return False
        if not unit.ip:
            await self.handle_poll_failure(unit, "no IP address configured")
            return False

        refs = [point.ref for point in POLLED_POINTS]
        _LOGGER.debug("Polling %s at %s:%s", unit_id, unit.ip, unit.port)
        values: dict[ObjectRef, float] | None = None
        for attempt in range(2):
            try:
                transport = await self._pool.get(unit.port)
                values = await self._call(transport.read_points(unit.ip, unit.port, refs))
                break
            except TimeoutError:
                if attempt == 0:
                    _LOGGER.warning("Poll timeout for %s, retrying once", unit_id)
                    await asyncio.sleep(self._poll_retry_delay)
                    continue
                await self.handle_poll_failure(unit, "timeout")
                return False
            except (FlexitError, OSError) as err:
                await self.handle_poll_failure(unit, str(err))
                return False

        await self._process_poll(unit, values or {})
        return True

    async def handle_poll_failure(self, unit: UnitState, reason: str) -> None:
        unit.consecutive_failures += 1
        _LOGGER.debug(
            "Poll of %s failed (%s), %s consecutive", unit.unit_id, reason, unit.consecutive_failures
        )
        if not unit.available or unit.consecutive_failures < FAILURE_THRESHOLD:
            return
        unit.available = False
        _LOGGER.warning(
            "Unit %s unreachable after %s failed polls, starting rediscovery",
            unit.unit_id,
            unit.consecutive_failures,
        )
        await self._notify(unit, lambda sink: sink.set_unavailable(UNAVAILABLE_MESSAGE))
        if unit.rediscovery_task is None and self._units.get(unit.unit_id) is unit:
            unit.rediscovery_task = asyncio.create_task(
                self._rediscovery_loop(unit), name=f"flexit_nordic_rediscovery_{unit.unit_id}"
            )

    async def handle_poll_success(self, unit: UnitState) -> None:
        unit.consecutive_failures = 0
        if unit.available:
            return
        unit.available = True
        _LOGGER.info("Unit %s is reachable again", unit.unit_id)
        task, unit.rediscovery_task = unit.rediscovery_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self._notify(unit, lambda sink: sink.set_available())

    async def _process_poll(self, unit: UnitState, values: dict[ObjectRef, float]) -> None:
        now = self._clock()
        unit.last_poll_at = now

        for ref, value in values.items():
            self._reconcile_write_markers(unit, ref, value, now)
            self._record_probe_value(unit, ref, value)

        await self.handle_poll_success(unit)

        point_values = unit.point_values()
        capabilities: dict[str, Any] = {}
        for key, point in DIRECT_CAPABILITIES.items():
            if point in point_values:
                capabilities[key] = point_values[point]
        if Point.HEATER_POWER in point_values:
            # kW on the unit, W for the hub
            capabilities[CAP_HEATER_POWER] = point_values[Point.HEATER_POWER] * 1000

        mode = resolve_fan_mode(point_values) if has_mode_signals(point_values) else None
        if mode is not None:
            capabilities[CAP_FAN_MODE] = mode.value
            self._check_expected_mode(unit, mode, point_values)

        setpoint_point = Point.SETPOINT_AWAY if mode is FanMode.AWAY else Point.SETPOINT_HOME
        if setpoint_point in point_values:
            capabilities[CAP_TARGET_TEMPERATURE] = point_values[setpoint_point]

        operating_time = point_values.get(Point.FILTER_OPERATING_TIME)
        limit = point_values.get(Point.FILTER_LIMIT)
        if operating_time is not None and limit is not None:
            life = filter_life(operating_time, limit)
            if life is not None:
                capabilities[CAP_FILTER_LIFE] = life

        if mode is not None:
            self._track_fan_setpoints(unit, fan_setpoint_mode(point_values, mode), capabilities)

        await self._notify(unit, lambda sink: sink.set_capability_values(dict(capabilities)))
        await self._sync_settings(unit, point_values)

    def _reconcile_write_markers(
        self, unit: UnitState, ref: ObjectRef, value: float, now: float
    ) -> None:
        pending = unit.pending_write_errors.get(ref)
        if pending is not None:
            if values_match(value, pending.value):
                _LOGGER.info(
                    "Write to %s on %s confirmed: now %s (was code %s)",
                    ref,
                    unit.unit_id,
                    value,
                    pending.code,
                )
            elif now - pending.at < WRITE_VERIFY_WINDOW:
                _LOGGER.warning(
                    "Write to %s on %s not applied: expected %s, got %s",
                    ref,
                    unit.unit_id,
                    pending.value,
                    value,
                )
            del unit.pending_write_errors[ref]

        context = unit.write_context.get(ref)
        if context is not None:
            if not values_match(value, context.value) and now - context.at < WRITE_VERIFY_WINDOW:
                _LOGGER.warning(
                    "Ventilation mode mismatch on %s after write: expected %s for %s, got %s",
                    unit.unit_id,
                    context.value,
                    context.mode,
                    value,
                )
            del unit.write_context[ref]

    def _record_probe_value(self, unit: UnitState, ref: ObjectRef, value: float) -> None:
        previous = unit.probe_values.get(ref)
        unit.probe_values[ref] = value
        point = POINTS_BY_REF.get(ref)
        if point is not None and point.probe and previous != value:
            _LOGGER.debug("Probe %s (%s) on %s = %s", point.label, ref, unit.unit_id, value)

    def _check_expected_mode(
        self, unit: UnitState, mode: FanMode, values: Mapping[Point, float]
    ) -> None:
        expected = unit.expected_mode
        if expected is None:
            return
        if expected is mode:
            unit.last_mismatch_key = None
            return

        comfort_off = values.get(Point.COMFORT_BUTTON) == 0
        away_delay = values.get(Point.AWAY_DELAY_ACTIVE) == 1
        if expected is FanMode.AWAY and comfort_off and away_delay:
            key = f"{expected}->pending"
            if unit.last_mismatch_key != key:
                unit.last_mismatch_key = key
                delay = values.get(Point.COMFORT_DELAY)
                _LOGGER.info(
                    "Away pending for %s: delay active (configured %s min)",
                    unit.unit_id,
                    "unknown" if delay is None else round(delay),
                )
            return

        key = f"{expected}->{mode}"
        if unit.last_mismatch_key != key:
            unit.last_mismatch_key = key
            _LOGGER.warning("Mode mismatch for %s: expected %s, got %s", unit.unit_id, expected, mode)

    def _track_fan_setpoints(
        self, unit: UnitState, profile: FanProfileMode, capabilities: dict[str, Any]
    ) -> None:
        current: dict[FanLeg, float] = {}
        for leg, cap in ((FanLeg.SUPPLY, CAP_SUPPLY_FAN_SETPOINT), (FanLeg.EXHAUST, CAP_EXTRACT_FAN_SETPOINT)):
            value = unit.value(FAN_PROFILE_POINTS[profile][leg])
            if value is not None:
                current[leg] = value
                capabilities[cap] = value

        if not unit.fan_setpoints_initialized:
            if current:
                unit.current_fan_setpoint_mode = profile
                unit.current_fan_setpoints = current
                unit.fan_setpoints_initialized = True
            return

        previous_mode = unit.current_fan_setpoint_mode
        previous = unit.current_fan_setpoints
        events = []
        for leg, value in current.items():
            old = previous.get(leg)
            if previous_mode is profile and old is not None and values_match(old, value):
                continue
            events.append(
                FanSetpointChangedEvent(
                    unit_id=unit.unit_id,
                    mode=profile,
                    leg=leg,
                    value=value,
                    previous_value=old,
                    previous_mode=previous_mode,
                )
            )
        unit.current_fan_setpoint_mode = profile
        unit.current_fan_setpoints = current

        for event in events:
            _LOGGER.debug(
                "Fan setpoint %s/%s on %s changed to %s", event.mode, event.leg, unit.unit_id, event.value
            )
            for sink in list(unit.sinks):
                try:
                    sink.on_fan_setpoint_changed(event)
                except Exception:  # noqa: BLE001
                    _LOGGER.exception("Sink failed to handle fan setpoint change on %s", unit.unit_id)

    def _desired_settings(self, values: Mapping[Point, float]) -> dict[str, float]:
        desired: dict[str, float] = {}
        for mode, legs in FAN_PROFILE_POINTS.items():
            for leg, point in legs.items():
                if point in values:
                    desired[fan_profile_setting_key(mode, leg)] = round(values[point])
        if Point.SETPOINT_HOME in values:
            desired[SETTING_TARGET_TEMPERATURE_HOME] = values[Point.SETPOINT_HOME]
        if Point.SETPOINT_AWAY in values:
            desired[SETTING_TARGET_TEMPERATURE_AWAY] = values[Point.SETPOINT_AWAY]
        limit = values.get(Point.FILTER_LIMIT)
        if limit is not None and limit > 0:
            desired[SETTING_FILTER_INTERVAL_HOURS] = round(limit)
            desired[SETTING_FILTER_INTERVAL_MONTHS] = filter_interval_hours_to_months(limit)
        return desired

    async def _sync_settings(self, unit: UnitState, values: Mapping[Point, float]) -> None:
        desired = self._desired_settings(values)
        if not desired:
            return
        for sink in list(unit.sinks):
            changed = {}
            for key, value in desired.items():
                current = _as_float(sink.get_setting(key))
                if current is None or abs(current - value) >= SETTING_SYNC_TOLERANCE:
                    changed[key] = value
            if not changed:
                continue
            try:
                await sink.apply_settings(changed)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Failed to sync settings for %s", unit.unit_id)

    async def _push_settings(self, unit: UnitState, settings: dict[str, Any]) -> None:
        await self._notify(unit, lambda sink: sink.apply_settings(dict(settings)))

    async def _notify(self, unit: UnitState, call: Callable[[UnitSink], Awaitable[Any]]) -> None:
        """Run ``call`` against every sink, logging failures without raising."""
        sinks = list(unit.sinks)
        if not sinks:
            return
        results = await asyncio.gather(*(call(sink) for sink in sinks), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                _LOGGER.warning("Sink update failed for %s: %s", unit.unit_id, result)

    # Rediscovery

    async def _rediscovery_loop(self, unit: UnitState) -> None:
        while not unit.available:
            try:
                await self.rediscover_unit(unit)
            except (FlexitError, OSError) as err:
                _LOGGER.warning("Rediscovery for %s failed: %s", unit.unit_id, err)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected error rediscovering %s", unit.unit_id)
            if unit.available:
                break
            await asyncio.sleep(self._rediscovery_interval)

    async def rediscover_unit(self, unit: UnitState) -> bool:
        """Look for the unit by serial and poll it at the address found.

        Returns True when the unit answered discovery.
        """
        wanted = _normalize_serial(unit.serial)
        if not wanted:
            _LOGGER.debug("Unit %s has no serial, cannot rediscover", unit.unit_id)
            return False

        units = await self._discover(
            timeout=REDISCOVERY_TIMEOUT,
            burst_count=REDISCOVERY_BURST_COUNT,
            burst_interval=REDISCOVERY_BURST_INTERVAL,
        )
        match = next((found for found in units if found.serial_normalized == wanted), None)
        if match is None:
            _LOGGER.debug("Unit %s not found during rediscovery", unit.unit_id)
            return False

        if (match.ip, match.port) != (unit.ip, unit.port):
            _LOGGER.info(
                "Unit %s moved from %s:%s to %s:%s",
                unit.unit_id,
                unit.ip,
                unit.port,
                match.ip,
                match.port,
            )
            unit.ip = match.ip
            unit.port = match.port
            await self._push_settings(unit, {SETTING_IP: match.ip, SETTING_BACNET_PORT: match.port})

        await self.poll_unit(unit.unit_id)
        return True

    # Diagnostics

    def get_unit_snapshot(self, unit_id: str) -> dict[str, Any]:
        """Return a JSON-friendly view of one unit's runtime state."""
        unit = self.get_unit(unit_id)
        return {
            "unit_id": unit.unit_id,
            "ip": unit.ip,
            "port": unit.port,
            "serial": unit.serial,
            "available": unit.available,
            "consecutive_failures": unit.consecutive_failures,
            "rediscovering": unit.rediscovery_task is not None,
            "expected_mode": unit.expected_mode.value if unit.expected_mode else None,
            "current_fan_setpoint_mode": (
                unit.current_fan_setpoint_mode.value if unit.current_fan_setpoint_mode else None
            ),
            "queued_writes": unit.write_queue.qsize(),
            "blocked_writes": sorted(str(ref) for ref in unit.blocked_writes),
            "pending_write_errors": {
                str(ref): {"value": pending.value, "code": pending.code}
                for ref, pending in unit.pending_write_errors.items()
            },
            "values": {
                POINTS_BY_REF[ref].name.lower() if ref in POINTS_BY_REF else str(ref): value
                for ref, value in unit.probe_values.items()
            },
        }
