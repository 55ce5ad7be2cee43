"""Mode arbitration and derived values for Flexit Nordic units."""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import StrEnum

from .const import (
    FILTER_HOURS_PER_MONTH,
    MAX_FILTER_INTERVAL_HOURS,
    MAX_FILTER_INTERVAL_MONTHS,
    MAX_SETPOINT,
    MIN_FILTER_INTERVAL_HOURS,
    MIN_FILTER_INTERVAL_MONTHS,
    MIN_SETPOINT,
    SETPOINT_STEP,
    VALUE_TOLERANCE,
)
from .exceptions import FanProfileValidationError, FilterIntervalValidationError
from .points import OperationMode, Point, VentilationMode


class FanMode(StrEnum):
    """Simplified operating mode shown to the user."""

    AWAY = "away"
    HOME = "home"
    HIGH = "high"
    FIREPLACE = "fireplace"


class FanProfileMode(StrEnum):
    """Modes that carry their own supply/exhaust fan speed pair."""

    HOME = "home"
    AWAY = "away"
    HIGH = "high"
    FIREPLACE = "fireplace"
    COOKER = "cooker"


class FanLeg(StrEnum):
    SUPPLY = "supply"
    EXHAUST = "exhaust"


FAN_PROFILE_POINTS: dict[FanProfileMode, dict[FanLeg, Point]] = {
    FanProfileMode.HOME: {FanLeg.SUPPLY: Point.FAN_SUPPLY_HOME, FanLeg.EXHAUST: Point.FAN_EXHAUST_HOME},
    FanProfileMode.AWAY: {FanLeg.SUPPLY: Point.FAN_SUPPLY_AWAY, FanLeg.EXHAUST: Point.FAN_EXHAUST_AWAY},
    FanProfileMode.HIGH: {FanLeg.SUPPLY: Point.FAN_SUPPLY_HIGH, FanLeg.EXHAUST: Point.FAN_EXHAUST_HIGH},
    FanProfileMode.FIREPLACE: {
        FanLeg.SUPPLY: Point.FAN_SUPPLY_FIREPLACE,
        FanLeg.EXHAUST: Point.FAN_EXHAUST_FIREPLACE,
    },
    FanProfileMode.COOKER: {FanLeg.SUPPLY: Point.FAN_SUPPLY_COOKER, FanLeg.EXHAUST: Point.FAN_EXHAUST_COOKER},
}

# Allowed percentages per mode and leg, as enforced by the unit
FAN_PROFILE_RANGES: dict[FanProfileMode, dict[FanLeg, tuple[int, int]]] = {
    FanProfileMode.HIGH: {FanLeg.SUPPLY: (80, 100), FanLeg.EXHAUST: (79, 100)},
    FanProfileMode.HOME: {FanLeg.SUPPLY: (56, 100), FanLeg.EXHAUST: (55, 99)},
    FanProfileMode.AWAY: {FanLeg.SUPPLY: (30, 80), FanLeg.EXHAUST: (30, 79)},
    FanProfileMode.FIREPLACE: {FanLeg.SUPPLY: (30, 100), FanLeg.EXHAUST: (30, 100)},
    FanProfileMode.COOKER: {FanLeg.SUPPLY: (30, 100), FanLeg.EXHAUST: (30, 100)},
}

MODE_RF_INPUT_MAP: dict[int, FanMode] = {
    3: FanMode.HIGH,
    13: FanMode.HIGH,
    24: FanMode.HOME,
    26: FanMode.FIREPLACE,
}

MODE_SIGNAL_POINTS = (
    Point.COMFORT_BUTTON,
    Point.VENTILATION_MODE,
    Point.OPERATION_MODE,
    Point.RAPID_ACTIVE,
    Point.FIREPLACE_ACTIVE,
    Point.REMAINING_RAPID,
    Point.REMAINING_FIREPLACE,
    Point.REMAINING_TEMP_VENT,
    Point.MODE_RF_INPUT,
)

NORDIC_MODELS: dict[int, str] = {
    800111: "S2 REL",
    800121: "S3 REL",
    800110: "S2 RER",
    800120: "S3 RER",
    800221: "CL4 REL",
    800220: "CL4 RER",
    800130: "S4 RER",
    800131: "S4 REL",
    800210: "CL2 RER",
    800211: "CL2 REL",
    800200: "CL3 RER",
    800201: "CL3 REL",
    800300: "KS3 RER",
    800301: "KS3 REL",
}


def fan_profile_setting_key(mode: FanProfileMode, leg: FanLeg) -> str:
    """Return the sink setting key holding one fan profile leg."""
    return f"fan_profile_{mode.value}_{leg.value}"


def values_match(actual: float, expected: float) -> bool:
    return abs(actual - expected) < VALUE_TOLERANCE


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def map_operation_mode(value: int) -> FanMode:
    """Map the operation mode point to a fan mode."""
    match value:
        case OperationMode.HOME:
            return FanMode.HOME
        case OperationMode.HIGH | OperationMode.TEMPORARY_HIGH | OperationMode.COOKER_HOOD:
            return FanMode.HIGH
        case OperationMode.FIREPLACE:
            return FanMode.FIREPLACE
        case _:
            return FanMode.AWAY


def map_ventilation_mode(value: int) -> FanMode:
    """Map the ventilation mode point to a fan mode."""
    match value:
        case VentilationMode.HOME:
            return FanMode.HOME
        case VentilationMode.HIGH:
            return FanMode.HIGH
        case _:
            return FanMode.AWAY


def has_mode_signals(values: Mapping[Point, float]) -> bool:
    return any(point in values for point in MODE_SIGNAL_POINTS)


def resolve_fan_mode(values: Mapping[Point, float]) -> FanMode:
    """Arbitrate the fan mode from the raw signals of one poll.

    Precedence, lowest to highest: the base mode (operation mode, then
    ventilation mode, then the RF input map, then running temporary
    ventilation timers, then the comfort button), the ventilation mode
    point, the rapid ventilation flag and finally the fireplace flag.
    """
    operation_mode = values.get(Point.OPERATION_MODE)
    ventilation_mode = values.get(Point.VENTILATION_MODE)
    rf_input = values.get(Point.MODE_RF_INPUT)
    rf_mode = MODE_RF_INPUT_MAP.get(round(rf_input)) if rf_input is not None else None
    comfort_home = values.get(Point.COMFORT_BUTTON) == 1
    temp_op_active = (values.get(Point.REMAINING_TEMP_VENT) or 0) > 0

    mode = FanMode.AWAY
    if operation_mode is not None:
        mode = map_operation_mode(round(operation_mode))
    elif ventilation_mode is not None:
        mode = map_ventilation_mode(round(ventilation_mode))
    elif rf_mode is not None:
        mode = rf_mode
    elif temp_op_active:
        if (values.get(Point.REMAINING_FIREPLACE) or 0) > 0:
            mode = FanMode.FIREPLACE
        elif (values.get(Point.REMAINING_RAPID) or 0) > 0:
            mode = FanMode.HIGH
        elif comfort_home:
            mode = FanMode.HOME
    elif comfort_home:
        mode = FanMode.HOME

    if ventilation_mode is not None:
        mode = map_ventilation_mode(round(ventilation_mode))

    if values.get(Point.FIREPLACE_ACTIVE) == 1:
        mode = FanMode.FIREPLACE
    elif values.get(Point.RAPID_ACTIVE) == 1:
        mode = FanMode.HIGH

    return mode


def fan_setpoint_mode(values: Mapping[Point, float], mode: FanMode) -> FanProfileMode:
    """Return the fan profile currently driving the fans."""
    operation_mode = values.get(Point.OPERATION_MODE)
    if operation_mode is not None and round(operation_mode) == OperationMode.COOKER_HOOD:
        return FanProfileMode.COOKER
    return FanProfileMode(mode.value)


def filter_life(operating_time: float, limit: float) -> float | None:
    """Return the remaining filter life in percent."""
    if limit <= 0:
        return None
    return round(max(0.0, (1 - operating_time / limit) * 100), 1)


def normalize_setpoint(value: float) -> float:
    """Clamp a temperature setpoint and round it to the supported step."""
    clamped = clamp(value, MIN_SETPOINT, MAX_SETPOINT)
    return round(clamped / SETPOINT_STEP) * SETPOINT_STEP


def normalize_fan_profile_percent(value: float, mode: FanProfileMode, leg: FanLeg) -> int:
    """Validate a fan profile percentage against the unit's allowed range."""
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise FanProfileValidationError(f"{mode} {leg} fan profile must be numeric")
    low, high = FAN_PROFILE_RANGES[FanProfileMode(mode)][FanLeg(leg)]
    rounded = round(value)
    if rounded < low or rounded > high:
        raise FanProfileValidationError(
            f"{mode} {leg} fan profile must be between {low} and {high} percent"
        )
    return rounded


def validate_filter_interval_hours(hours: float) -> int:
    """Validate a filter change interval expressed in hours."""
    if not isinstance(hours, (int, float)) or not math.isfinite(hours):
        raise FilterIntervalValidationError("Filter change interval must be numeric")
    if hours < MIN_FILTER_INTERVAL_HOURS or hours > MAX_FILTER_INTERVAL_HOURS:
        raise FilterIntervalValidationError(
            f"Filter change interval must be between {MIN_FILTER_INTERVAL_HOURS}"
            f" and {MAX_FILTER_INTERVAL_HOURS} hours"
        )
    return round(hours)


def filter_interval_months_to_hours(months: float) -> int:
    return round(months * FILTER_HOURS_PER_MONTH)


def filter_interval_hours_to_months(hours: float) -> int:
    months = round(hours / FILTER_HOURS_PER_MONTH)
    return int(clamp(months, MIN_FILTER_INTERVAL_MONTHS, MAX_FILTER_INTERVAL_MONTHS))


def model_from_serial(serial: str) -> str | None:
    """Look up the unit model from the first six digits of its serial."""
    digits = "".join(ch for ch in serial if ch.isdigit())
    if len(digits) < 6:
        return None
    return NORDIC_MODELS.get(int(digits[:6]))
