"""BACnet points exposed by Flexit Nordic units."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from bac_py.types.enums import ObjectType
from bac_py.types.primitives import ObjectIdentifier


@dataclass(frozen=True, slots=True)
class ObjectRef:
    """Address of one point on a unit."""

    object_type: ObjectType
    instance: int

    def to_object_identifier(self) -> ObjectIdentifier:
        return ObjectIdentifier(self.object_type, self.instance)

    @classmethod
    def from_object_identifier(cls, oid: ObjectIdentifier) -> ObjectRef:
        return cls(ObjectType(oid.object_type), oid.instance_number)

    def __str__(self) -> str:
        return f"{self.object_type.name}:{self.instance}"


class ValueKind(Enum):
    """Application tag used when writing a point."""

    REAL = "real"
    UNSIGNED = "unsigned"
    ENUMERATED = "enumerated"


class VentilationMode(IntEnum):
    """Values of the room operating mode point (MSV 42)."""

    STOP = 1
    AWAY = 2
    HOME = 3
    HIGH = 4


class OperationMode(IntEnum):
    """Values of the heat recovery ventilation state point (MSV 361)."""

    OFF = 1
    AWAY = 2
    HOME = 3
    HIGH = 4
    COOKER_HOOD = 5
    FIREPLACE = 6
    TEMPORARY_HIGH = 7


_AI = ObjectType.ANALOG_INPUT
_AO = ObjectType.ANALOG_OUTPUT
_AV = ObjectType.ANALOG_VALUE
_BI = ObjectType.BINARY_INPUT
_BV = ObjectType.BINARY_VALUE
_MSV = ObjectType.MULTI_STATE_VALUE
_PIV = ObjectType.POSITIVE_INTEGER_VALUE


class Point(Enum):
    """Every point the integration reads or writes.

    ``probe`` marks mode-related points whose changes are logged, which
    is how the mode signals of these units were mapped in the first place.
    """

    # Climate
    SETPOINT_HOME = (_AV, 1994, ValueKind.REAL, "Setpoint temperature home", False)
    SETPOINT_AWAY = (_AV, 1985, ValueKind.REAL, "Setpoint temperature away", False)
    SUPPLY_TEMPERATURE = (_AI, 4, ValueKind.REAL, "Supply air temperature", False)
    OUTDOOR_TEMPERATURE = (_AI, 1, ValueKind.REAL, "Outside air temperature", False)
    EXTRACT_TEMPERATURE = (_AI, 95, ValueKind.REAL, "Extract air temperature", False)
    EXHAUST_TEMPERATURE = (_AI, 11, ValueKind.REAL, "Exhaust air temperature", False)
    HUMIDITY = (_AI, 96, ValueKind.REAL, "Extract air humidity", False)
    HEATER_POWER = (_AV, 194, ValueKind.REAL, "Heating coil electric power", False)

    # Fans and filter
    SUPPLY_FAN_RPM = (_AI, 5, ValueKind.REAL, "Supply air fan speed feedback", False)
    EXTRACT_FAN_RPM = (_AI, 12, ValueKind.REAL, "Exhaust air fan speed feedback", False)
    SUPPLY_FAN_SPEED = (_AO, 3, ValueKind.REAL, "Supply air fan speed", False)
    EXTRACT_FAN_SPEED = (_AO, 4, ValueKind.REAL, "Exhaust air fan speed", False)
    FILTER_OPERATING_TIME = (_AV, 285, ValueKind.REAL, "Operating time filter", False)
    FILTER_LIMIT = (_AV, 286, ValueKind.REAL, "Operating time for filter replacement", False)

    # Mode control
    COMFORT_BUTTON = (_BV, 50, ValueKind.ENUMERATED, "Home/Away comfort button", True)
    COMFORT_DELAY = (_PIV, 318, ValueKind.UNSIGNED, "Comfort button delay", True)
    VENTILATION_MODE = (_MSV, 42, ValueKind.UNSIGNED, "Ventilation mode", True)
    OPERATION_MODE = (_MSV, 361, ValueKind.UNSIGNED, "Operation mode", True)
    RAPID_TRIGGER = (_MSV, 357, ValueKind.UNSIGNED, "Rapid ventilation trigger", True)
    RAPID_RUNTIME = (_PIV, 293, ValueKind.UNSIGNED, "Rapid ventilation runtime", True)
    FIREPLACE_TRIGGER = (_MSV, 360, ValueKind.UNSIGNED, "Fireplace ventilation trigger", True)
    FIREPLACE_RUNTIME = (_PIV, 270, ValueKind.UNSIGNED, "Fireplace ventilation runtime", True)
    COOKER_HOOD = (_BV, 402, ValueKind.ENUMERATED, "Cooker hood active", True)
    RAPID_ACTIVE = (_BV, 15, ValueKind.ENUMERATED, "Rapid ventilation active", True)
    FIREPLACE_ACTIVE = (_BV, 400, ValueKind.ENUMERATED, "Fireplace ventilation active", True)
    AWAY_DELAY_ACTIVE = (_BV, 574, ValueKind.ENUMERATED, "Delay for away active", True)
    REMAINING_TEMP_VENT = (_AV, 2005, ValueKind.REAL, "Remaining time temporary ventilation op", True)
    REMAINING_RAPID = (_AV, 2031, ValueKind.REAL, "Remaining time rapid ventilation", True)
    REMAINING_FIREPLACE = (_AV, 2038, ValueKind.REAL, "Remaining time fireplace ventilation", True)
    MODE_RF_INPUT = (_AV, 2125, ValueKind.REAL, "Operating mode input from RF system", True)

    # Read only for diagnostics
    ACTUAL_VENTILATION_MODE = (_MSV, 19, ValueKind.UNSIGNED, "Actual ventilation mode", True)
    PRESENT_OPERATING_MODE = (_MSV, 41, ValueKind.UNSIGNED, "Present operating mode", True)
    TEMPORARY_VENTILATION_OPERATION = (_MSV, 319, ValueKind.UNSIGNED, "Temporary ventilation operation", True)
    SPEED_HIGH_INPUT = (_BI, 82, ValueKind.ENUMERATED, "Speed HIGH activate DI", True)
    TEMPORARY_FIREPLACE = (_BV, 453, ValueKind.ENUMERATED, "Temporary fireplace ventilation", True)
    TEMPORARY_RAPID = (_BV, 454, ValueKind.ENUMERATED, "Temporary rapid ventilation", True)

    # Fan profiles
    FAN_SUPPLY_HIGH = (_AV, 1835, ValueKind.REAL, "Setpoint fan speed supply HIGH", True)
    FAN_SUPPLY_HOME = (_AV, 1836, ValueKind.REAL, "Setpoint fan speed supply HOME", True)
    FAN_SUPPLY_AWAY = (_AV, 1837, ValueKind.REAL, "Setpoint fan speed supply AWAY", True)
    FAN_SUPPLY_FIREPLACE = (_AV, 1838, ValueKind.REAL, "Setpoint fan speed supply FIRE", True)
    FAN_SUPPLY_COOKER = (_AV, 1839, ValueKind.REAL, "Setpoint fan speed supply COOKER", True)
    FAN_EXHAUST_HIGH = (_AV, 1840, ValueKind.REAL, "Setpoint fan speed extract HIGH", True)
    FAN_EXHAUST_HOME = (_AV, 1841, ValueKind.REAL, "Setpoint fan speed extract HOME", True)
    FAN_EXHAUST_AWAY = (_AV, 1842, ValueKind.REAL, "Setpoint fan speed extract AWAY", True)
    FAN_EXHAUST_FIREPLACE = (_AV, 1843, ValueKind.REAL, "Setpoint fan speed extract FIRE", True)
    FAN_EXHAUST_COOKER = (_AV, 1844, ValueKind.REAL, "Setpoint fan speed extract COOKER", True)

    def __init__(
        self,
        object_type: ObjectType,
        instance: int,
        kind: ValueKind,
        label: str,
        probe: bool,
    ) -> None:
        self.ref = ObjectRef(object_type, instance)
        self.kind = kind
        self.label = label
        self.probe = probe


POINTS_BY_REF: dict[ObjectRef, Point] = {point.ref: point for point in Point}

POLLED_POINTS: tuple[Point, ...] = tuple(Point)

# Writes to these are retried on every call even after a device denial
NEVER_BLOCK_POINTS: frozenset[Point] = frozenset(
    {
        Point.VENTILATION_MODE,
        Point.COMFORT_BUTTON,
        Point.FIREPLACE_TRIGGER,
        Point.FIREPLACE_RUNTIME,
        Point.RAPID_TRIGGER,
    }
)
