"""Communication engine for Flexit Nordic ventilation units."""

from .discovery import build_discover_request, discover_units, find_unit_by_serial, list_ipv4_interfaces
from .exceptions import (
    DiscoveryError,
    FanProfileValidationError,
    FilterIntervalValidationError,
    FlexitError,
    PointBlockedError,
    ReadBackError,
    UnitNotFoundError,
    UnitUnreachableError,
    WriteFailedError,
    WriteTimeoutError,
)
from .model import FanLeg, FanMode, FanProfileMode, resolve_fan_mode
from .points import ObjectRef, Point
from .registry import FanSetpointChangedEvent, UnitRegistry, UnitSink, UnitState
from .reply_parser import DiscoveredUnit, parse_reply
from .transport import BacnetTransport, TransportPool

__all__ = [
    "BacnetTransport",
    "DiscoveredUnit",
    "DiscoveryError",
    "FanLeg",
    "FanMode",
    "FanProfileMode",
    "FanProfileValidationError",
    "FanSetpointChangedEvent",
    "FilterIntervalValidationError",
    "FlexitError",
    "ObjectRef",
    "Point",
    "PointBlockedError",
    "ReadBackError",
    "TransportPool",
    "UnitNotFoundError",
    "UnitRegistry",
    "UnitSink",
    "UnitState",
    "UnitUnreachableError",
    "WriteFailedError",
    "WriteTimeoutError",
    "build_discover_request",
    "discover_units",
    "find_unit_by_serial",
    "list_ipv4_interfaces",
    "parse_reply",
    "resolve_fan_mode",
]
