"""Exceptions raised by the Flexit Nordic library."""


class FlexitError(Exception):
    """Base class for all Flexit Nordic errors."""


class UnitNotFoundError(FlexitError):
    """Operation against a unit id that has no registered sinks."""

    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"Unit {unit_id} not found")


class FanProfileValidationError(FlexitError, ValueError):
    """Requested fan profile percentage is outside the allowed range."""


class FilterIntervalValidationError(FlexitError, ValueError):
    """Requested filter change interval is outside the allowed range."""


class WriteTimeoutError(FlexitError):
    """A write got no response within the RPC timeout."""


class WriteFailedError(FlexitError):
    """The unit rejected a write.

    ``code`` holds the BACnet error code when the unit answered with an
    Error-PDU, otherwise None.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class PointBlockedError(WriteFailedError):
    """Writes to a point are suppressed after an earlier access denial."""


class ReadBackError(FlexitError):
    """A value could not be read back after writing it."""


class DiscoveryError(FlexitError):
    """The discovery request could not be built or sent."""


class UnitUnreachableError(FlexitError):
    """A poll read was rejected or aborted by the unit or the network."""
