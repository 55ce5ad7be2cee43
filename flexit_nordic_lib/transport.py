"""BACnet/IP transport for talking to Flexit Nordic units."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from bac_py import Client, DeviceConfig
from bac_py.encoding.primitives import (
    decode_application_value,
    encode_application_enumerated,
    encode_application_real,
    encode_application_unsigned,
)
from bac_py.network.address import parse_address
from bac_py.services.errors import BACnetBaseError, BACnetError, BACnetTimeoutError
from bac_py.services.read_property_multiple import PropertyReference, ReadAccessSpecification
from bac_py.types.enums import PropertyIdentifier

from .const import DEFAULT_BACNET_PORT, LOCAL_DEVICE_INSTANCE, MAX_APDU_LENGTH
from .exceptions import FlexitError, UnitUnreachableError, WriteFailedError, WriteTimeoutError
from .points import ObjectRef, ValueKind

_LOGGER = logging.getLogger(__name__)

APDU_TIMEOUT_MS = 10000


def encode_value(value: float, kind: ValueKind) -> bytes:
    """Encode a value with the application tag the point expects."""
    if kind is ValueKind.REAL:
        return encode_application_real(float(value))
    if kind is ValueKind.UNSIGNED:
        return encode_application_unsigned(int(round(value)))
    return encode_application_enumerated(int(round(value)))


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return None


class BacnetTransport:
    """One bac-py client bound to a local UDP port.

    Several units may share a transport; requests carry the unit address.
    """

    def __init__(self, port: int = DEFAULT_BACNET_PORT) -> None:
        self.port = port
        self._client: Client | None = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        async with self._lock:
            if self._client is not None:
                return
            config = DeviceConfig(
                instance_number=LOCAL_DEVICE_INSTANCE,
                name="flexit-nordic",
                port=self.port,
                apdu_timeout=APDU_TIMEOUT_MS,
                max_apdu_length=MAX_APDU_LENGTH,
            )
            client = Client(config)
            await client.__aenter__()
            self._client = client
            _LOGGER.debug("BACnet transport started on UDP port %s", self.port)

    async def stop(self) -> None:
        async with self._lock:
            if self._client is None:
                return
            client, self._client = self._client, None
            await client.__aexit__(None, None, None)
            _LOGGER.debug("BACnet transport on UDP port %s stopped", self.port)

    def _require_client(self) -> Client:
        if self._client is None:
            raise FlexitError(f"BACnet transport on port {self.port} is not started")
        return self._client

    async def read_points(
        self, ip: str, port: int, refs: Iterable[ObjectRef]
    ) -> dict[ObjectRef, float]:
        """Read present-value of several points in one request.

        Points that fail individually or hold non-numeric values are left
        out of the result. Transport-level failures propagate.
        """
        client = self._require_client()
        specs = [
            ReadAccessSpecification(
                object_identifier=ref.to_object_identifier(),
                list_of_property_references=[
                    PropertyReference(PropertyIdentifier.PRESENT_VALUE)
                ],
            )
            for ref in refs
        ]
        try:
            ack = await client.read_property_multiple(parse_address(f"{ip}:{port}"), specs)
        except BACnetTimeoutError as err:
            raise TimeoutError(f"Read from {ip}:{port} timed out") from err
        except BACnetBaseError as err:
            raise UnitUnreachableError(f"Read from {ip}:{port} failed: {err}") from err

        values: dict[ObjectRef, float] = {}
        for result in ack.list_of_read_access_results:
            ref = ObjectRef.from_object_identifier(result.object_identifier)
            for element in result.list_of_results:
                if element.property_access_error is not None:
                    _LOGGER.debug(
                        "Read of %s failed: %s", ref, element.property_access_error
                    )
                    continue
                if not element.property_value:
                    continue
                try:
                    number = _as_number(decode_application_value(element.property_value))
                except ValueError as err:
                    _LOGGER.debug("Could not decode %s: %s", ref, err)
                    continue
                if number is not None:
                    values[ref] = number
        return values

    async def write_point(
        self,
        ip: str,
        port: int,
        ref: ObjectRef,
        value: float,
        kind: ValueKind,
        priority: int | None,
    ) -> None:
        """Write present-value of one point.

        Raises WriteFailedError carrying the BACnet error code when the
        unit rejects the write, WriteTimeoutError when it does not answer.
        """
        client = self._require_client()
        try:
            await client.write_property(
                parse_address(f"{ip}:{port}"),
                ref.to_object_identifier(),
                PropertyIdentifier.PRESENT_VALUE,
                encode_value(value, kind),
                priority,
            )
        except BACnetError as err:
            raise WriteFailedError(
                f"Write to {ref} rejected: {err}", code=int(err.error_code)
            ) from err
        except BACnetTimeoutError as err:
            raise WriteTimeoutError(f"Write to {ref} timed out") from err
        except BACnetBaseError as err:
            raise WriteFailedError(f"Write to {ref} failed: {err}") from err


class TransportPool:
    """Shares one started transport per local UDP port."""

    def __init__(self, factory=BacnetTransport) -> None:
        self._factory = factory
        self._transports: dict[int, BacnetTransport] = {}
        self._lock = asyncio.Lock()

    async def get(self, port: int = DEFAULT_BACNET_PORT) -> BacnetTransport:
        port = int(port) or DEFAULT_BACNET_PORT
        async with self._lock:
            transport = self._transports.get(port)
            if transport is None:
                transport = self._factory(port)
                await transport.start()
                self._transports[port] = transport
            return transport

    async def close(self) -> None:
        async with self._lock:
            transports = list(self._transports.values())
            self._transports.clear()
        for transport in transports:
            try:
                await transport.stop()
            except (OSError, BACnetBaseError) as err:
                _LOGGER.warning("Error stopping transport on port %s: %s", transport.port, err)
