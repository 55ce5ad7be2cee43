"""Multicast discovery of Flexit Nordic units."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import NamedTuple
import uuid

import psutil

from .const import (
    DEFAULT_BURST_COUNT,
    DEFAULT_BURST_INTERVAL,
    DEFAULT_DISCOVERY_TIMEOUT,
    DISCOVERY_CLIENT_TAG,
    DISCOVERY_QUERY,
    DISCOVERY_REPLY_GROUP,
    DISCOVERY_REPLY_PORT,
    DISCOVERY_REQUEST_GROUP,
    DISCOVERY_REQUEST_LENGTH,
    DISCOVERY_REQUEST_PORT,
)
from .exceptions import DiscoveryError
from .reply_parser import DiscoveredUnit, parse_reply

_LOGGER = logging.getLogger(__name__)

REQUEST_HEADER = (
    b"\x80\x01\x00\x04"
    b"\x00\x00\x00\x08"
    b"discover"
    b"\x00\x00\x00\x00"
    b"\x0c\x00\x01\x0b"
    b"\x00\x01\x00\x00\x00\x00"
)
REQUEST_SUFFIX = b"\x00\x00"
TLV_MARKER = 0x0B
TLV_CLIENT = 0x02
TLV_QUERY = 0x03


class InterfaceAddress(NamedTuple):
    """A local IPv4 interface usable for discovery."""

    name: str
    address: str


def list_ipv4_interfaces() -> list[InterfaceAddress]:
    """Return all non-loopback IPv4 interface addresses."""
    out: list[InterfaceAddress] = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if not addr.address or addr.address.startswith("127."):
                continue
            out.append(InterfaceAddress(name, addr.address))
    return out


def _pick_interfaces(interface_address: str | None) -> list[InterfaceAddress]:
    interfaces = list_ipv4_interfaces()
    if not interface_address or interface_address == "auto":
        return interfaces
    return [nic for nic in interfaces if nic.address == interface_address]


def _tlv(tag: int, payload: str) -> bytes:
    """Encode one field: marker, tag and length followed by ASCII payload."""
    data = payload.encode("ascii")
    return bytes([TLV_MARKER, 0x00, tag, 0x00, 0x00, 0x00, len(data) & 0xFF]) + data


def build_discover_request(client_id: uuid.UUID | None = None) -> bytes:
    """Build the proprietary discovery request.

    Units ignore anything that is not exactly 104 bytes long.
    """
    client_id = client_id or uuid.uuid4()
    request = (
        REQUEST_HEADER
        + _tlv(TLV_CLIENT, f"{DISCOVERY_CLIENT_TAG}:{client_id}")
        + _tlv(TLV_QUERY, DISCOVERY_QUERY)
        + REQUEST_SUFFIX
    )
    if len(request) != DISCOVERY_REQUEST_LENGTH:
        raise DiscoveryError(
            f"Discover payload wrong length: {len(request)} (expected {DISCOVERY_REQUEST_LENGTH})"
        )
    return request


class _ReplyProtocol(asyncio.DatagramProtocol):
    """Collects parsed replies keyed by normalized serial."""

    def __init__(self, found: dict[str, DiscoveredUnit]) -> None:
        self._found = found

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        unit = parse_reply(data, addr[0])
        if unit is None:
            _LOGGER.debug("Ignoring discovery reply from %s", addr[0])
            return
        _LOGGER.debug("Discovered %s (%s) at %s:%s", unit.name, unit.serial, unit.ip, unit.port)
        self._found[unit.serial_normalized] = unit

    def error_received(self, exc: Exception) -> None:
        _LOGGER.debug("Discovery socket error: %s", exc)


def _open_reply_socket(interfaces: list[InterfaceAddress]) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", DISCOVERY_REPLY_PORT))
        group = socket.inet_aton(DISCOVERY_REPLY_GROUP)
        for nic in interfaces:
            try:
                mreq = group + socket.inet_aton(nic.address)
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            except OSError as err:
                # Virtual interfaces often lack multicast support
                _LOGGER.debug("Multicast join on %s (%s) failed: %s", nic.name, nic.address, err)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def _open_request_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", DISCOVERY_REQUEST_PORT))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 0)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


async def discover_units(
    interface_address: str | None = None,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    burst_count: int = DEFAULT_BURST_COUNT,
    burst_interval: float = DEFAULT_BURST_INTERVAL,
) -> list[DiscoveredUnit]:
    """Locate Flexit Nordic units on the local network.

    The request is sent ``burst_count`` times on every candidate interface,
    then replies are collected until ``timeout`` seconds have passed since
    the first send. Replies are deduplicated by serial; the last one wins.
    """
    interfaces = _pick_interfaces(interface_address)
    if not interfaces:
        _LOGGER.warning("No IPv4 interface available for discovery (%s)", interface_address or "auto")
        return []

    loop = asyncio.get_running_loop()
    found: dict[str, DiscoveredUnit] = {}
    rx: socket.socket | None = None
    tx: socket.socket | None = None
    transport: asyncio.DatagramTransport | None = None

    try:
        rx = _open_reply_socket(interfaces)
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ReplyProtocol(found), sock=rx
        )
        tx = _open_request_socket()
        request = build_discover_request()

        _LOGGER.debug(
            "Sending discovery on %s (%d bursts)",
            ", ".join(nic.address for nic in interfaces),
            burst_count,
        )
        start = loop.time()
        for _ in range(burst_count):
            for nic in interfaces:
                try:
                    tx.setsockopt(
                        socket.IPPROTO_IP,
                        socket.IP_MULTICAST_IF,
                        socket.inet_aton(nic.address),
                    )
                    await loop.sock_sendto(
                        tx, request, (DISCOVERY_REQUEST_GROUP, DISCOVERY_REQUEST_PORT)
                    )
                except OSError as err:
                    _LOGGER.debug("Discovery send on %s failed: %s", nic.address, err)
            await asyncio.sleep(burst_interval)

        remaining = timeout - (loop.time() - start)
        if remaining > 0:
            await asyncio.sleep(remaining)

        return list(found.values())
    finally:
        if transport is not None:
            transport.close()
        elif rx is not None:
            rx.close()
        if tx is not None:
            tx.close()


async def find_unit_by_serial(
    serial: str,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    burst_count: int = DEFAULT_BURST_COUNT,
    burst_interval: float = DEFAULT_BURST_INTERVAL,
) -> DiscoveredUnit | None:
    """Run discovery and return the unit matching the given serial.

    Used for automatic IP recovery when a unit's address changes.
    """
    wanted = "".join(ch for ch in serial if ch.isdigit())
    units = await discover_units(
        timeout=timeout, burst_count=burst_count, burst_interval=burst_interval
    )
    for unit in units:
        if unit.serial_normalized == wanted:
            return unit
    return None
