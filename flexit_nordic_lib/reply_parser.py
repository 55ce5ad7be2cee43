"""Parser for Flexit discovery replies."""

from __future__ import annotations

from dataclasses import dataclass
import re

from .const import DEFAULT_BACNET_PORT, DEFAULT_UNIT_NAME, NORDIC_SERIAL_PREFIXES
from .model import model_from_serial

_NON_PRINTABLE = re.compile(rb"[^\x20-\x7e]+")
_SERIAL = re.compile(r"\b\d{6}-\d{6}\b")
_ENDPOINT = re.compile(r"\b(\d{1,3}(?:\.\d{1,3}){3}):(\d{2,5})\b")
_MAC = re.compile(r"\b(?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}\b")
_FIRMWARE = re.compile(r"\bFW[:=]?[A-Za-z0-9._-]+\b", re.IGNORECASE)
_NAME_TOKEN = re.compile(r"^[A-Za-z][A-Za-z0-9_]{3,}$")


@dataclass
class DiscoveredUnit:
    """A Flexit Nordic unit that answered a discovery request."""

    name: str
    serial: str
    serial_normalized: str
    ip: str
    port: int
    mac: str | None = None
    firmware: str | None = None

    @property
    def model(self) -> str | None:
        return model_from_serial(self.serial)


def is_nordic_serial(serial_normalized: str) -> bool:
    return serial_normalized.startswith(NORDIC_SERIAL_PREFIXES)


def _pick_name(tokens: list[str]) -> str:
    for token in tokens:
        if "_" in token and "." not in token and ":" not in token and len(token) >= 4:
            return token
    for token in tokens:
        if _NAME_TOKEN.match(token) and ":" not in token and "." not in token:
            return token
    return DEFAULT_UNIT_NAME


def parse_reply(payload: bytes, sender_address: str) -> DiscoveredUnit | None:
    """Extract unit identity from a raw discovery reply.

    The reply is binary with embedded ASCII fields. Returns None when no
    serial is present or the serial belongs to an unsupported family.
    """
    text = _NON_PRINTABLE.sub(b" ", payload).decode("ascii").strip()

    serial_match = _SERIAL.search(text)
    if serial_match is None:
        return None
    serial = serial_match.group(0)
    serial_normalized = re.sub(r"[^0-9]", "", serial)
    if not is_nordic_serial(serial_normalized):
        return None

    endpoint = _ENDPOINT.search(text)
    if endpoint:
        ip = endpoint.group(1)
        port = int(endpoint.group(2))
    else:
        ip = sender_address
        port = DEFAULT_BACNET_PORT

    mac_match = _MAC.search(text)
    firmware_match = _FIRMWARE.search(text)

    return DiscoveredUnit(
        name=_pick_name(text.split()),
        serial=serial,
        serial_normalized=serial_normalized,
        ip=ip,
        port=port,
        mac=mac_match.group(0) if mac_match else None,
        firmware=firmware_match.group(0) if firmware_match else None,
    )
