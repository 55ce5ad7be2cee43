"""Diagnostics support for Flexit Nordic."""

from __future__ import annotations

from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from . import async_get_device, async_get_registry


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    device = async_get_device(hass, entry)
    registry = async_get_registry(hass)
    return {
        "entry": {"data": dict(entry.data), "options": dict(entry.options)},
        "available": device.available,
        "unavailable_reason": device.unavailable_reason,
        "values": dict(device.values),
        "unit": registry.get_unit_snapshot(device.unit_id),
    }
