"""The Flexit Nordic integration."""

from __future__ import annotations

import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady

from flexit_nordic_lib import FlexitError, TransportPool, UnitRegistry

from .const import CONF_BACNET_PORT, DATA_DEVICES, DATA_REGISTRY, DATA_TRANSPORTS, DEFAULT_PORT, DOMAIN
from .device import FlexitNordicDevice

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [Platform.BUTTON, Platform.CLIMATE, Platform.FAN, Platform.SENSOR]


def async_get_registry(hass: HomeAssistant) -> UnitRegistry:
    """Return the shared unit registry, creating it on first use."""
    domain_data = hass.data.setdefault(DOMAIN, {})
    if DATA_REGISTRY not in domain_data:
        transports = TransportPool()
        domain_data[DATA_TRANSPORTS] = transports
        domain_data[DATA_REGISTRY] = UnitRegistry(transports)
        domain_data[DATA_DEVICES] = {}
    return domain_data[DATA_REGISTRY]


def async_get_transports(hass: HomeAssistant) -> TransportPool:
    async_get_registry(hass)
    return hass.data[DOMAIN][DATA_TRANSPORTS]


def async_get_device(hass: HomeAssistant, entry: ConfigEntry) -> FlexitNordicDevice:
    return hass.data[DOMAIN][DATA_DEVICES][entry.entry_id]


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up a Flexit Nordic unit from a config entry."""
    registry = async_get_registry(hass)
    device = FlexitNordicDevice(hass, entry)
    port = entry.data.get(CONF_BACNET_PORT, DEFAULT_PORT)

    try:
        await async_get_transports(hass).get(port)
    except (FlexitError, OSError) as err:
        raise ConfigEntryNotReady(f"Cannot open BACnet transport on port {port}: {err}") from err

    await registry.register(device.unit_id, device)

    hass.data[DOMAIN][DATA_DEVICES][entry.entry_id] = device

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    if unload_ok := await hass.config_entries.async_unload_platforms(entry, PLATFORMS):
        domain_data = hass.data[DOMAIN]
        device: FlexitNordicDevice = domain_data[DATA_DEVICES].pop(entry.entry_id)
        registry: UnitRegistry = domain_data[DATA_REGISTRY]
        await registry.unregister(device.unit_id, device)

        if not domain_data[DATA_DEVICES]:
            _LOGGER.debug("Last Flexit Nordic unit unloaded, closing transports")
            await registry.shutdown()
            await domain_data[DATA_TRANSPORTS].close()
            hass.data.pop(DOMAIN)

    return unload_ok
