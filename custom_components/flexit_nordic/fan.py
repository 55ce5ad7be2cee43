"""Fan platform for Flexit Nordic."""

from __future__ import annotations

import logging

from homeassistant.components.fan import FanEntity, FanEntityFeature
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from flexit_nordic_lib import FanMode, FlexitError
from flexit_nordic_lib.const import CAP_FAN_MODE, CAP_SUPPLY_FAN_SPEED

from . import async_get_device, async_get_registry
from .device import FlexitNordicDevice
from .entity import FlexitNordicEntity

_LOGGER = logging.getLogger(__name__)

PRESET_MODES = [mode.value for mode in FanMode]


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the ventilation fan from a config entry."""
    async_add_entities([FlexitNordicFan(async_get_device(hass, entry))])


class FlexitNordicFan(FlexitNordicEntity, FanEntity):
    """Ventilation mode exposed as fan presets."""

    _attr_supported_features = FanEntityFeature.PRESET_MODE
    _attr_preset_modes = PRESET_MODES
    _attr_name = "Ventilation"
    _attr_icon = "mdi:hvac"

    def __init__(self, device: FlexitNordicDevice) -> None:
        """Initialize the fan."""
        super().__init__(device, "fan")

    @property
    def is_on(self) -> bool:
        """Return true if the unit is ventilating."""
        speed = self._device.values.get(CAP_SUPPLY_FAN_SPEED)
        return speed is None or speed > 0

    @property
    def percentage(self) -> int | None:
        """Return the current supply fan speed."""
        speed = self._device.values.get(CAP_SUPPLY_FAN_SPEED)
        return None if speed is None else round(speed)

    @property
    def preset_mode(self) -> str | None:
        return self._device.values.get(CAP_FAN_MODE)

    async def async_set_preset_mode(self, preset_mode: str) -> None:
        """Switch the unit to a ventilation mode."""
        registry = async_get_registry(self.hass)
        try:
            await registry.set_fan_mode(self._device.unit_id, FanMode(preset_mode))
        except (FlexitError, OSError) as err:
            raise HomeAssistantError(f"Could not set mode {preset_mode}: {err}") from err
        # Show the requested mode until the next poll confirms it
        self._device.values[CAP_FAN_MODE] = preset_mode
        self.async_write_ha_state()
