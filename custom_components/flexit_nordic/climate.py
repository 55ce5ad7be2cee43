"""Climate platform for Flexit Nordic."""

from __future__ import annotations

from typing import Any

from homeassistant.components.climate import ClimateEntity, ClimateEntityFeature, HVACMode
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import ATTR_TEMPERATURE, UnitOfTemperature
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from flexit_nordic_lib import FlexitError
from flexit_nordic_lib.const import (
    CAP_EXTRACT_TEMPERATURE,
    CAP_HUMIDITY,
    CAP_SUPPLY_TEMPERATURE,
    CAP_TARGET_TEMPERATURE,
    MAX_SETPOINT,
    MIN_SETPOINT,
    SETPOINT_STEP,
)

from . import async_get_device, async_get_registry
from .device import FlexitNordicDevice
from .entity import FlexitNordicEntity


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    async_add_entities([FlexitNordicClimate(async_get_device(hass, entry))])


class FlexitNordicClimate(FlexitNordicEntity, ClimateEntity):
    """Supply air temperature control."""

    _attr_name = None
    _attr_hvac_modes = [HVACMode.FAN_ONLY]
    _attr_hvac_mode = HVACMode.FAN_ONLY
    _attr_supported_features = ClimateEntityFeature.TARGET_TEMPERATURE
    _attr_temperature_unit = UnitOfTemperature.CELSIUS
    _attr_min_temp = MIN_SETPOINT
    _attr_max_temp = MAX_SETPOINT
    _attr_target_temperature_step = SETPOINT_STEP

    def __init__(self, device: FlexitNordicDevice) -> None:
        super().__init__(device, "climate")

    @property
    def current_temperature(self) -> float | None:
        return self._device.values.get(CAP_SUPPLY_TEMPERATURE)

    @property
    def target_temperature(self) -> float | None:
        return self._device.values.get(CAP_TARGET_TEMPERATURE)

    @property
    def current_humidity(self) -> float | None:
        return self._device.values.get(CAP_HUMIDITY)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {"extract_temperature": self._device.values.get(CAP_EXTRACT_TEMPERATURE)}

    async def async_set_temperature(self, **kwargs: Any) -> None:
        if (temperature := kwargs.get(ATTR_TEMPERATURE)) is None:
            return
        registry = async_get_registry(self.hass)
        try:
            written = await registry.write_setpoint(self._device.unit_id, float(temperature))
        except (FlexitError, OSError) as err:
            raise HomeAssistantError(f"Could not set temperature: {err}") from err
        self._device.values[CAP_TARGET_TEMPERATURE] = written
        self.async_write_ha_state()

    async def async_set_hvac_mode(self, hvac_mode: HVACMode) -> None:
        if hvac_mode is not HVACMode.FAN_ONLY:
            raise HomeAssistantError(f"Unsupported HVAC mode {hvac_mode}")
