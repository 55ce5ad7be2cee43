"""Button platform for Flexit Nordic."""

from __future__ import annotations

import logging

from homeassistant.components.button import ButtonEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from flexit_nordic_lib import FlexitError

from . import async_get_device, async_get_registry
from .device import FlexitNordicDevice
from .entity import FlexitNordicEntity

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    async_add_entities([FlexitNordicFilterResetButton(async_get_device(hass, entry))])


class FlexitNordicFilterResetButton(FlexitNordicEntity, ButtonEntity):
    """Resets the filter operating time after a filter change."""

    _attr_name = "Reset filter timer"
    _attr_icon = "mdi:air-filter"
    _attr_entity_category = EntityCategory.CONFIG

    def __init__(self, device: FlexitNordicDevice) -> None:
        super().__init__(device, "filter_reset")

    async def async_press(self) -> None:
        registry = async_get_registry(self.hass)
        try:
            await registry.reset_filter_timer(self._device.unit_id)
        except (FlexitError, OSError) as err:
            raise HomeAssistantError(f"Filter timer reset failed: {err}") from err
        _LOGGER.info("Filter timer reset on %s", self._device.name)
