"""Base entity for Flexit Nordic."""

from __future__ import annotations

from homeassistant.core import callback
from homeassistant.helpers.entity import Entity

from .device import FlexitNordicDevice


class FlexitNordicEntity(Entity):
    """Entity backed by a unit's pushed state."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(self, device: FlexitNordicDevice, key: str) -> None:
        self._device = device
        self._attr_unique_id = f"{device.entry.entry_id}_{key}"
        self._attr_device_info = device.device_info

    async def async_added_to_hass(self) -> None:
        """Run when entity is added to hass."""
        self._device.register_state_callback(self._handle_state_update)

    async def async_will_remove_from_hass(self) -> None:
        """Run when entity is removed from hass."""
        self._device.unregister_state_callback(self._handle_state_update)

    @callback
    def _handle_state_update(self) -> None:
        """Handle state update from the unit."""
        self.async_write_ha_state()

    @property
    def available(self) -> bool:
        """Return True if entity is available."""
        return self._device.available
