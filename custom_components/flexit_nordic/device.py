"""Hub-side device for a Flexit Nordic unit."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_NAME
from homeassistant.core import HomeAssistant

from flexit_nordic_lib import FanSetpointChangedEvent
from flexit_nordic_lib.model import model_from_serial

from .const import (
    CONF_IP,
    CONF_MAC,
    CONF_SERIAL,
    DATA_SETTING_KEYS,
    DEFAULT_NAME,
    DOMAIN,
    EVENT_FAN_SETPOINT_CHANGED,
    MANUFACTURER,
)

_LOGGER = logging.getLogger(__name__)


class FlexitNordicDevice:
    """Receives state for one unit from the registry and fans it out to entities.

    Settings pushed by the unit are persisted in the config entry: connection
    details in ``data``, everything else in ``options``.
    """

    def __init__(self, hass: HomeAssistant, entry: ConfigEntry) -> None:
        self.hass = hass
        self.entry = entry
        self._values: dict[str, Any] = {}
        self._available = True
        self._unavailable_reason: str | None = None
        self._state_callbacks: list[Callable[[], None]] = []

    @property
    def unit_id(self) -> str:
        return self.entry.unique_id or self.entry.entry_id

    @property
    def name(self) -> str:
        return self.entry.data.get(CONF_NAME) or self.entry.title or DEFAULT_NAME

    @property
    def values(self) -> dict[str, Any]:
        return self._values

    @property
    def available(self) -> bool:
        return self._available

    @property
    def unavailable_reason(self) -> str | None:
        return self._unavailable_reason

    @property
    def device_info(self) -> dict[str, Any]:
        serial = self.entry.data.get(CONF_SERIAL)
        info: dict[str, Any] = {
            "identifiers": {(DOMAIN, self.unit_id)},
            "name": self.name,
            "manufacturer": MANUFACTURER,
            "model": (model_from_serial(serial) if serial else None) or "Nordic",
        }
        if serial:
            info["serial_number"] = serial
        if mac := self.entry.data.get(CONF_MAC):
            info["connections"] = {("mac", mac.lower())}
        return info

    def register_state_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to be called when state changes."""
        if callback not in self._state_callbacks:
            self._state_callbacks.append(callback)

    def unregister_state_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a state callback."""
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)

    def _notify_state_change(self) -> None:
        for callback in list(self._state_callbacks):
            try:
                callback()
            except Exception as err:  # noqa: BLE001
                _LOGGER.debug("Error in state callback: %s", err)

    # Sink interface used by the registry

    def get_setting(self, key: str) -> Any:
        if key in self.entry.options:
            return self.entry.options[key]
        return self.entry.data.get(key)

    async def set_capability_values(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)
        self._notify_state_change()

    async def apply_settings(self, settings: Mapping[str, Any]) -> None:
        data = dict(self.entry.data)
        options = dict(self.entry.options)
        for key, value in settings.items():
            if key in DATA_SETTING_KEYS:
                data[key] = value
            else:
                options[key] = value

        if data == dict(self.entry.data) and options == dict(self.entry.options):
            return
        if data.get(CONF_IP) != self.entry.data.get(CONF_IP):
            _LOGGER.info(
                "Unit %s address changed to %s, updating config entry",
                self.unit_id,
                data.get(CONF_IP),
            )
        self.hass.config_entries.async_update_entry(self.entry, data=data, options=options)

    async def set_available(self) -> None:
        _LOGGER.info("%s is available", self.name)
        self._available = True
        self._unavailable_reason = None
        self._notify_state_change()

    async def set_unavailable(self, message: str) -> None:
        _LOGGER.warning("%s is unavailable: %s", self.name, message)
        self._available = False
        self._unavailable_reason = message
        self._notify_state_change()

    def on_fan_setpoint_changed(self, event: FanSetpointChangedEvent) -> None:
        self.hass.bus.async_fire(
            EVENT_FAN_SETPOINT_CHANGED,
            {
                "unit_id": event.unit_id,
                "device_name": self.name,
                "mode": event.mode.value,
                "leg": event.leg.value,
                "value": event.value,
                "previous_value": event.previous_value,
                "previous_mode": event.previous_mode.value if event.previous_mode else None,
            },
        )
