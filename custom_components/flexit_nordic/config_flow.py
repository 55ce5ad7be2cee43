"""Config flow for Flexit Nordic integration."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry, ConfigFlow, ConfigFlowResult, OptionsFlow
from homeassistant.const import CONF_NAME
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError

from flexit_nordic_lib import (
    DiscoveredUnit,
    FanLeg,
    FanProfileMode,
    FanProfileValidationError,
    FilterIntervalValidationError,
    FlexitError,
    Point,
    discover_units,
    list_ipv4_interfaces,
)
from flexit_nordic_lib.const import (
    MAX_FILTER_INTERVAL_MONTHS,
    MIN_FILTER_INTERVAL_MONTHS,
    RPC_TIMEOUT,
)
from flexit_nordic_lib.model import (
    FAN_PROFILE_RANGES,
    fan_profile_setting_key,
    filter_interval_months_to_hours,
)

from . import async_get_registry, async_get_transports
from .const import (
    CONF_BACNET_PORT,
    CONF_FILTER_INTERVAL_MONTHS,
    CONF_INTERFACE,
    CONF_IP,
    CONF_MAC,
    CONF_SERIAL,
    DEFAULT_NAME,
    DEFAULT_PORT,
    DOMAIN,
    FLOW_DISCOVERY_TIMEOUT,
)

_LOGGER = logging.getLogger(__name__)

MANUAL_ENTRY = "manual"
AUTO_INTERFACE = "auto"


async def validate_connection(hass: HomeAssistant, ip: str, port: int) -> None:
    """Read one point from the unit.

    Raises CannotConnect if the unit does not answer.
    """
    try:
        transport = await async_get_transports(hass).get(port)
        values = await asyncio.wait_for(
            transport.read_points(ip, port, [Point.OUTDOOR_TEMPERATURE.ref]), RPC_TIMEOUT
        )
    except (TimeoutError, FlexitError, OSError) as err:
        raise CannotConnect from err
    if not values:
        raise CannotConnect


class FlexitNordicConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Flexit Nordic."""

    VERSION = 1

    def __init__(self) -> None:
        """Initialize."""
        self._discovered_units: list[DiscoveredUnit] = []
        self._interface: str = AUTO_INTERFACE

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> FlexitNordicOptionsFlow:
        return FlexitNordicOptionsFlow()

    async def _async_discover(self) -> list[DiscoveredUnit]:
        try:
            return await discover_units(
                interface_address=self._interface, timeout=FLOW_DISCOVERY_TIMEOUT
            )
        except (FlexitError, OSError) as err:
            _LOGGER.warning("Discovery failed: %s", err)
            return []

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Pick the interface to search on."""
        interfaces = await self.hass.async_add_executor_job(list_ipv4_interfaces)
        if len(interfaces) <= 1:
            return await self.async_step_pick_unit()

        if user_input is not None:
            self._interface = user_input[CONF_INTERFACE]
            return await self.async_step_pick_unit()

        interface_options = {AUTO_INTERFACE: "All interfaces"}
        for nic in interfaces:
            interface_options[nic.address] = f"{nic.name} ({nic.address})"

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {vol.Required(CONF_INTERFACE, default=AUTO_INTERFACE): vol.In(interface_options)}
            ),
        )

    async def async_step_pick_unit(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Scan for units and let the user choose one."""
        if user_input is not None:
            selection = user_input.get("unit")
            if selection == MANUAL_ENTRY:
                return await self.async_step_manual()

            for unit in self._discovered_units:
                if unit.serial_normalized == selection:
                    return await self._async_create_or_update_entry(unit)

        self._discovered_units = await self._async_discover()

        configured = self._async_current_ids()
        candidates = [
            unit for unit in self._discovered_units if unit.serial_normalized not in configured
        ]
        if not candidates:
            return await self.async_step_manual()

        unit_options = {
            unit.serial_normalized: f"{unit.name} {unit.model or ''} ({unit.ip})".replace("  ", " ")
            for unit in candidates
        }
        unit_options[MANUAL_ENTRY] = "Enter IP address manually..."

        return self.async_show_form(
            step_id="pick_unit",
            data_schema=vol.Schema({vol.Required("unit"): vol.In(unit_options)}),
        )

    async def async_step_manual(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle manual IP entry."""
        errors: dict[str, str] = {}

        if user_input is not None:
            ip = user_input[CONF_IP].strip()
            port = user_input[CONF_BACNET_PORT]
            serial = user_input.get(CONF_SERIAL, "").strip()
            name = user_input.get(CONF_NAME, "").strip() or DEFAULT_NAME

            try:
                await validate_connection(self.hass, ip, port)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except Exception:
                _LOGGER.exception("Unexpected exception during setup")
                errors["base"] = "unknown"
            else:
                unit = DiscoveredUnit(
                    name=name,
                    serial=serial,
                    serial_normalized="".join(ch for ch in serial if ch.isdigit()),
                    ip=ip,
                    port=port,
                )
                return await self._async_create_or_update_entry(unit)

        return self.async_show_form(
            step_id="manual",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_IP): str,
                    vol.Required(CONF_BACNET_PORT, default=DEFAULT_PORT): vol.Coerce(int),
                    vol.Optional(CONF_SERIAL, default=""): str,
                    vol.Optional(CONF_NAME, default=""): str,
                }
            ),
            errors=errors,
        )

    async def async_step_reconfigure(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle reconfiguration, update the IP address."""
        entry = self._get_reconfigure_entry()

        if user_input is not None:
            selection = user_input.get("unit")
            if selection == MANUAL_ENTRY:
                return await self.async_step_reconfigure_manual()

            for unit in self._discovered_units:
                if unit.ip == selection:
                    return self.async_update_reload_and_abort(
                        entry,
                        data_updates={CONF_IP: unit.ip, CONF_BACNET_PORT: unit.port},
                    )

        self._discovered_units = await self._async_discover()

        if not self._discovered_units:
            return await self.async_step_reconfigure_manual()

        current_ip = entry.data.get(CONF_IP, "")
        unit_options = {}
        for unit in self._discovered_units:
            label = f"{unit.name} ({unit.ip})"
            if unit.ip == current_ip:
                label += " (current)"
            unit_options[unit.ip] = label
        unit_options[MANUAL_ENTRY] = "Enter IP address manually..."

        return self.async_show_form(
            step_id="reconfigure",
            data_schema=vol.Schema({vol.Required("unit"): vol.In(unit_options)}),
        )

    async def async_step_reconfigure_manual(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle manual IP entry during reconfiguration."""
        errors: dict[str, str] = {}
        entry = self._get_reconfigure_entry()

        if user_input is not None:
            ip = user_input[CONF_IP].strip()
            port = user_input[CONF_BACNET_PORT]
            try:
                await validate_connection(self.hass, ip, port)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except Exception:
                _LOGGER.exception("Unexpected exception during reconfigure")
                errors["base"] = "unknown"
            else:
                return self.async_update_reload_and_abort(
                    entry,
                    data_updates={CONF_IP: ip, CONF_BACNET_PORT: port},
                )

        return self.async_show_form(
            step_id="reconfigure_manual",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_IP, default=entry.data.get(CONF_IP, "")): str,
                    vol.Required(
                        CONF_BACNET_PORT, default=entry.data.get(CONF_BACNET_PORT, DEFAULT_PORT)
                    ): vol.Coerce(int),
                }
            ),
            errors=errors,
        )

    async def _async_create_or_update_entry(self, unit: DiscoveredUnit) -> ConfigFlowResult:
        """Create a config entry from a discovered unit."""
        # Serial is the stable identity; fall back to the address
        unique_id = unit.serial_normalized or unit.ip
        await self.async_set_unique_id(unique_id)
        self._abort_if_unique_id_configured(
            updates={CONF_IP: unit.ip, CONF_BACNET_PORT: unit.port}
        )

        title = unit.name or DEFAULT_NAME

        return self.async_create_entry(
            title=title,
            data={
                CONF_IP: unit.ip,
                CONF_BACNET_PORT: unit.port,
                CONF_SERIAL: unit.serial,
                CONF_MAC: unit.mac,
                CONF_NAME: title,
            },
        )


class FlexitNordicOptionsFlow(OptionsFlow):
    """Edit fan profiles and the filter change interval on the unit."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        errors: dict[str, str] = {}
        options = self.config_entry.options

        if user_input is not None:
            try:
                await self._async_apply(user_input)
            except (FanProfileValidationError, FilterIntervalValidationError) as err:
                _LOGGER.warning("Rejected options for %s: %s", self.config_entry.title, err)
                errors["base"] = "invalid_value"
            except (FlexitError, OSError) as err:
                _LOGGER.error("Could not write options to %s: %s", self.config_entry.title, err)
                errors["base"] = "cannot_connect"
            else:
                # Options now hold the values read back from the unit
                return self.async_create_entry(data=dict(self.config_entry.options))

        schema: dict[Any, Any] = {}
        for mode, legs in FAN_PROFILE_RANGES.items():
            for leg, (low, high) in legs.items():
                key = fan_profile_setting_key(mode, leg)
                default = options.get(key)
                marker = (
                    vol.Required(key, default=default) if default is not None else vol.Required(key)
                )
                schema[marker] = vol.All(vol.Coerce(int), vol.Range(min=low, max=high))
        months = options.get(CONF_FILTER_INTERVAL_MONTHS)
        months_marker = (
            vol.Required(CONF_FILTER_INTERVAL_MONTHS, default=months)
            if months is not None
            else vol.Required(CONF_FILTER_INTERVAL_MONTHS)
        )
        schema[months_marker] = vol.All(
            vol.Coerce(int),
            vol.Range(min=MIN_FILTER_INTERVAL_MONTHS, max=MAX_FILTER_INTERVAL_MONTHS),
        )

        return self.async_show_form(step_id="init", data_schema=vol.Schema(schema), errors=errors)

    async def _async_apply(self, user_input: dict[str, Any]) -> None:
        registry = async_get_registry(self.hass)
        unit_id = self.config_entry.unique_id or self.config_entry.entry_id
        options = self.config_entry.options

        for mode in FanProfileMode:
            supply_key = fan_profile_setting_key(mode, FanLeg.SUPPLY)
            exhaust_key = fan_profile_setting_key(mode, FanLeg.EXHAUST)
            supply = user_input[supply_key]
            exhaust = user_input[exhaust_key]
            if options.get(supply_key) == supply and options.get(exhaust_key) == exhaust:
                continue
            await registry.set_fan_profile_mode(unit_id, mode, supply, exhaust)

        months = user_input[CONF_FILTER_INTERVAL_MONTHS]
        if options.get(CONF_FILTER_INTERVAL_MONTHS) != months:
            await registry.set_filter_change_interval(
                unit_id, filter_interval_months_to_hours(months)
            )


class CannotConnect(HomeAssistantError):
    """Error to indicate we cannot connect."""
