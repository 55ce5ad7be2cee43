"""Tests for the Home Assistant glue: entry setup, options flow and entity errors."""

from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import pytest

pytest.importorskip("homeassistant")

from homeassistant.exceptions import ConfigEntryNotReady, HomeAssistantError  # noqa: E402

from custom_components.flexit_nordic import async_setup_entry  # noqa: E402
from custom_components.flexit_nordic.button import FlexitNordicFilterResetButton  # noqa: E402
from custom_components.flexit_nordic.climate import FlexitNordicClimate  # noqa: E402
from custom_components.flexit_nordic.config_flow import FlexitNordicOptionsFlow  # noqa: E402
from custom_components.flexit_nordic.const import (  # noqa: E402
    CONF_FILTER_INTERVAL_HOURS,
    CONF_FILTER_INTERVAL_MONTHS,
    DATA_DEVICES,
    DOMAIN,
)
from custom_components.flexit_nordic.fan import FlexitNordicFan  # noqa: E402
from flexit_nordic_lib import FanMode  # noqa: E402
from flexit_nordic_lib.exceptions import UnitUnreachableError  # noqa: E402
from flexit_nordic_lib.model import FAN_PROFILE_RANGES, fan_profile_setting_key  # noqa: E402

from .conftest import UNIT_ID  # noqa: E402


def _entry(options=None):
    entry = MagicMock()
    entry.entry_id = "entry-1"
    entry.unique_id = UNIT_ID
    entry.title = "Nordic"
    entry.data = {"ip": "192.0.2.10", "bacnet_port": 47808}
    entry.options = options or {}
    return entry


def _hass():
    hass = MagicMock()
    hass.data = {}
    hass.config_entries.async_forward_entry_setups = AsyncMock()
    return hass


class TestSetupEntry:
    async def test_transport_bind_failure_is_not_ready(self):
        hass = _hass()
        pool = MagicMock()
        pool.get = AsyncMock(side_effect=OSError("address in use"))
        registry = MagicMock()
        registry.register = AsyncMock()

        with (
            patch("custom_components.flexit_nordic.TransportPool", return_value=pool),
            patch("custom_components.flexit_nordic.UnitRegistry", return_value=registry),
            pytest.raises(ConfigEntryNotReady, match="port 47808"),
        ):
            await async_setup_entry(hass, _entry())

        registry.register.assert_not_awaited()
        assert hass.data[DOMAIN][DATA_DEVICES] == {}

    async def test_transport_started_before_register(self):
        hass = _hass()
        calls = []
        pool = MagicMock()
        pool.get = AsyncMock(side_effect=lambda port: calls.append(("get", port)))
        registry = MagicMock()
        registry.register = AsyncMock(side_effect=lambda unit_id, sink: calls.append(("register", unit_id)))

        with (
            patch("custom_components.flexit_nordic.TransportPool", return_value=pool),
            patch("custom_components.flexit_nordic.UnitRegistry", return_value=registry),
        ):
            assert await async_setup_entry(hass, _entry())

        assert calls == [("get", 47808), ("register", UNIT_ID)]
        assert "entry-1" in hass.data[DOMAIN][DATA_DEVICES]


def _profile_options():
    options = {
        fan_profile_setting_key(mode, leg): low
        for mode, legs in FAN_PROFILE_RANGES.items()
        for leg, (low, _high) in legs.items()
    }
    options[CONF_FILTER_INTERVAL_MONTHS] = 6
    options[CONF_FILTER_INTERVAL_HOURS] = 4392
    return options


class TestOptionsFlow:
    @pytest.fixture
    def entry(self):
        entry = _entry(_profile_options())
        with patch.object(
            FlexitNordicOptionsFlow, "config_entry", new_callable=PropertyMock, return_value=entry
        ):
            yield entry

    async def test_saves_values_read_back_from_unit(self, entry):
        registry = MagicMock()

        async def write_interval(unit_id, hours):
            # The unit's sink persists the verified values into the entry options
            entry.options = {
                **entry.options,
                CONF_FILTER_INTERVAL_MONTHS: 12,
                CONF_FILTER_INTERVAL_HOURS: hours,
            }

        registry.set_filter_change_interval = AsyncMock(side_effect=write_interval)
        registry.set_fan_profile_mode = AsyncMock()
        flow = FlexitNordicOptionsFlow()
        flow.hass = _hass()
        user_input = {**_profile_options(), CONF_FILTER_INTERVAL_MONTHS: 12}
        user_input.pop(CONF_FILTER_INTERVAL_HOURS)

        with (
            patch(
                "custom_components.flexit_nordic.config_flow.async_get_registry",
                return_value=registry,
            ),
            patch.object(flow, "async_create_entry", return_value={"type": "create_entry"}) as create,
        ):
            await flow.async_step_init(user_input)

        registry.set_fan_profile_mode.assert_not_awaited()
        registry.set_filter_change_interval.assert_awaited_once_with(UNIT_ID, 8784)
        saved = create.call_args.kwargs["data"]
        assert saved[CONF_FILTER_INTERVAL_MONTHS] == 12
        assert saved[CONF_FILTER_INTERVAL_HOURS] == 8784

    async def test_unreachable_unit_shows_error(self, entry):
        registry = MagicMock()
        registry.set_filter_change_interval = AsyncMock(side_effect=OSError("network down"))
        flow = FlexitNordicOptionsFlow()
        flow.hass = _hass()
        user_input = {**_profile_options(), CONF_FILTER_INTERVAL_MONTHS: 12}

        with (
            patch(
                "custom_components.flexit_nordic.config_flow.async_get_registry",
                return_value=registry,
            ),
            patch.object(flow, "async_create_entry") as create,
            patch.object(flow, "async_show_form", return_value={"type": "form"}) as show,
        ):
            await flow.async_step_init(user_input)

        create.assert_not_called()
        assert show.call_args.kwargs["errors"] == {"base": "cannot_connect"}


def _device():
    device = MagicMock()
    device.unit_id = UNIT_ID
    device.entry = _entry()
    device.device_info = None
    device.values = {}
    return device


class TestEntityErrors:
    @pytest.mark.parametrize("error", [OSError("network down"), UnitUnreachableError("no answer")])
    async def test_fan_preset(self, error):
        registry = MagicMock()
        registry.set_fan_mode = AsyncMock(side_effect=error)
        fan = FlexitNordicFan(_device())
        fan.hass = _hass()

        with (
            patch("custom_components.flexit_nordic.fan.async_get_registry", return_value=registry),
            pytest.raises(HomeAssistantError, match="Could not set mode away"),
        ):
            await fan.async_set_preset_mode(FanMode.AWAY.value)

    async def test_climate_setpoint(self):
        registry = MagicMock()
        registry.write_setpoint = AsyncMock(side_effect=OSError("network down"))
        climate = FlexitNordicClimate(_device())
        climate.hass = _hass()

        with (
            patch("custom_components.flexit_nordic.climate.async_get_registry", return_value=registry),
            pytest.raises(HomeAssistantError, match="Could not set temperature"),
        ):
            await climate.async_set_temperature(temperature=21.0)

    async def test_filter_reset_button(self):
        registry = MagicMock()
        registry.reset_filter_timer = AsyncMock(side_effect=OSError("network down"))
        button = FlexitNordicFilterResetButton(_device())
        button.hass = _hass()

        with (
            patch("custom_components.flexit_nordic.button.async_get_registry", return_value=registry),
            pytest.raises(HomeAssistantError, match="Filter timer reset failed"),
        ):
            await button.async_press()
