"""Sensor platform for Flexit Nordic."""

from __future__ import annotations

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorEntityDescription,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import (
    PERCENTAGE,
    REVOLUTIONS_PER_MINUTE,
    EntityCategory,
    UnitOfPower,
    UnitOfTemperature,
)
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from flexit_nordic_lib.const import (
    CAP_EXHAUST_TEMPERATURE,
    CAP_EXTRACT_FAN_RPM,
    CAP_EXTRACT_FAN_SETPOINT,
    CAP_EXTRACT_FAN_SPEED,
    CAP_EXTRACT_TEMPERATURE,
    CAP_FAN_MODE,
    CAP_FILTER_LIFE,
    CAP_HEATER_POWER,
    CAP_HUMIDITY,
    CAP_OUTDOOR_TEMPERATURE,
    CAP_SUPPLY_FAN_RPM,
    CAP_SUPPLY_FAN_SETPOINT,
    CAP_SUPPLY_FAN_SPEED,
    CAP_SUPPLY_TEMPERATURE,
)

from . import async_get_device
from .device import FlexitNordicDevice
from .entity import FlexitNordicEntity


def _temperature(key: str, name: str) -> SensorEntityDescription:
    return SensorEntityDescription(
        key=key,
        name=name,
        device_class=SensorDeviceClass.TEMPERATURE,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=UnitOfTemperature.CELSIUS,
    )


def _percent(key: str, name: str, icon: str = "mdi:fan") -> SensorEntityDescription:
    return SensorEntityDescription(
        key=key,
        name=name,
        icon=icon,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=PERCENTAGE,
    )


def _rpm(key: str, name: str) -> SensorEntityDescription:
    return SensorEntityDescription(
        key=key,
        name=name,
        icon="mdi:fan",
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=REVOLUTIONS_PER_MINUTE,
        entity_category=EntityCategory.DIAGNOSTIC,
    )


SENSORS: tuple[SensorEntityDescription, ...] = (
    _temperature(CAP_SUPPLY_TEMPERATURE, "Supply air temperature"),
    _temperature(CAP_OUTDOOR_TEMPERATURE, "Outdoor air temperature"),
    _temperature(CAP_EXTRACT_TEMPERATURE, "Extract air temperature"),
    _temperature(CAP_EXHAUST_TEMPERATURE, "Exhaust air temperature"),
    SensorEntityDescription(
        key=CAP_HUMIDITY,
        name="Extract air humidity",
        device_class=SensorDeviceClass.HUMIDITY,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=PERCENTAGE,
    ),
    SensorEntityDescription(
        key=CAP_HEATER_POWER,
        name="Heater power",
        device_class=SensorDeviceClass.POWER,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=UnitOfPower.WATT,
    ),
    _rpm(CAP_SUPPLY_FAN_RPM, "Supply fan speed"),
    _rpm(CAP_EXTRACT_FAN_RPM, "Extract fan speed"),
    _percent(CAP_SUPPLY_FAN_SPEED, "Supply fan output"),
    _percent(CAP_EXTRACT_FAN_SPEED, "Extract fan output"),
    _percent(CAP_SUPPLY_FAN_SETPOINT, "Supply fan setpoint"),
    _percent(CAP_EXTRACT_FAN_SETPOINT, "Extract fan setpoint"),
    _percent(CAP_FILTER_LIFE, "Filter life", icon="mdi:air-filter"),
    SensorEntityDescription(
        key=CAP_FAN_MODE,
        name="Ventilation mode",
        icon="mdi:hvac",
        device_class=SensorDeviceClass.ENUM,
        options=["away", "home", "high", "fireplace"],
    ),
)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    device = async_get_device(hass, entry)
    async_add_entities(FlexitNordicSensor(device, description) for description in SENSORS)


class FlexitNordicSensor(FlexitNordicEntity, SensorEntity):
    """One value pushed by the unit on every poll."""

    def __init__(self, device: FlexitNordicDevice, description: SensorEntityDescription) -> None:
        super().__init__(device, description.key)
        self.entity_description = description

    @property
    def native_value(self):
        return self._device.values.get(self.entity_description.key)
