"""Constants for the Flexit Nordic integration."""

from flexit_nordic_lib.const import (
    DEFAULT_BACNET_PORT,
    DEFAULT_UNIT_NAME,
    SETTING_BACNET_PORT,
    SETTING_FILTER_INTERVAL_HOURS,
    SETTING_FILTER_INTERVAL_MONTHS,
    SETTING_IP,
    SETTING_SERIAL,
)

DOMAIN = "flexit_nordic"

MANUFACTURER = "Flexit"

# Config entry data keys
CONF_IP = SETTING_IP
CONF_BACNET_PORT = SETTING_BACNET_PORT
CONF_SERIAL = SETTING_SERIAL
CONF_MAC = "mac"
CONF_INTERFACE = "interface"

# Keys in entry.data; everything else the unit pushes lives in entry.options
DATA_SETTING_KEYS = frozenset({SETTING_IP, SETTING_BACNET_PORT, SETTING_SERIAL})

# Config entry option keys
CONF_FILTER_INTERVAL_MONTHS = SETTING_FILTER_INTERVAL_MONTHS
CONF_FILTER_INTERVAL_HOURS = SETTING_FILTER_INTERVAL_HOURS

# hass.data keys
DATA_REGISTRY = "registry"
DATA_TRANSPORTS = "transports"
DATA_DEVICES = "devices"

EVENT_FAN_SETPOINT_CHANGED = f"{DOMAIN}_fan_setpoint_changed"

# Config flow discovery (seconds)
FLOW_DISCOVERY_TIMEOUT = 5

DEFAULT_NAME = DEFAULT_UNIT_NAME
DEFAULT_PORT = DEFAULT_BACNET_PORT
