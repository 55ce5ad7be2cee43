"""Constants for the Flexit Nordic BACnet/IP and discovery protocols."""

# Discovery multicast
DISCOVERY_REQUEST_GROUP = "224.0.0.180"
DISCOVERY_REQUEST_PORT = 30000
DISCOVERY_REPLY_GROUP = "224.0.0.181"
DISCOVERY_REPLY_PORT = 30001
DISCOVERY_REQUEST_LENGTH = 104
DISCOVERY_CLIENT_TAG = "ABTMobile"
DISCOVERY_QUERY = "?Devices=All"

DEFAULT_DISCOVERY_TIMEOUT = 5.0
DEFAULT_BURST_COUNT = 10
DEFAULT_BURST_INTERVAL = 0.3

# Serial families handled by this integration
NORDIC_SERIAL_PREFIXES = ("8001", "8002", "8003")
DEFAULT_UNIT_NAME = "Flexit Unit"

# BACnet
DEFAULT_BACNET_PORT = 47808
DEFAULT_WRITE_PRIORITY = 13
# The vendor app writes these points at priority 16
VENDOR_APP_WRITE_PRIORITY = 16
MAX_APDU_LENGTH = 1476
LOCAL_DEVICE_INSTANCE = 4194302

# Timing (seconds)
POLL_INTERVAL = 10
RPC_TIMEOUT = 5
POLL_RETRY_DELAY = 1
WRITE_VERIFY_WINDOW = 60
FAILURE_THRESHOLD = 3
REDISCOVERY_INTERVAL = 60
REDISCOVERY_TIMEOUT = 2.0
REDISCOVERY_BURST_COUNT = 3
REDISCOVERY_BURST_INTERVAL = 0.3

# Value matching
VALUE_TOLERANCE = 0.01
SETTING_SYNC_TOLERANCE = 0.5

# Mode control
TRIGGER_VALUE = 2
DEFAULT_FIREPLACE_MINUTES = 10
MIN_FIREPLACE_MINUTES = 1
MAX_FIREPLACE_MINUTES = 360

# Temperature setpoint
MIN_SETPOINT = 10.0
MAX_SETPOINT = 30.0
SETPOINT_STEP = 0.5

# Filter interval
FILTER_HOURS_PER_MONTH = 732
MIN_FILTER_INTERVAL_MONTHS = 3
MAX_FILTER_INTERVAL_MONTHS = 12
MIN_FILTER_INTERVAL_HOURS = MIN_FILTER_INTERVAL_MONTHS * FILTER_HOURS_PER_MONTH
MAX_FILTER_INTERVAL_HOURS = MAX_FILTER_INTERVAL_MONTHS * FILTER_HOURS_PER_MONTH

# Sink setting keys
SETTING_IP = "ip"
SETTING_BACNET_PORT = "bacnet_port"
SETTING_SERIAL = "serial"
SETTING_FILTER_INTERVAL_MONTHS = "filter_change_interval_months"
SETTING_FILTER_INTERVAL_HOURS = "filter_change_interval_hours"
SETTING_TARGET_TEMPERATURE_HOME = "target_temperature_home"
SETTING_TARGET_TEMPERATURE_AWAY = "target_temperature_away"

# Capability keys pushed to sinks
CAP_TARGET_TEMPERATURE = "target_temperature"
CAP_SUPPLY_TEMPERATURE = "supply_temperature"
CAP_OUTDOOR_TEMPERATURE = "outdoor_temperature"
CAP_EXTRACT_TEMPERATURE = "extract_temperature"
CAP_EXHAUST_TEMPERATURE = "exhaust_temperature"
CAP_HUMIDITY = "humidity"
CAP_HEATER_POWER = "heater_power"
CAP_SUPPLY_FAN_RPM = "supply_fan_rpm"
CAP_EXTRACT_FAN_RPM = "extract_fan_rpm"
CAP_SUPPLY_FAN_SPEED = "supply_fan_speed"
CAP_EXTRACT_FAN_SPEED = "extract_fan_speed"
CAP_SUPPLY_FAN_SETPOINT = "supply_fan_setpoint"
CAP_EXTRACT_FAN_SETPOINT = "extract_fan_setpoint"
CAP_FILTER_LIFE = "filter_life"
CAP_FAN_MODE = "fan_mode"
