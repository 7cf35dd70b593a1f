"""
Core constants for the Nonin pulse oximeter BLE protocol.
"""

# Vendor service, matched by its display name like the platform shows it
TARGET_SERVICE_UUID = "46a970e0-0d5f-11e2-8b5e-0002a5d5c51b"
TARGET_SERVICE_NAME = f"Custom Service: {TARGET_SERVICE_UUID}"

# Continuous oximetry characteristic inside the vendor service
OXIMETRY_CHARACTERISTIC_UUID = "0aad7ea0-0d60-11e2-8e3c-0002a5d5c51b"
CHARACTERISTIC_KEYWORD = "Oximetry"

# Characteristic User Description descriptor
USER_DESCRIPTION_UUID = "00002901-0000-1000-8000-00805f9b34fb"

# Only advertised names containing this keyword are offered for connection
SUPPORTED_NAME_KEYWORD = "NONIN"

# Payload layout
PAYLOAD_MIN_LENGTH = 10
SPO2_OFFSET = 7
HEART_RATE_OFFSET = 8

# Device codes for "sensor disconnected"
HEART_RATE_DISCONNECTED = 511
SPO2_DISCONNECTED = 127

HEART_RATE_MAX = 320
SPO2_MAX = 100

# Recording
RECORD_PERIOD = 1.0
DEFAULT_RECORD_FILE = "NN3150.txt"

# Scanning
SCAN_TIMEOUT = 10.0
CONNECT_TIMEOUT = 10.0

# HRESULT_FROM_WIN32(ERROR_DEVICE_NOT_AVAILABLE), raised when the radio is off
E_DEVICE_NOT_AVAILABLE = 0x800710DF

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL client for Nonin BLE pulse oximeters"
