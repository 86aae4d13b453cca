"""Shared runtime constants for the PulsePal stimulator driver.

This is the canonical source of truth for protocol limits, wire opcodes and
driver defaults.  Other modules should import from here rather than defining
their own copies.
"""

# ---------------------------------------------------------------------------
# Serial link configuration (fixed by the device)
# ---------------------------------------------------------------------------

BAUD_RATE = 12_000_000
MAX_DATA_BYTES = 8192  # outgoing buffer capacity, also the command buffer size

# ---------------------------------------------------------------------------
# Protocol / validation limits
# ---------------------------------------------------------------------------

MIN_VOLTAGE = -10
MAX_VOLTAGE = 10
MIN_TIME_PERIOD = 0.0001  # seconds
MAX_TIME_PERIOD = 3600  # seconds

CYCLE_FREQUENCY = 20_000  # Hz
MAX_CYCLE_PERIOD = MAX_TIME_PERIOD * CYCLE_FREQUENCY
MAX_PULSE_LENGTH = 1000

MAX_DISPLAY_CHARACTERS = 16
CLIENT_ID_LENGTH = 6

# Firmware version thresholds selecting DAC resolution
FIRMWARE_16BIT_DAC = 20
FIRMWARE_UNSUPPORTED = 40
DAC_MAX_8BIT = 0xFF
DAC_MAX_16BIT = 0xFFFF

HANDSHAKE_RESPONSE_LENGTH = 5

# ---------------------------------------------------------------------------
# Wire opcodes
# ---------------------------------------------------------------------------

OP_MENU = 213
OP_HANDSHAKE = 72
ACKNOWLEDGE = 75

OP_PROGRAM_PARAM = 74
OP_PROGRAM_TRAIN_1 = 75
OP_PROGRAM_TRAIN_2 = 76
OP_TRIGGER = 77
OP_UPDATE_DISPLAY = 78
OP_SET_VOLTAGE = 79
OP_ABORT = 80
OP_DISCONNECT = 81
OP_LOOP = 82
OP_CLIENT_ID = 89
LINE_BREAK = 254

# ---------------------------------------------------------------------------
# Driver / runtime defaults
# ---------------------------------------------------------------------------

DEFAULT_PORT = "/dev/ttyACM0"
DEFAULT_READ_TIMEOUT = 0.1  # seconds; bounds how long the reader ignores a stop request
DEFAULT_JOIN_TIMEOUT = 2.0
CANCEL_POLL_INTERVAL = 0.01  # seconds between checks of an open() cancel event
