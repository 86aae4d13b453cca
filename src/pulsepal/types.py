"""
Enumerations and small value types shared across the PulsePal driver.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, IntFlag


class OutputChannel(IntEnum):
    """Physical analog stimulation outputs."""

    CHANNEL1 = 1
    CHANNEL2 = 2
    CHANNEL3 = 3
    CHANNEL4 = 4


class TriggerChannel(IntEnum):
    """Logical trigger inputs which start pulse trains on linked outputs."""

    CHANNEL1 = 1
    CHANNEL2 = 2


class ChannelTriggers(IntFlag):
    """Bitmask selecting output channels for a software trigger."""

    NONE = 0
    CHANNEL1 = 1
    CHANNEL2 = 2
    CHANNEL3 = 4
    CHANNEL4 = 8


class ParameterCode(IntEnum):
    """Parameter identifiers understood by the program-parameter opcode."""

    BIPHASIC = 1
    PHASE1_VOLTAGE = 2
    PHASE2_VOLTAGE = 3
    PHASE1_DURATION = 4
    INTER_PHASE_INTERVAL = 5
    PHASE2_DURATION = 6
    INTER_PULSE_INTERVAL = 7
    BURST_DURATION = 8
    INTER_BURST_INTERVAL = 9
    PULSE_TRAIN_DURATION = 10
    PULSE_TRAIN_DELAY = 11
    TRIGGER_ON_CHANNEL1 = 12
    TRIGGER_ON_CHANNEL2 = 13
    CUSTOM_TRAIN_IDENTITY = 14
    CUSTOM_TRAIN_TARGET = 15
    CUSTOM_TRAIN_LOOP = 16
    RESTING_VOLTAGE = 17
    TRIGGER_MODE = 128


class CustomTrainId(IntEnum):
    """Device-resident custom pulse train slots."""

    NONE = 0
    CUSTOM_TRAIN_1 = 1
    CUSTOM_TRAIN_2 = 2


class CustomTrainTarget(IntEnum):
    """How pulse times in a custom train are interpreted."""

    PULSE_ONSET = 0
    BURST_ONSET = 1


class TriggerMode(IntEnum):
    """Behavior of a trigger channel."""

    NORMAL = 0
    TOGGLE = 1
    PULSE_GATED = 2


class ConnectionState(Enum):
    """Lifecycle state of a :class:`~pulsepal.connection.PulsePalConnection`."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    FAULTED = "faulted"


@dataclass(frozen=True)
class PulseOnset:
    """A single pulse in a custom train: onset *time* (s) and *voltage* (V)."""

    time: float
    voltage: float
