"""PulsePal Pulse Stimulator Python Interface"""

from .connection import PulsePalConnection
from .constants import MAX_PULSE_LENGTH, MAX_TIME_PERIOD, MAX_VOLTAGE, MIN_TIME_PERIOD, MIN_VOLTAGE
from .device import PulsePal
from .exceptions import (
    ConnectionError,
    ProtocolError,
    PulsePalError,
    TimeoutError,
    ValidationError,
)
from .parameters import ParameterKind, ParameterSetting
from .types import (
    ChannelTriggers,
    ConnectionState,
    CustomTrainId,
    CustomTrainTarget,
    OutputChannel,
    ParameterCode,
    PulseOnset,
    TriggerChannel,
    TriggerMode,
)

__all__ = [
    "ChannelTriggers",
    "ConnectionError",
    "ConnectionState",
    "CustomTrainId",
    "CustomTrainTarget",
    "MAX_PULSE_LENGTH",
    "MAX_TIME_PERIOD",
    "MAX_VOLTAGE",
    "MIN_TIME_PERIOD",
    "MIN_VOLTAGE",
    "OutputChannel",
    "ParameterCode",
    "ParameterKind",
    "ParameterSetting",
    "ProtocolError",
    "PulseOnset",
    "PulsePal",
    "PulsePalConnection",
    "PulsePalError",
    "TimeoutError",
    "TriggerChannel",
    "TriggerMode",
    "ValidationError",
]
__version__ = "0.1.0"
