"""
Validated per-channel parameter settings.

Every :class:`~pulsepal.types.ParameterCode` has a fixed payload kind.  A
:class:`ParameterSetting` pairs a code with a value that has already been
checked against that kind, so settings can be built from configuration
files long before a device is connected, and applied later with
:meth:`PulsePal.apply_setting <pulsepal.device.PulsePal.apply_setting>`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .encoder import coerce_enum, validate_time, validate_voltage
from .exceptions import ValidationError
from .types import CustomTrainId, CustomTrainTarget, ParameterCode, TriggerMode


class ParameterKind(Enum):
    """Wire payload of a parameter."""

    BOOLEAN = "boolean"
    BYTE = "byte"
    TIME = "time"
    VOLTAGE = "voltage"


PARAMETER_KINDS: dict[ParameterCode, ParameterKind] = {
    ParameterCode.BIPHASIC: ParameterKind.BOOLEAN,
    ParameterCode.PHASE1_VOLTAGE: ParameterKind.VOLTAGE,
    ParameterCode.PHASE2_VOLTAGE: ParameterKind.VOLTAGE,
    ParameterCode.PHASE1_DURATION: ParameterKind.TIME,
    ParameterCode.INTER_PHASE_INTERVAL: ParameterKind.TIME,
    ParameterCode.PHASE2_DURATION: ParameterKind.TIME,
    ParameterCode.INTER_PULSE_INTERVAL: ParameterKind.TIME,
    ParameterCode.BURST_DURATION: ParameterKind.TIME,
    ParameterCode.INTER_BURST_INTERVAL: ParameterKind.TIME,
    ParameterCode.PULSE_TRAIN_DURATION: ParameterKind.TIME,
    ParameterCode.PULSE_TRAIN_DELAY: ParameterKind.TIME,
    ParameterCode.TRIGGER_ON_CHANNEL1: ParameterKind.BOOLEAN,
    ParameterCode.TRIGGER_ON_CHANNEL2: ParameterKind.BOOLEAN,
    ParameterCode.CUSTOM_TRAIN_IDENTITY: ParameterKind.BYTE,
    ParameterCode.CUSTOM_TRAIN_TARGET: ParameterKind.BYTE,
    ParameterCode.CUSTOM_TRAIN_LOOP: ParameterKind.BOOLEAN,
    ParameterCode.RESTING_VOLTAGE: ParameterKind.VOLTAGE,
    ParameterCode.TRIGGER_MODE: ParameterKind.BYTE,
}

# Enumerations carried by BYTE parameters
_BYTE_VALUES: dict[ParameterCode, type[IntEnum]] = {
    ParameterCode.CUSTOM_TRAIN_IDENTITY: CustomTrainId,
    ParameterCode.CUSTOM_TRAIN_TARGET: CustomTrainTarget,
    ParameterCode.TRIGGER_MODE: TriggerMode,
}


def parameter_name(code: ParameterCode) -> str:
    """Configuration name of *code*, e.g. ``phase1_voltage``."""
    return code.name.lower()


def parse_parameter_name(name: str) -> ParameterCode:
    """Inverse of :func:`parameter_name`."""
    try:
        return ParameterCode[name.upper()]
    except KeyError as err:
        valid = [parameter_name(code) for code in ParameterCode]
        raise ValidationError(f"Unknown parameter {name!r}; expected one of {valid}") from err


@dataclass(frozen=True)
class ParameterSetting:
    """A parameter code together with a value valid for its kind.

    Enumerated values may be given as members, integers or member names
    (``"toggle"``); they are normalized to the enum member.
    """

    code: ParameterCode
    value: bool | int | float

    def __post_init__(self) -> None:
        code = coerce_enum(ParameterCode, self.code, "parameter code")
        object.__setattr__(self, "code", code)
        object.__setattr__(self, "value", _normalize(code, self.value))

    @property
    def kind(self) -> ParameterKind:
        return PARAMETER_KINDS[self.code]

    @property
    def name(self) -> str:
        return parameter_name(self.code)


def _normalize(code: ParameterCode, value: object) -> bool | int | float:
    label = parameter_name(code)
    match PARAMETER_KINDS[code]:
        case ParameterKind.BOOLEAN:
            if not isinstance(value, bool):
                raise ValidationError(f"{label} must be a boolean, got {value!r}")
            return value
        case ParameterKind.BYTE:
            enum_cls = _BYTE_VALUES[code]
            if isinstance(value, str):
                try:
                    return enum_cls[value.upper()]
                except KeyError as err:
                    names = [member.name.lower() for member in enum_cls]
                    raise ValidationError(
                        f"{label} must be one of {names}, got {value!r}"
                    ) from err
            return coerce_enum(enum_cls, value, label)
        case ParameterKind.TIME:
            validate_time(value, label)
            return value
        case ParameterKind.VOLTAGE:
            validate_voltage(value, label)
            return value
