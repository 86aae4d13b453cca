"""
PulsePal command encoding: validation helpers and the transactional writer.

One outgoing command is accumulated in a reusable buffer inside a ``with``
block and handed to the transport in a single write when the block exits::

    with CommandWriter(buffer, transport.write, dac_max) as writer:
        writer.write_program_header(OutputChannel.CHANNEL1, ParameterCode.RESTING_VOLTAGE)
        writer.write_voltage(0.0)

If any field fails validation the buffer is emptied before the error is
raised, so a partially encoded command never reaches the device.

The buffer has a single writer.  Callers sharing a connection must not run
two transactions at once; :class:`~pulsepal.device.PulsePal` serializes its
own commands.
"""

from __future__ import annotations

import logging
import math
import numbers
import struct
from collections.abc import Callable
from decimal import Decimal
from enum import Enum, IntEnum
from typing import NoReturn, TypeVar

from .constants import (
    MAX_DATA_BYTES,
    MAX_TIME_PERIOD,
    MAX_VOLTAGE,
    MIN_TIME_PERIOD,
    MIN_VOLTAGE,
    OP_MENU,
    OP_PROGRAM_PARAM,
    OP_PROGRAM_TRAIN_1,
    OP_PROGRAM_TRAIN_2,
)
from .exceptions import ValidationError
from .quantization import Number, seconds_to_cycles, to_exact, voltage_width, volts_to_steps
from .types import CustomTrainId, OutputChannel, ParameterCode, TriggerChannel

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=IntEnum)

_MIN_TIME = to_exact(MIN_TIME_PERIOD)
_MAX_TIME = to_exact(MAX_TIME_PERIOD)

_TRAIN_OPCODES = {
    CustomTrainId.CUSTOM_TRAIN_1: OP_PROGRAM_TRAIN_1,
    CustomTrainId.CUSTOM_TRAIN_2: OP_PROGRAM_TRAIN_2,
}

# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def coerce_enum(enum_cls: type[E], value: object, label: str) -> E:
    """Return *value* as a member of *enum_cls* or raise :class:`ValidationError`."""
    if isinstance(value, enum_cls):
        return value
    # Members of another enum (e.g. a TriggerChannel passed as an OutputChannel) never alias
    if isinstance(value, (bool, Enum)) or not isinstance(value, int):
        raise ValidationError(f"Invalid {label} {value!r}; expected one of {list(enum_cls)}")
    try:
        return enum_cls(value)
    except ValueError as err:
        raise ValidationError(f"Invalid {label} {value}; expected one of {list(enum_cls)}") from err


def validate_output_channel(channel: int) -> OutputChannel:
    return coerce_enum(OutputChannel, channel, "output channel")


def validate_trigger_channel(channel: int) -> TriggerChannel:
    return coerce_enum(TriggerChannel, channel, "trigger channel")


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (numbers.Real, Decimal)):
        return False
    return math.isfinite(float(value))


def validate_time(seconds: Number, label: str = "time") -> None:
    """Check *seconds* is within ``[0.0001, 3600]``."""
    if not _is_finite_number(seconds):
        raise ValidationError(f"{label} must be a finite number of seconds, got {seconds!r}")
    if not (_MIN_TIME <= to_exact(seconds) <= _MAX_TIME):
        raise ValidationError(
            f"{label} must be {MIN_TIME_PERIOD}-{MAX_TIME_PERIOD} s, got {seconds}"
        )


def validate_onset(seconds: Number, label: str = "pulse time") -> None:
    """Check a pulse onset is within ``[0, 3600]``; a train may start at 0."""
    if not _is_finite_number(seconds):
        raise ValidationError(f"{label} must be a finite number of seconds, got {seconds!r}")
    if not (0 <= to_exact(seconds) <= _MAX_TIME):
        raise ValidationError(f"{label} must be 0-{MAX_TIME_PERIOD} s, got {seconds}")


def validate_voltage(volts: Number, label: str = "voltage") -> None:
    """Check *volts* is within ``[-10, 10]``."""
    if not _is_finite_number(volts):
        raise ValidationError(f"{label} must be a finite number of volts, got {volts!r}")
    if not (MIN_VOLTAGE <= volts <= MAX_VOLTAGE):
        raise ValidationError(f"{label} must be {MIN_VOLTAGE}-{MAX_VOLTAGE} V, got {volts}")


def encode_text(text: str, max_chars: int) -> bytes:
    """Encode *text* as ASCII, silently truncated to *max_chars* characters."""
    return text[:max_chars].encode("ascii", errors="replace")


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class CommandWriter:
    """Accumulates one command and flushes it atomically.

    Args:
        buffer: Reusable byte buffer owned by the connection.  It is cleared
            when the transaction starts and after it ends.
        sink: Called exactly once with the encoded command on success.
        dac_max_value: DAC full-scale value; selects the voltage width.
        capacity: Maximum command length in bytes.
    """

    def __init__(
        self,
        buffer: bytearray,
        sink: Callable[[bytes], object],
        dac_max_value: int,
        capacity: int = MAX_DATA_BYTES,
    ) -> None:
        self._buffer = buffer
        self._sink = sink
        self._dac_max = dac_max_value
        self._capacity = capacity
        self._previous_time = -_MIN_TIME

    def __enter__(self) -> CommandWriter:
        self.reset()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.reset()
            return
        if not self._buffer:
            return
        data = bytes(self._buffer)
        self.reset()
        logger.debug("TX: %s", data.hex(" "))
        self._sink(data)

    def __len__(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        """Discard everything written so far in this transaction."""
        self._buffer.clear()
        self._previous_time = -_MIN_TIME

    # -- Primitive fields ---------------------------------------------------

    def write_byte(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or not (0 <= value <= 0xFF):
            self._fail(f"Byte value must be 0-255, got {value!r}")
        self._append(bytes((value,)))

    def write_bool(self, value: bool) -> None:
        self._append(b"\x01" if value else b"\x00")

    def write_uint16(self, value: int) -> None:
        if not (0 <= value <= 0xFFFF):
            self._fail(f"16-bit value out of range: {value}")
        self._append(struct.pack("<H", value))

    def write_uint32(self, value: int) -> None:
        if not (0 <= value <= 0xFFFFFFFF):
            self._fail(f"32-bit value out of range: {value}")
        self._append(struct.pack("<I", value))

    def write_bytes(self, data: bytes) -> None:
        self._append(bytes(data))

    def write_text(self, text: str, max_chars: int) -> None:
        """Write ASCII *text*, truncated to *max_chars* characters, unpadded."""
        self._append(encode_text(text, max_chars))

    # -- Quantized fields ---------------------------------------------------

    def write_time(self, seconds: Number) -> None:
        """Quantize a duration in ``[0.0001, 3600]`` s to cycles and write
        it as a 32-bit value."""
        self._write_seconds(seconds, validate_time)

    def write_onset_time(self, seconds: Number) -> None:
        """Like :meth:`write_time`, for a pulse onset, which may be ``0``."""
        self._write_seconds(seconds, validate_onset)

    def write_monotonic_time(self, seconds: Number) -> None:
        """Like :meth:`write_onset_time`, but *seconds* must follow the
        previous onset in this transaction by at least ``MIN_TIME_PERIOD``."""
        try:
            validate_onset(seconds)
        except ValidationError:
            self.reset()
            raise
        exact = to_exact(seconds)
        if exact - self._previous_time < _MIN_TIME:
            self._fail(
                "Pulse times must be monotonically increasing with at least "
                f"{MIN_TIME_PERIOD} s between onsets, got {seconds} after "
                f"{float(self._previous_time)}"
            )
        self.write_onset_time(seconds)
        self._previous_time = exact

    def write_voltage(self, volts: Number) -> None:
        """Quantize *volts* to DAC steps using the connection's resolution."""
        try:
            validate_voltage(volts)
        except ValidationError:
            self.reset()
            raise
        steps = volts_to_steps(volts, self._dac_max)
        if voltage_width(self._dac_max) == 2:
            self.write_uint16(steps)
        else:
            self.write_byte(steps)

    # -- Headers ------------------------------------------------------------

    def write_opcode(self, opcode: int) -> None:
        """Write the menu-select byte followed by *opcode*."""
        self.write_byte(OP_MENU)
        self.write_byte(opcode)

    def write_program_header(self, channel: int, parameter: ParameterCode) -> None:
        """Write the program-parameter header for *parameter* on *channel*.

        ``TRIGGER_MODE`` addresses a trigger channel; every other parameter
        addresses an output channel.
        """
        try:
            parameter = coerce_enum(ParameterCode, parameter, "parameter code")
            if parameter is ParameterCode.TRIGGER_MODE:
                channel = validate_trigger_channel(channel)
            else:
                channel = validate_output_channel(channel)
        except ValidationError:
            self.reset()
            raise
        self.write_opcode(OP_PROGRAM_PARAM)
        self.write_byte(int(parameter))
        self.write_byte(int(channel))

    def write_train_header(self, train_id: CustomTrainId) -> None:
        """Write the program-train header selecting one of the two slots."""
        try:
            train_id = coerce_enum(CustomTrainId, train_id, "pulse train id")
        except ValidationError:
            self.reset()
            raise
        opcode = _TRAIN_OPCODES.get(train_id)
        if opcode is None:
            self._fail(f"Invalid pulse train id {train_id!r}")
        self.write_opcode(opcode)

    # -- Internal -----------------------------------------------------------

    def _write_seconds(self, seconds: Number, validate: Callable[[Number], None]) -> None:
        try:
            validate(seconds)
            cycles = seconds_to_cycles(seconds)
        except ValidationError:
            self.reset()
            raise
        self.write_uint32(cycles)

    def _append(self, data: bytes) -> None:
        if len(self._buffer) + len(data) > self._capacity:
            self._fail(f"Command exceeds the {self._capacity}-byte output buffer")
        self._buffer.extend(data)

    def _fail(self, message: str) -> NoReturn:
        self.reset()
        raise ValidationError(message)
