"""
PulsePal stimulator interface.

Python API for programming a PulsePal pulse generator over its serial link:
per-channel stimulation parameters, custom pulse trains, software triggers,
the oLED display, and the continuous-loop and client-id settings.

Protocol details:
    - Link: 12 Mbaud, 8N1, DTR off, RTS on
    - Every command starts with the menu-select byte (213) and an opcode
    - Times are sent as 32-bit counts of 20 kHz cycles, voltages as 8- or
      16-bit DAC steps depending on firmware
    - Only the handshake is answered; commands are not acknowledged

Device-side behavior worth knowing: continuous or overlapping pulses in a
custom train merge, and on a biphasic channel the second phase of each
custom pulse uses the negated voltage of the first.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from .connection import PulsePalConnection
from .constants import (
    CLIENT_ID_LENGTH,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT,
    LINE_BREAK,
    MAX_DISPLAY_CHARACTERS,
    MAX_PULSE_LENGTH,
    OP_ABORT,
    OP_CLIENT_ID,
    OP_LOOP,
    OP_SET_VOLTAGE,
    OP_TRIGGER,
    OP_UPDATE_DISPLAY,
)
from .encoder import encode_text, validate_output_channel, validate_time
from .exceptions import ValidationError
from .parameters import ParameterKind, ParameterSetting
from .quantization import Number, to_exact
from .transport import SerialTransport
from .types import (
    ChannelTriggers,
    CustomTrainId,
    CustomTrainTarget,
    OutputChannel,
    ParameterCode,
    PulseOnset,
    TriggerChannel,
    TriggerMode,
)

logger = logging.getLogger(__name__)

_ALL_CHANNELS = int(
    ChannelTriggers.CHANNEL1
    | ChannelTriggers.CHANNEL2
    | ChannelTriggers.CHANNEL3
    | ChannelTriggers.CHANNEL4
)


def _validate_pulse_count(count: int) -> None:
    if count > MAX_PULSE_LENGTH:
        raise ValidationError(
            f"Custom pulse train has {count} pulses; the maximum is {MAX_PULSE_LENGTH}"
        )


class PulsePal(PulsePalConnection):
    """Interface for a PulsePal pulse stimulator.

    Use as a context manager for automatic connection handling::

        with PulsePal("/dev/ttyACM0") as pulse_pal:
            pulse_pal.set_phase1_voltage(OutputChannel.CHANNEL1, 5.0)
            pulse_pal.trigger_output_channels(ChannelTriggers.CHANNEL1)

    Every command is validated completely before anything is written; a
    command that fails validation sends nothing.  Commands issued from
    several threads are serialized on an internal lock.
    """

    def __init__(
        self,
        port: str = DEFAULT_PORT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        transport: SerialTransport | None = None,
    ) -> None:
        super().__init__(port, read_timeout, transport)
        self._lock = threading.RLock()

    def close(self) -> None:
        # Waits for a command in flight so the disconnect notice is not interleaved
        with self._lock:
            super().close()

    # -- Generic parameter programming --------------------------------------

    def program_parameter(self, channel: int, code: ParameterCode, value: bool | int | float) -> None:
        """Program *code* to *value* on *channel*.

        *channel* is an output channel, or a trigger channel for
        ``ParameterCode.TRIGGER_MODE``.
        """
        self.apply_setting(channel, ParameterSetting(code, value))

    def apply_setting(self, channel: int, setting: ParameterSetting) -> None:
        """Send one validated :class:`~pulsepal.parameters.ParameterSetting`."""
        with self._lock, self._command() as writer:
            writer.write_program_header(channel, setting.code)
            match setting.kind:
                case ParameterKind.BOOLEAN:
                    writer.write_bool(setting.value)
                case ParameterKind.BYTE:
                    writer.write_byte(int(setting.value))
                case ParameterKind.TIME:
                    writer.write_time(setting.value)
                case ParameterKind.VOLTAGE:
                    writer.write_voltage(setting.value)
        logger.debug("Channel %d: %s = %r", int(channel), setting.name, setting.value)

    # -- Output channel parameters ------------------------------------------

    def set_biphasic(self, channel: OutputChannel, biphasic: bool) -> None:
        """Produce biphasic (``True``) or monophasic (``False``) pulses."""
        self.program_parameter(channel, ParameterCode.BIPHASIC, biphasic)

    def set_phase1_voltage(self, channel: OutputChannel, volts: float) -> None:
        """Voltage of the first phase of each pulse, in [-10, 10] V."""
        self.program_parameter(channel, ParameterCode.PHASE1_VOLTAGE, volts)

    def set_phase2_voltage(self, channel: OutputChannel, volts: float) -> None:
        """Voltage of the second phase of each pulse, in [-10, 10] V."""
        self.program_parameter(channel, ParameterCode.PHASE2_VOLTAGE, volts)

    def set_phase1_duration(self, channel: OutputChannel, seconds: float) -> None:
        """Duration of the first phase of each pulse, in [0.0001, 3600] s."""
        self.program_parameter(channel, ParameterCode.PHASE1_DURATION, seconds)

    def set_inter_phase_interval(self, channel: OutputChannel, seconds: float) -> None:
        """Interval between the two phases of a biphasic pulse."""
        self.program_parameter(channel, ParameterCode.INTER_PHASE_INTERVAL, seconds)

    def set_phase2_duration(self, channel: OutputChannel, seconds: float) -> None:
        """Duration of the second phase of each pulse, in [0.0001, 3600] s."""
        self.program_parameter(channel, ParameterCode.PHASE2_DURATION, seconds)

    def set_inter_pulse_interval(self, channel: OutputChannel, seconds: float) -> None:
        self.program_parameter(channel, ParameterCode.INTER_PULSE_INTERVAL, seconds)

    def set_burst_duration(self, channel: OutputChannel, seconds: float) -> None:
        """Duration of a pulse burst, in [0.0001, 3600] s."""
        self.program_parameter(channel, ParameterCode.BURST_DURATION, seconds)

    def set_inter_burst_interval(self, channel: OutputChannel, seconds: float) -> None:
        self.program_parameter(channel, ParameterCode.INTER_BURST_INTERVAL, seconds)

    def set_pulse_train_duration(self, channel: OutputChannel, seconds: float) -> None:
        self.program_parameter(channel, ParameterCode.PULSE_TRAIN_DURATION, seconds)

    def set_pulse_train_delay(self, channel: OutputChannel, seconds: float) -> None:
        """Delay between a trigger and the start of the pulse train."""
        self.program_parameter(channel, ParameterCode.PULSE_TRAIN_DELAY, seconds)

    def set_trigger_on_channel1(self, channel: OutputChannel, enabled: bool) -> None:
        """Link (``True``) or unlink *channel* from trigger channel 1."""
        self.program_parameter(channel, ParameterCode.TRIGGER_ON_CHANNEL1, enabled)

    def set_trigger_on_channel2(self, channel: OutputChannel, enabled: bool) -> None:
        """Link (``True``) or unlink *channel* from trigger channel 2."""
        self.program_parameter(channel, ParameterCode.TRIGGER_ON_CHANNEL2, enabled)

    def set_custom_train_identity(self, channel: OutputChannel, train_id: CustomTrainId) -> None:
        """Select which custom train (or none) drives *channel*."""
        self.program_parameter(channel, ParameterCode.CUSTOM_TRAIN_IDENTITY, train_id)

    def set_custom_train_target(self, channel: OutputChannel, target: CustomTrainTarget) -> None:
        """Whether custom train times mark pulse onsets or burst onsets."""
        self.program_parameter(channel, ParameterCode.CUSTOM_TRAIN_TARGET, target)

    def set_custom_train_loop(self, channel: OutputChannel, loop: bool) -> None:
        """Loop the custom train for the whole pulse train duration."""
        self.program_parameter(channel, ParameterCode.CUSTOM_TRAIN_LOOP, loop)

    def set_resting_voltage(self, channel: OutputChannel, volts: float) -> None:
        """Voltage between phases, pulses and trains, in [-10, 10] V."""
        self.program_parameter(channel, ParameterCode.RESTING_VOLTAGE, volts)

    # -- Trigger channel parameters -----------------------------------------

    def set_trigger_mode(self, channel: TriggerChannel, mode: TriggerMode) -> None:
        """Set how trigger *channel* reacts to its input."""
        self.program_parameter(channel, ParameterCode.TRIGGER_MODE, mode)

    # -- Custom pulse trains ------------------------------------------------

    def send_custom_pulse_train(
        self,
        train_id: CustomTrainId,
        pulse_times: Sequence[float],
        pulse_voltages: Sequence[float],
    ) -> None:
        """Program a custom train from parallel onset-time and voltage arrays.

        Args:
            train_id: Train slot to program.
            pulse_times: Onset times in seconds from the start of the train;
                strictly increasing, at least 0.0001 s apart.
            pulse_voltages: One voltage per pulse, in [-10, 10] V.

        Raises:
            ValidationError: On length mismatch, more than 1000 pulses,
                non-increasing times, or values out of range.
        """
        if pulse_times is None or pulse_voltages is None:
            raise ValidationError("Pulse times and voltages are required")
        if len(pulse_times) != len(pulse_voltages):
            raise ValidationError(
                f"Got {len(pulse_voltages)} pulse voltages for {len(pulse_times)} pulse times"
            )
        self._send_pulse_train(train_id, list(pulse_times), list(pulse_voltages))

    def send_custom_pulse_train_onsets(
        self, train_id: CustomTrainId, pulse_train: Sequence[PulseOnset]
    ) -> None:
        """Program a custom train from a sequence of :class:`PulseOnset`."""
        if pulse_train is None:
            raise ValidationError("Pulse train is required")
        _validate_pulse_count(len(pulse_train))
        times = [onset.time for onset in pulse_train]
        voltages = [onset.voltage for onset in pulse_train]
        self._send_pulse_train(train_id, times, voltages)

    def send_custom_pulse_train_table(
        self, train_id: CustomTrainId, pulse_train: Sequence[Sequence[float]]
    ) -> None:
        """Program a custom train from a 2×N table.

        Row 0 holds onset times in seconds and row 1 the matching voltages.
        """
        if pulse_train is None:
            raise ValidationError("Pulse train is required")
        if len(pulse_train) != 2:
            raise ValidationError(
                f"Pulse train table must have exactly two rows, got {len(pulse_train)}"
            )
        times, voltages = list(pulse_train[0]), list(pulse_train[1])
        if len(times) != len(voltages):
            raise ValidationError("Pulse train table rows must have the same length")
        self._send_pulse_train(train_id, times, voltages)

    def send_custom_waveform(
        self,
        train_id: CustomTrainId,
        sampling_period: float,
        pulse_voltages: Sequence[float],
    ) -> None:
        """Program a train of continuous pulses with periodic onsets.

        Pulse *i* starts at ``i * sampling_period``; each pulse lasts one
        period, so consecutive pulses merge into a sampled waveform.
        """
        if pulse_voltages is None:
            raise ValidationError("Pulse voltages are required")
        _validate_pulse_count(len(pulse_voltages))
        validate_time(sampling_period, "sampling period")
        period = to_exact(sampling_period)
        times = [period * i for i in range(len(pulse_voltages))]
        self._send_pulse_train(train_id, times, list(pulse_voltages), monotonic=False)

    def _send_pulse_train(
        self,
        train_id: CustomTrainId,
        times: list[Number],
        voltages: list[Number],
        monotonic: bool = True,
    ) -> None:
        _validate_pulse_count(len(times))
        with self._lock, self._command() as writer:
            writer.write_train_header(train_id)
            writer.write_uint32(len(times))
            write_time = writer.write_monotonic_time if monotonic else writer.write_onset_time
            for seconds in times:
                write_time(seconds)
            for volts in voltages:
                writer.write_voltage(volts)
        logger.debug("Custom train %s: %d pulses", train_id, len(times))

    # -- One-shot commands --------------------------------------------------

    def trigger_output_channels(self, channels: ChannelTriggers | int) -> None:
        """Start the pulse trains on every output channel in *channels*."""
        if isinstance(channels, bool) or not isinstance(channels, int) or not (
            0 <= int(channels) <= _ALL_CHANNELS
        ):
            raise ValidationError(f"Channel mask must be 0-{_ALL_CHANNELS}, got {channels!r}")
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_TRIGGER)
            writer.write_byte(int(channels))

    def update_display(self, row1: str, row2: str = "") -> None:
        """Show text on the oLED display.

        Each row is truncated to 16 characters; *row2* is optional.
        """
        message = encode_text(row1, MAX_DISPLAY_CHARACTERS)
        if row2:
            message += bytes((LINE_BREAK,)) + encode_text(row2, MAX_DISPLAY_CHARACTERS)
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_UPDATE_DISPLAY)
            writer.write_byte(len(message))
            writer.write_bytes(message)

    def set_fixed_voltage(self, channel: OutputChannel, volts: float) -> None:
        """Hold *channel* at a constant voltage in [-10, 10] V."""
        channel = validate_output_channel(channel)
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_SET_VOLTAGE)
            writer.write_byte(int(channel))
            writer.write_voltage(volts)

    def abort_pulse_trains(self) -> None:
        """Stop every pulse train currently playing."""
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_ABORT)

    def set_continuous_loop(self, channel: OutputChannel, loop: bool) -> None:
        """Play *channel*'s train indefinitely once triggered (``True``)."""
        channel = validate_output_channel(channel)
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_LOOP)
            writer.write_byte(int(channel))
            writer.write_bool(loop)

    def set_client_id(self, client_id: str) -> None:
        """Name the connected application on the device menu.

        Exactly six ASCII characters are sent: shorter ids are padded with
        spaces, longer ones truncated.
        """
        encoded = encode_text(client_id, CLIENT_ID_LENGTH).ljust(CLIENT_ID_LENGTH, b" ")
        with self._lock, self._command() as writer:
            writer.write_opcode(OP_CLIENT_ID)
            writer.write_bytes(encoded)
