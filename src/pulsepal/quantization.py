"""
Exact conversion between physical units and PulsePal device units.

Times are expressed on the device in cycles of a 20 kHz clock and voltages in
DAC steps whose resolution depends on the firmware.  Both conversions are done
in rational arithmetic so that boundary values (``3600 s``, ``±10 V``, ``0 V``)
land on exact integers::

    >>> seconds_to_cycles(0.0001)
    2
    >>> volts_to_steps(0, 0xFFFF)
    32768

The functions here do not range-check their inputs beyond the cycle ceiling;
:class:`~pulsepal.encoder.CommandWriter` validates before quantizing.
"""

from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction

from .constants import (
    CYCLE_FREQUENCY,
    DAC_MAX_8BIT,
    DAC_MAX_16BIT,
    FIRMWARE_16BIT_DAC,
    FIRMWARE_UNSUPPORTED,
    MAX_CYCLE_PERIOD,
    MAX_VOLTAGE,
    MIN_VOLTAGE,
)
from .exceptions import ProtocolError, ValidationError

Number = int | float | Decimal | Fraction

_VOLTAGE_SPAN = MAX_VOLTAGE - MIN_VOLTAGE


def to_exact(value: Number) -> Fraction:
    """Return *value* as an exact :class:`~fractions.Fraction`.

    Floats are converted through their shortest ``repr`` so ``0.1`` becomes
    exactly one tenth instead of the nearest binary fraction.
    """
    if isinstance(value, Fraction):
        return value
    if isinstance(value, (int, Decimal)):
        return Fraction(value)
    return Fraction(repr(float(value)))


def seconds_to_cycles(seconds: Number) -> int:
    """Convert *seconds* to device clock cycles, rounding half up.

    Raises:
        ValidationError: If the result exceeds :data:`MAX_CYCLE_PERIOD`.
    """
    cycles = math.floor(to_exact(seconds) * CYCLE_FREQUENCY + Fraction(1, 2))
    if cycles > MAX_CYCLE_PERIOD:
        raise ValidationError(
            f"{seconds} s exceeds the maximum PulsePal time interval "
            f"({MAX_CYCLE_PERIOD} cycles)"
        )
    return cycles


def cycles_to_seconds(cycles: int) -> float:
    return cycles / CYCLE_FREQUENCY


def volts_to_steps(volts: Number, dac_max: int) -> int:
    """Quantize *volts* to a DAC step: ``ceil((volts + 10) / 20 * dac_max)``."""
    return math.ceil((to_exact(volts) - MIN_VOLTAGE) / _VOLTAGE_SPAN * dac_max)


def steps_to_volts(steps: int, dac_max: int) -> float:
    """Return a voltage which :func:`volts_to_steps` maps back to *steps*.

    Step 0 only contains -10 V exactly; every other step is represented by
    the midpoint of its bucket.
    """
    if steps <= 0:
        return float(MIN_VOLTAGE)
    midpoint = (Fraction(steps) - Fraction(1, 2)) * _VOLTAGE_SPAN / dac_max + MIN_VOLTAGE
    return float(midpoint)


def dac_max_for_firmware(firmware_version: int) -> int:
    """Return the DAC full-scale value used by *firmware_version*.

    Raises:
        ProtocolError: If the firmware is too new to be supported.
    """
    if firmware_version < FIRMWARE_16BIT_DAC:
        return DAC_MAX_8BIT
    if firmware_version < FIRMWARE_UNSUPPORTED:
        return DAC_MAX_16BIT
    raise ProtocolError(f"Unknown PulsePal firmware version {firmware_version}.")


def voltage_width(dac_max: int) -> int:
    """Number of bytes used on the wire for one voltage value."""
    return 2 if dac_max > DAC_MAX_8BIT else 1
