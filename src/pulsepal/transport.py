"""
Serial transport layer for the PulsePal stimulator.

Owns the physical serial connection and its fixed link configuration
(12 Mbaud, 8N1, DTR off, RTS on).  Moves raw bytes in and out and knows
nothing about what they mean; framing belongs to :mod:`encoder` and
:mod:`parser`.

Typical usage (via :class:`~pulsepal.connection.PulsePalConnection`)::

    transport = SerialTransport("/dev/ttyACM0")
    transport.open()
    transport.write(bytes([213, 72]))
    transport.close()
"""

from __future__ import annotations

import logging
import sys

import serial

from .constants import BAUD_RATE, DEFAULT_PORT, DEFAULT_READ_TIMEOUT, MAX_DATA_BYTES
from .exceptions import ConnectionError

logger = logging.getLogger(__name__)


class SerialTransport:
    """Manages the serial connection to a PulsePal device.

    Args:
        port: Serial port path (e.g. ``/dev/ttyACM0`` or ``COM3``).
        timeout: Per-read timeout in seconds.  Bounds how long a blocked
            read can delay a reader that has been asked to stop.
    """

    def __init__(
        self,
        port: str = DEFAULT_PORT,
        timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> None:
        self.port = port
        self.timeout = timeout
        self._ser: serial.Serial | None = None

    # -- Lifecycle ----------------------------------------------------------

    def open(self) -> None:
        """Open the serial port with the PulsePal link configuration.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        logger.info("Opening serial port %s at %d baud", self.port, BAUD_RATE)
        try:
            ser = serial.Serial(
                baudrate=BAUD_RATE,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
            )
            # Line states set before open() are applied when the port opens
            ser.dtr = False
            ser.rts = True
            ser.port = self.port
            ser.open()
        except serial.SerialException as exc:
            raise ConnectionError(f"Cannot open {self.port}: {exc}") from exc

        if sys.platform == "win32":
            ser.set_buffer_size(tx_size=MAX_DATA_BYTES)
        self._ser = ser

    def close(self) -> None:
        """Close the serial port (safe to call multiple times)."""
        if self._ser and self._ser.is_open:
            self._ser.close()
            logger.info("Serial port %s closed", self.port)

    @property
    def is_open(self) -> bool:
        """Return ``True`` if the serial port is currently open."""
        return self._ser is not None and self._ser.is_open

    # -- I/O ----------------------------------------------------------------

    def discard_input(self) -> None:
        """Drop any stale bytes waiting in the input buffer."""
        self._require_open().reset_input_buffer()

    def write(self, data: bytes) -> None:
        """Write *data* in one call and push it out of the OS buffer.

        Raises:
            ConnectionError: If the port is not open or the write fails.
        """
        ser = self._require_open()
        try:
            ser.write(data)
            ser.flush()
        except serial.SerialException as exc:
            raise ConnectionError(f"Write to {self.port} failed: {exc}") from exc

    @property
    def in_waiting(self) -> int:
        """Number of bytes ready to be read without blocking."""
        try:
            return self._require_open().in_waiting
        except serial.SerialException as exc:
            raise ConnectionError(f"Cannot query {self.port}: {exc}") from exc

    def read(self, size: int = 1) -> bytes:
        """Read up to *size* bytes, blocking for at most the read timeout.

        Returns an empty ``bytes`` object when the timeout expires first.
        """
        ser = self._require_open()
        try:
            data = ser.read(size)
        except serial.SerialException as exc:
            raise ConnectionError(f"Read from {self.port} failed: {exc}") from exc
        if data:
            logger.debug("RX: %s", data.hex(" "))
        return data

    def cancel_read(self) -> None:
        """Unblock a read in progress on another thread."""
        if self.is_open:
            self._ser.cancel_read()

    # -- Internal -----------------------------------------------------------

    def _require_open(self) -> serial.Serial:
        """Return the open serial port or raise."""
        if not self.is_open:
            raise ConnectionError(f"Serial port {self.port} not open; call open() first.")
        assert self._ser is not None  # for type-checker
        return self._ser
