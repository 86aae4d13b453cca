"""Shared pytest fixtures for PulsePal tests."""

from __future__ import annotations

import struct
import threading
import time
from collections.abc import Callable, Iterator
from unittest.mock import patch

import pytest

from pulsepal import PulsePal, PulsePalConnection
from pulsepal.transport import SerialTransport


def handshake_reply(firmware_version: int, marker: int = 75) -> bytes:
    """Build the 5-byte handshake acknowledgement frame."""
    return bytes((marker,)) + struct.pack("<i", firmware_version)


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll *predicate* until it is true or *timeout* expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class FakeSerial:
    """Thread-safe stand-in for ``serial.Serial``.

    Implements the subset of the pyserial API used by
    :class:`~pulsepal.transport.SerialTransport`: ``open``, ``write``,
    ``read``, ``in_waiting``, ``flush``, ``reset_input_buffer``,
    ``cancel_read``, ``close``, ``is_open`` and the ``dtr``/``rts``/``port``
    attributes.

    Writing the handshake command (``213 72``) queues
    :attr:`handshake_reply` for the reader, so opening a connection works
    without extra setup.  Set it to ``None`` to simulate a silent device.

    Reads block briefly while no data is queued, like a port opened with a
    short timeout.  Set :attr:`block_reads` to make them block like a port
    opened without a timeout, until data arrives, ``cancel_read`` is
    called or the port is closed.
    """

    HANDSHAKE = bytes((213, 72))

    def __init__(self) -> None:
        self.is_open: bool = False
        self.port: str | None = None
        self.dtr: bool = True
        self.rts: bool = False
        self.written: list[bytes] = []
        self.handshake_reply: bytes | None = handshake_reply(20)
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None
        self.block_reads: bool = False
        self._read_cancelled = False
        self._rx = bytearray()
        self._cond = threading.Condition()

    # -- Helpers for tests --------------------------------------------------

    def feed(self, data: bytes) -> None:
        """Queue *data* as if the device had sent it."""
        with self._cond:
            self._rx.extend(data)
            self._cond.notify_all()

    def fail_reads(self, exc: Exception) -> None:
        """Make the next (and every later) read raise *exc*."""
        with self._cond:
            self.read_error = exc
            self._cond.notify_all()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._rx)

    # -- pyserial interface -------------------------------------------------

    def open(self) -> None:
        self.is_open = True

    def write(self, data: bytes) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(bytes(data))
        if bytes(data) == self.HANDSHAKE and self.handshake_reply is not None:
            self.feed(self.handshake_reply)
        return len(data)

    @property
    def in_waiting(self) -> int:
        return self.pending

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if self.block_reads:
                self._cond.wait_for(
                    lambda: self._rx
                    or self.read_error is not None
                    or not self.is_open
                    or self._read_cancelled
                )
                self._read_cancelled = False
            elif not self._rx and self.read_error is None and self.is_open:
                self._cond.wait(0.02)
            if self.read_error is not None:
                raise self.read_error
            data = bytes(self._rx[:size])
            del self._rx[:size]
            return data

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        with self._cond:
            self._rx.clear()

    def cancel_read(self) -> None:
        with self._cond:
            self._read_cancelled = True
            self._cond.notify_all()

    def set_buffer_size(self, rx_size: int = 4096, tx_size: int | None = None) -> None:
        pass

    def close(self) -> None:
        with self._cond:
            self.is_open = False
            self._cond.notify_all()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_serial() -> FakeSerial:
    """Return a fresh ``FakeSerial`` instance."""
    return FakeSerial()


@pytest.fixture()
def serial_factory(fake_serial: FakeSerial) -> Iterator:
    """Patch ``serial.Serial`` so every transport gets *fake_serial*."""
    with patch("pulsepal.transport.serial.Serial", return_value=fake_serial) as factory:
        yield factory


@pytest.fixture()
def transport(fake_serial: FakeSerial, serial_factory) -> SerialTransport:
    """Return an open ``SerialTransport`` wired to a fake serial port."""
    tx = SerialTransport("/dev/fake", timeout=0.01)
    tx.open()
    return tx


@pytest.fixture()
def connection(fake_serial: FakeSerial, serial_factory) -> Iterator[PulsePalConnection]:
    """Return an unopened ``PulsePalConnection`` on a fake serial port."""
    conn = PulsePalConnection("/dev/fake", read_timeout=0.01)
    yield conn
    conn.close()


def _open_device(fake_serial: FakeSerial, firmware_version: int) -> PulsePal:
    fake_serial.handshake_reply = handshake_reply(firmware_version)
    device = PulsePal("/dev/fake", read_timeout=0.01)
    device.open(timeout=2.0)
    # Reset so tests don't see the handshake
    fake_serial.written.clear()
    return device


@pytest.fixture()
def device(fake_serial: FakeSerial, serial_factory) -> Iterator[PulsePal]:
    """Return an open ``PulsePal`` with 16-bit DAC firmware (version 20)."""
    pulse_pal = _open_device(fake_serial, 20)
    yield pulse_pal
    pulse_pal.close()


@pytest.fixture()
def device_8bit(fake_serial: FakeSerial, serial_factory) -> Iterator[PulsePal]:
    """Return an open ``PulsePal`` with 8-bit DAC firmware (version 10)."""
    pulse_pal = _open_device(fake_serial, 10)
    yield pulse_pal
    pulse_pal.close()
