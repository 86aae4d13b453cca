"""
Connection lifecycle for a PulsePal device.

A :class:`PulsePalConnection` opens the serial transport, sends the
handshake, and runs one dedicated reader thread that feeds the inbound
stream to a :class:`~pulsepal.parser.ResponseParser`.  :meth:`open` blocks
on the parser's one-shot handshake future until the reader reports success
or failure.

State machine::

    CLOSED --open()--> CONNECTING --ack--> OPEN --close()--> CLOSED
                            |                 |
                            +---- error ------+--> FAULTED

A fault after the handshake is terminal: it is recorded in :attr:`fault`,
delivered through the :attr:`terminated` future, and every later command
raises :class:`~pulsepal.exceptions.ConnectionError`.  Reconnecting means
calling :meth:`open` again (or building a new connection).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError

from .constants import (
    CANCEL_POLL_INTERVAL,
    DEFAULT_JOIN_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT,
    OP_DISCONNECT,
    OP_HANDSHAKE,
)
from .encoder import CommandWriter
from .exceptions import ConnectionError, PulsePalError, TimeoutError
from .parser import ResponseParser
from .transport import SerialTransport
from .types import ConnectionState

logger = logging.getLogger(__name__)


class PulsePalConnection:
    """Serial connection to a PulsePal device.

    Use as a context manager for automatic open/close::

        with PulsePalConnection("/dev/ttyACM0") as conn:
            print(conn.firmware_version)

    Args:
        port: Serial port path.
        read_timeout: Per-read timeout of the reader thread, in seconds.
        transport: Optional pre-built transport (mainly for tests).
    """

    def __init__(
        self,
        port: str = DEFAULT_PORT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        transport: SerialTransport | None = None,
    ) -> None:
        self.port = port
        self._transport = transport if transport is not None else SerialTransport(port, read_timeout)
        self._command_buffer = bytearray()
        self._read_buffer = bytearray()
        self._parser = ResponseParser(self._on_handshake)
        self._state = ConnectionState.CLOSED
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._cancel: threading.Event | None = None
        self._reader: threading.Thread | None = None
        self._watcher: threading.Thread | None = None
        self._terminated: Future[None] = Future()
        self._fault: PulsePalError | None = None

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> PulsePalConnection:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -- Status -------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        """``True`` once the handshake succeeded and until close or fault."""
        return self._state is ConnectionState.OPEN and self._transport.is_open

    @property
    def firmware_version(self) -> int:
        """Firmware version reported in the handshake, or ``-1`` before it."""
        return self._parser.firmware_version

    @property
    def dac_max_value(self) -> int:
        return self._parser.dac_max_value

    @property
    def fault(self) -> PulsePalError | None:
        """The error which faulted the connection, if any."""
        return self._fault

    @property
    def terminated(self) -> Future[None]:
        """Resolves when the reader ends: ``None`` on a clean shutdown, the
        fault as an exception otherwise."""
        return self._terminated

    def wait_terminated(self, timeout: float | None = None) -> PulsePalError | None:
        """Block until the reader ends and return the fault, if any.

        Raises:
            TimeoutError: If the reader is still running after *timeout*.
        """
        try:
            return self._terminated.exception(timeout=timeout)
        except FutureTimeoutError as exc:
            raise TimeoutError(f"Reader for {self.port} still running after {timeout} s") from exc

    # -- Lifecycle ----------------------------------------------------------

    def open(self, cancel: threading.Event | None = None, timeout: float | None = None) -> None:
        """Open the port, perform the handshake, and start the reader.

        Args:
            cancel: Optional event; setting it stops the reader, releases the
                port, and aborts a pending open.
            timeout: Optional limit, in seconds, on waiting for the handshake.

        Raises:
            ConnectionError: If the port cannot be used, the connection is
                already open, or the open was cancelled.
            ProtocolError: If the device answered with an invalid handshake.
            TimeoutError: If *timeout* expired before the handshake.
        """
        with self._state_lock:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
                raise ConnectionError(f"Connection to {self.port} is already open")
            self._state = ConnectionState.CONNECTING

        if self._reader is not None or self._watcher is not None:
            # Threads left over from a faulted or cancelled session
            self._release()
        self._parser = ResponseParser(self._on_handshake)
        self._read_buffer.clear()
        self._stop.clear()
        self._cancel = cancel
        self._fault = None
        self._terminated = Future()

        try:
            self._transport.open()
            self._transport.discard_input()
            self._send(OP_HANDSHAKE)
        except PulsePalError as exc:
            self._fault = exc
            self._set_state(ConnectionState.FAULTED)
            self._release()
            raise

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"pulsepal-reader-{self.port}",
            daemon=True,
        )
        self._reader.start()
        if cancel is not None:
            # A blocked read only notices the cancel once the port is closed
            self._watcher = threading.Thread(
                target=self._watch_cancel,
                args=(cancel,),
                name=f"pulsepal-cancel-{self.port}",
                daemon=True,
            )
            self._watcher.start()

        try:
            version = self._await_handshake(timeout)
        except PulsePalError:
            self._release()
            raise

        logger.info(
            "Connected to PulsePal on %s (firmware %d, %d-bit DAC)",
            self.port,
            version,
            8 if self.dac_max_value <= 0xFF else 16,
        )

    def close(self) -> None:
        """Send a disconnect notice if open, then release the port.

        Safe to call multiple times.
        """
        if self._state is ConnectionState.CLOSED and self._reader is None:
            self._transport.close()
            return

        if self._state is ConnectionState.OPEN:
            try:
                self._send(OP_DISCONNECT)
            except PulsePalError as exc:
                logger.warning("Disconnect notice to %s failed: %s", self.port, exc)

        self._release()
        self._set_state(ConnectionState.CLOSED)

    def _await_handshake(self, timeout: float | None) -> int:
        handshake = self._parser.handshake
        try:
            return handshake.result(timeout=timeout)
        except FutureTimeoutError as exc:
            if not self._parser.cancel():
                # Resolved between the timeout and the cancel
                return handshake.result()
            error = TimeoutError(f"No handshake from PulsePal on {self.port} within {timeout} s")
            self._fault = error
            self._set_state(ConnectionState.FAULTED)
            raise error from exc
        except CancelledError as exc:
            self._set_state(ConnectionState.CLOSED)
            raise ConnectionError(f"Opening {self.port} was cancelled") from exc

    # -- Commands -----------------------------------------------------------

    def _writer(self) -> CommandWriter:
        """Start a command transaction against the shared command buffer."""
        return CommandWriter(self._command_buffer, self._write, self._parser.dac_max_value)

    def _command(self) -> CommandWriter:
        """Like :meth:`_writer`, but only while the connection is open."""
        self._require_open()
        return self._writer()

    def _send(self, opcode: int) -> None:
        with self._writer() as writer:
            writer.write_opcode(opcode)

    def _write(self, data: bytes) -> None:
        try:
            self._transport.write(data)
        except ConnectionError as exc:
            # Delivery state of the command is unknown; never retried
            self._mark_faulted(exc)
            raise

    def _require_open(self) -> None:
        if self._state is ConnectionState.FAULTED:
            raise ConnectionError(f"Connection to {self.port} has faulted: {self._fault}")
        if not self.is_open:
            raise ConnectionError(f"Connection to {self.port} not open; call open() first.")

    # -- Reader -------------------------------------------------------------

    def _stopping(self) -> bool:
        return self._stop.is_set() or (self._cancel is not None and self._cancel.is_set())

    def _read_loop(self) -> None:
        transport = self._transport
        buffer = self._read_buffer
        try:
            while not self._stopping():
                waiting = transport.in_waiting
                data = transport.read(max(waiting, 1))
                if not data:
                    continue
                buffer.extend(data)
                consumed = self._parser.process(buffer, len(buffer))
                if consumed:
                    del buffer[:consumed]
        except Exception as exc:  # reader thread boundary: every error is reported
            if not self._stopping():
                self._mark_faulted(exc)
                return
            logger.debug("Reader for %s interrupted by shutdown: %s", self.port, exc)

        self._parser.cancel()
        if not self._stop.is_set():
            # Cancelled from outside: cooperative shutdown, not a fault
            transport.close()
            self._set_state(ConnectionState.CLOSED)
        self._resolve_terminated(self._fault)
        logger.debug("Reader for %s stopped", self.port)

    def _watch_cancel(self, cancel: threading.Event) -> None:
        while not self._stop.is_set():
            if cancel.wait(CANCEL_POLL_INTERVAL):
                if not self._stop.is_set():
                    logger.debug("Open of %s cancelled; closing the port", self.port)
                    self._transport.cancel_read()
                    self._transport.close()
                return

    def _on_handshake(self, version: int) -> None:
        with self._state_lock:
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.OPEN

    def _mark_faulted(self, exc: BaseException) -> None:
        if isinstance(exc, PulsePalError):
            error = exc
        else:
            error = ConnectionError(f"PulsePal link on {self.port} failed: {exc}")
            error.__cause__ = exc

        self._set_state(ConnectionState.FAULTED)
        self._fault = error
        if self._parser.fail(error):
            logger.error("PulsePal handshake on %s failed: %s", self.port, error)
        else:
            logger.error("PulsePal connection on %s faulted: %s", self.port, error)

        reader = self._reader
        if reader is not None and reader is not threading.current_thread() and reader.is_alive():
            # The reader resolves the terminated signal once it has stopped
            self._stop.set()
            self._transport.cancel_read()
        else:
            self._resolve_terminated(error)

    def _resolve_terminated(self, error: PulsePalError | None) -> None:
        with self._state_lock:
            if self._terminated.done():
                return
            if error is None:
                self._terminated.set_result(None)
            else:
                self._terminated.set_exception(error)

    # -- Internal -----------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            self._state = state

    def _release(self) -> None:
        """Stop the reader and close the port."""
        self._stop.set()
        self._parser.cancel()
        watcher = self._watcher
        if watcher is not None:
            if watcher is not threading.current_thread():
                watcher.join(DEFAULT_JOIN_TIMEOUT)
            self._watcher = None
        if self._reader is not None:
            self._transport.cancel_read()
            if self._reader is not threading.current_thread():
                self._reader.join(DEFAULT_JOIN_TIMEOUT)
                if self._reader.is_alive():
                    logger.warning("Reader for %s did not stop in time", self.port)
            self._reader = None
        self._transport.close()
        self._resolve_terminated(self._fault)
