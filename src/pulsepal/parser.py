"""
Incremental parsing of the PulsePal inbound byte stream.

The device sends exactly one structured frame, the handshake
acknowledgement::

    [75, v0, v1, v2, v3]    # ACKNOWLEDGE + little-endian int32 firmware version

After that the stream carries nothing the host needs to interpret, so the
parser only reports buffered bytes as consumed to keep the read buffer from
growing.
"""

from __future__ import annotations

import logging
import struct
import threading
from collections.abc import Callable
from concurrent.futures import Future

from .constants import ACKNOWLEDGE, HANDSHAKE_RESPONSE_LENGTH
from .exceptions import ProtocolError
from .quantization import dac_max_for_firmware

logger = logging.getLogger(__name__)


class ResponseParser:
    """Recognizes the handshake frame and resolves :attr:`handshake` once.

    :attr:`handshake` is a one-shot future which completes with the firmware
    version, or with the error that prevented the handshake.  *on_handshake*
    runs just before a successful resolution, while no competing
    :meth:`fail` or :meth:`cancel` can interleave.
    """

    def __init__(self, on_handshake: Callable[[int], None] | None = None) -> None:
        self.handshake: Future[int] = Future()
        self._on_handshake = on_handshake
        self._lock = threading.Lock()
        self.firmware_version = -1
        self.dac_max_value = 0

    @property
    def initialized(self) -> bool:
        return self.handshake.done()

    def process(self, buffer: bytes | bytearray, count: int) -> int:
        """Parse the first *count* bytes of *buffer*.

        Returns:
            The number of leading bytes consumed.

        Raises:
            ProtocolError: If the handshake frame is malformed or reports an
                unsupported firmware version.
        """
        if self.initialized:
            return count

        if count < HANDSHAKE_RESPONSE_LENGTH:
            return 0
        if buffer[0] != ACKNOWLEDGE:
            raise ProtocolError(
                f"Unexpected return value from PulsePal: 0x{buffer[0]:02x} "
                f"(expected 0x{ACKNOWLEDGE:02x})"
            )

        (version,) = struct.unpack_from("<i", buffer, 1)
        dac_max = dac_max_for_firmware(version)
        self.firmware_version = version
        self.dac_max_value = dac_max
        logger.debug("Handshake acknowledged: firmware %d, DAC max %d", version, dac_max)
        with self._lock:
            if not self.handshake.done():
                if self._on_handshake is not None:
                    self._on_handshake(version)
                self.handshake.set_result(version)
        return HANDSHAKE_RESPONSE_LENGTH

    def fail(self, exc: BaseException) -> bool:
        """Resolve a pending handshake with *exc*.

        Returns:
            ``True`` if the handshake was still pending.
        """
        with self._lock:
            if self.handshake.done():
                return False
            self.handshake.set_exception(exc)
            return True

    def cancel(self) -> bool:
        """Cancel a pending handshake (cooperative shutdown)."""
        with self._lock:
            return self.handshake.cancel()
