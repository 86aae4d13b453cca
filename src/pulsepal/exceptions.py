"""
Exception hierarchy for the PulsePal stimulator driver.

All exceptions inherit from :class:`PulsePalError` so callers can catch
broadly (``except PulsePalError``) or narrowly (``except ValidationError``).
"""


class PulsePalError(Exception):
    """Base exception for all PulsePal errors."""


class ConnectionError(PulsePalError):  # noqa: A001 – intentional shadow of builtin
    """Raised when the serial link is unavailable, fails, or has faulted."""


class TimeoutError(PulsePalError):  # noqa: A001 – intentional shadow of builtin
    """Raised when the device does not complete the handshake in time."""


class ProtocolError(PulsePalError):
    """Raised when the device answers with an unexpected or unsupported frame."""


class ValidationError(PulsePalError):
    """Raised when an argument fails pre-send validation."""
