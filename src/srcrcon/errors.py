"""Exceptions raised by the Source RCON client."""

from __future__ import annotations


class RconError(Exception):
    """Base exception for RCON errors."""


class ConnectionError(RconError):  # noqa: A001
    """Raised when the connection to the server is lost or cannot be established."""


class PacketTooLarge(RconError):
    """Raised when a packet would exceed the maximum wire size."""


SizeExceeded = PacketTooLarge


class TruncatedFrame(RconError):
    """Raised when a frame is too short to carry its fixed header."""


class AuthSequenceError(RconError):
    """Raised when a handshake reply does not carry the expected request id."""


class AuthenticationFailed(RconError):
    """Raised when the server rejects the RCON password."""
