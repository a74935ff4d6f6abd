"""
Custom exceptions for the FIX terminal client.
"""


class FixClientError(Exception):
    """Base exception for all FIX terminal client errors."""
    pass


class ProtocolError(FixClientError):
    """Raised when the FIX session layer is violated."""
    pass


class GarbledMessageError(ProtocolError):
    """Raised when a received frame fails its BodyLength or CheckSum test."""
    pass


class ConnectionError(FixClientError):
    """Raised when connection issues occur."""
    pass


class ConnectionClosedError(ConnectionError):
    """Raised when the session transport is no longer usable."""
    pass


class CommandError(FixClientError):
    """Raised by a command when its arguments are malformed."""
    pass


class ConfigurationError(FixClientError):
    """Raised when the configuration file is invalid."""
    pass
