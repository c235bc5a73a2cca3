from __future__ import annotations


class BridgeError(Exception):
    """Base error for the wabridge package."""


class ConfigError(BridgeError):
    """Invalid process configuration (fatal at startup)."""


class StartupError(BridgeError):
    """A session start attempt failed before a connection was opened."""


class NotConnectedError(BridgeError):
    """An operation needs an open session but there is none."""

    def __init__(self, message: str = "Not connected to WhatsApp") -> None:
        super().__init__(message)


class SendError(BridgeError):
    """The protocol library rejected or failed an outbound send."""


class ValidationError(BridgeError):
    """
    A request is missing a required field or is malformed.

    The HTTP layer maps this to a 400 response carrying `str(error)`.
    """
