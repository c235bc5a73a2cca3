"""
wabridge: a single WhatsApp Web session exposed over a small HTTP API.

Inbound messages are forwarded to a webhook; outbound messages, status,
pairing codes and number resolution are served over HTTP.
"""

from __future__ import annotations

from .bridge import Bridge
from .config import BridgeConfig
from .exceptions import BridgeError

__all__ = [
    "Bridge",
    "BridgeConfig",
    "BridgeError",
]

__version__ = "0.1.0"
