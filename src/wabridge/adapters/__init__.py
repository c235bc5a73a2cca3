"""
Bindings from concrete protocol libraries to `wabridge.session.SessionHandle`.
"""

from __future__ import annotations

from .pyaileys_session import PyaileysSession, PyaileysSessionFactory

__all__ = [
    "PyaileysSession",
    "PyaileysSessionFactory",
]
