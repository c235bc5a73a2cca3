from __future__ import annotations

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s [bridge] %(levelname)s %(name)s: %(message)s"

# Chatty third-party loggers, held back unless running at DEBUG.
_NOISY = ("pyaileys", "websockets", "uvicorn.access")

_configured = False


def parse_level(level: str, default: int = logging.INFO) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return default
    value = logging.getLevelName(s)
    return value if isinstance(value, int) else default


def setup_logging(level: str = "info", *, stream: TextIO | None = None, force: bool = False) -> None:
    """Configure the root logger once per process."""

    global _configured
    if _configured and not force:
        return
    _configured = True

    lvl = parse_level(level)
    root = logging.getLogger()
    if force:
        for h in list(root.handlers):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(lvl)

    for name in _NOISY:
        logging.getLogger(name).setLevel(lvl if lvl <= logging.DEBUG else logging.WARNING)
