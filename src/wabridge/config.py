from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    DEFAULT_LID_SAVE_DEBOUNCE_S,
    DEFAULT_MESSAGE_STORE_SIZE,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_DELAY_S,
)
from .exceptions import ConfigError


@dataclass(slots=True)
class BridgeConfig:
    """
    Process-level settings.

    Only the first block is read from the environment; the tunables keep their
    reference values unless a caller (typically a test) overrides them.
    """

    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"
    webhook_url: str = ""
    api_key: str = ""
    log_level: str = "info"
    session_dir: Path = Path("sessions")
    bridge_url: str = ""

    reconnect_delay_s: float = DEFAULT_RECONNECT_DELAY_S
    lid_save_debounce_s: float = DEFAULT_LID_SAVE_DEBOUNCE_S
    message_store_size: int = DEFAULT_MESSAGE_STORE_SIZE
    webhook_timeout_s: float = 10.0
    browser: tuple[str, str, str] = ("wabridge", "Chrome", "1.0.0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        env = os.environ if environ is None else environ

        raw_port = env.get("PORT", "").strip() or str(DEFAULT_PORT)
        try:
            port = int(raw_port, 10)
        except ValueError as e:
            raise ConfigError(f"PORT must be an integer, got {raw_port!r}") from e
        if not 0 < port < 65536:
            raise ConfigError(f"PORT out of range: {port}")

        session_dir = Path(env.get("SESSION_DIR", "").strip() or "sessions").expanduser()

        return cls(
            port=port,
            host=env.get("HOST", "").strip() or "0.0.0.0",
            webhook_url=env.get("WEBHOOK_URL", "").strip(),
            api_key=env.get("API_KEY", "").strip(),
            log_level=env.get("LOG_LEVEL", "").strip() or "info",
            session_dir=session_dir,
            bridge_url=env.get("BRIDGE_URL", "").strip() or f"http://localhost:{port}",
        )

    @property
    def register_url(self) -> str:
        """Orchestrator registration endpoint, derived from the webhook URL."""

        if not self.webhook_url:
            return ""
        return self.webhook_url.replace("receive_webhook", "register_bridge")
