from __future__ import annotations

import asyncio
import logging
import time

from .config import BridgeConfig
from .credentials import CredentialStore
from .identity import IdentityResolver
from .retransmit import RetransmissionStore, RetryCounterStore
from .session import SessionFactory
from .supervisor import ConnectionSupervisor
from .util.asyncio import cancel_suppress, ensure_task
from .webhook import WebhookDispatcher, register_bridge

logger = logging.getLogger(__name__)


class Bridge:
    """
    Process-wide context: one session, its two stores and the webhook path.

    Created at process start and torn down at shutdown; the HTTP layer and the
    supervisor share the objects held here.
    """

    def __init__(self, config: BridgeConfig, *, session_factory: SessionFactory | None = None) -> None:
        self.config = config
        if session_factory is None:
            from .adapters.pyaileys_session import PyaileysSessionFactory

            session_factory = PyaileysSessionFactory(config)

        self.identities = IdentityResolver(config.session_dir, debounce_s=config.lid_save_debounce_s)
        self.messages = RetransmissionStore(config.message_store_size)
        self.retry_counter = RetryCounterStore()
        self.credentials = CredentialStore(config.session_dir)
        self.supervisor = ConnectionSupervisor(
            session_factory=session_factory,
            identities=self.identities,
            messages=self.messages,
            credentials=self.credentials,
            retry_counter=self.retry_counter,
            reconnect_delay_s=config.reconnect_delay_s,
        )
        self.dispatcher = WebhookDispatcher(
            config.webhook_url, secret=config.api_key, timeout_s=config.webhook_timeout_s
        )
        self.supervisor.events.on("message", self.dispatcher.submit)
        self._started_at = time.monotonic()
        self._start_task: asyncio.Task[bool] | None = None

    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    async def start(self) -> None:
        await self.credentials.ensure()
        await self.identities.load()
        if self.config.webhook_url:
            logger.info("webhook URL: %s", self.config.webhook_url)
            ensure_task(
                register_bridge(
                    self.config.register_url,
                    self.config.bridge_url,
                    timeout_s=self.config.webhook_timeout_s,
                ),
                name="wabridge.register",
            )
        # The first connection attempt must not hold up the HTTP server.
        self._start_task = ensure_task(self.supervisor.start(), name="wabridge.start")

    async def shutdown(self) -> None:
        logger.info("shutting down")
        await self.supervisor.stop()
        await cancel_suppress(self._start_task)
        await self.identities.flush()
        await self.dispatcher.drain()
