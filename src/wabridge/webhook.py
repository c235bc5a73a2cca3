from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from .constants import WEBHOOK_SECRET_HEADER
from .supervisor import WebhookEvent
from .util.asyncio import ensure_task

logger = logging.getLogger(__name__)


def post_json(
    url: str, payload: Any, *, headers: dict[str, str] | None = None, timeout_s: float = 10.0
) -> tuple[int, str]:
    """
    Blocking JSON POST. Returns `(status, body)` for any HTTP response,
    error statuses included; raises only on transport failure.
    """

    body = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json", **(headers or {})},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return int(resp.status), resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        data = b""
        with contextlib.suppress(Exception):
            data = e.read()
        return int(e.code), data.decode("utf-8", errors="replace")


class WebhookDispatcher:
    """
    Fire-and-forget delivery of inbound messages to one HTTP endpoint.

    Each event gets a single POST. Failures are logged and dropped: there is
    no retry and no queue, so an unreachable endpoint loses those messages.
    """

    def __init__(self, url: str, *, secret: str = "", timeout_s: float = 10.0) -> None:
        self.url = url
        self.secret = secret
        self.timeout_s = timeout_s
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _headers(self) -> dict[str, str]:
        return {WEBHOOK_SECRET_HEADER: self.secret} if self.secret else {}

    def submit(self, event: WebhookEvent) -> None:
        """Start delivery in the background; the caller never waits on it."""

        if not self.enabled:
            return
        task = ensure_task(self.deliver(event), name="wabridge.webhook")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, event: WebhookEvent) -> None:
        if not self.enabled:
            return
        try:
            status, body = await asyncio.to_thread(
                post_json,
                self.url,
                event.to_payload(),
                headers=self._headers(),
                timeout_s=self.timeout_s,
            )
        except Exception as e:
            logger.error("webhook error: %s", e)
            return
        if status >= 400:
            logger.error("webhook failed: HTTP %s %s", status, body[:200])

    async def drain(self) -> None:
        """Wait for deliveries already in flight."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def register_bridge(register_url: str, bridge_url: str, *, timeout_s: float = 10.0) -> bool:
    """Announce this bridge's address to the orchestrator behind the webhook."""

    if not register_url:
        return False
    try:
        status, body = await asyncio.to_thread(
            post_json, register_url, {"bridge_url": bridge_url}, timeout_s=timeout_s
        )
    except Exception as e:
        logger.error("failed to register with backend: %s", e)
        return False
    if status >= 400:
        logger.error("backend registration failed: HTTP %s %s", status, body[:200])
        return False
    logger.info("registered with backend: %s", body[:200])
    return True
