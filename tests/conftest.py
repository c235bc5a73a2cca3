from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from wabridge.credentials import CredentialStore
from wabridge.identity import IdentityResolver
from wabridge.retransmit import RetransmissionStore
from wabridge.session import (
    LookupResult,
    MessageKey,
    OutboundContent,
    SentMessage,
    SessionHooks,
    TextContent,
)
from wabridge.supervisor import ConnectionSupervisor
from wabridge.util.events import AsyncEventEmitter, Listener


class FakeSession:
    """In-memory `SessionHandle` driven by tests through `emit()`."""

    def __init__(
        self,
        *,
        directory: dict[str, str] | None = None,
        lookups: dict[str, Any] | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        self.events = AsyncEventEmitter()
        self.directory = dict(directory or {})
        self.lookups = dict(lookups or {})
        self.connect_error = connect_error
        self.send_error: Exception | None = None
        self.connect_calls = 0
        self.closed = False
        self.sent: list[tuple[str, OutboundContent]] = []

    def on(self, event: str, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    async def emit(self, event: str, *args: Any) -> None:
        await self.events.emit(event, *args)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def close(self) -> None:
        self.closed = True

    async def send_message(self, jid: str, content: OutboundContent) -> SentMessage:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, content))
        stored = {"conversation": content.text} if isinstance(content, TextContent) else None
        return SentMessage(
            key=MessageKey(remote_jid=jid, id=f"MSG{len(self.sent)}", from_me=True),
            content=stored,
        )

    async def on_whatsapp(self, jid: str) -> list[LookupResult]:
        found = self.lookups.get(jid, [])
        if isinstance(found, Exception):
            raise found
        return list(found)

    def contact_phone(self, jid: str) -> str | None:
        return self.directory.get(jid)


class FakeFactory:
    def __init__(self, *sessions: FakeSession) -> None:
        self._queue = list(sessions)
        self.created: list[FakeSession] = []
        self.hooks: list[SessionHooks] = []
        self.error: Exception | None = None

    async def __call__(self, hooks: SessionHooks) -> FakeSession:
        if self.error is not None:
            raise self.error
        self.hooks.append(hooks)
        session = self._queue.pop(0) if self._queue else FakeSession()
        self.created.append(session)
        return session


class GatedFactory(FakeFactory):
    """Factory that blocks inside the call until `gate` is set."""

    def __init__(self, *sessions: FakeSession) -> None:
        super().__init__(*sessions)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def __call__(self, hooks: SessionHooks) -> FakeSession:
        self.entered.set()
        await self.gate.wait()
        return await super().__call__(hooks)


async def wait_until(predicate: Callable[[], bool], timeout_s: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def make_supervisor(tmp_path: Path, factory: FakeFactory) -> Callable[..., ConnectionSupervisor]:
    def make(**kwargs: Any) -> ConnectionSupervisor:
        opts: dict[str, Any] = {
            "session_factory": factory,
            "identities": IdentityResolver(tmp_path, debounce_s=0.01),
            "messages": RetransmissionStore(10),
            "credentials": CredentialStore(tmp_path),
            "render_pairing": lambda qr: f"data:{qr}",
            "reconnect_delay_s": 0.01,
        }
        opts.update(kwargs)
        return ConnectionSupervisor(**opts)

    return make


@pytest.fixture
def supervisor(make_supervisor: Callable[..., ConnectionSupervisor]) -> ConnectionSupervisor:
    return make_supervisor()
