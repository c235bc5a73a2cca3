"""
Session lifecycle for the single protocol connection.

`ConnectionSupervisor` owns the one `SessionHandle`, folds its events into
`SessionInfo`, decides between reconnecting and giving up when the session
closes, and turns inbound message batches into `WebhookEvent`s on its own
emitter:

- `message(event: WebhookEvent)`
- `status(info: SessionInfo)`, a copy taken after every state change
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .constants import DEFAULT_RECONNECT_DELAY_S, LOGGED_OUT_ERROR, DisconnectReason
from .credentials import CredentialStore
from .exceptions import NotConnectedError, SendError
from .identity import IdentityResolver
from .jid import is_lid, jid_user, to_jid
from .qr import render_qr_data_url
from .retransmit import RetransmissionStore, RetryCounterStore
from .session import (
    EV_CLOSE,
    EV_CONTACTS,
    EV_MESSAGES,
    EV_OPEN,
    EV_PAIRING,
    ContactRecord,
    InboundMessage,
    MessageUpsert,
    OutboundContent,
    SessionFactory,
    SessionHandle,
    SessionHooks,
    extract_text,
)
from .util.asyncio import ensure_task
from .util.events import AsyncEventEmitter, EventBindings

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    PAIRING_READY = "qr_ready"
    CONNECTED = "connected"


@dataclass(slots=True)
class SessionInfo:
    state: ConnectionState = ConnectionState.DISCONNECTED
    connected_identity: str = ""
    pairing_payload: str = ""
    last_error: str = ""


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    from_phone: str
    from_lid: str
    sender_jid: str
    chat_id: str
    sender_name: str
    text: str
    message_id: str

    def to_payload(self) -> dict[str, str]:
        return {
            "from": self.from_phone,
            "from_lid": self.from_lid,
            "from_jid": self.sender_jid,
            "chat_id": self.chat_id,
            "from_name": self.sender_name,
            "message": self.text,
            "message_id": self.message_id,
        }


class ConnectionSupervisor:
    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        identities: IdentityResolver,
        messages: RetransmissionStore,
        credentials: CredentialStore,
        retry_counter: RetryCounterStore | None = None,
        render_pairing: Callable[[str], str] = render_qr_data_url,
        reconnect_delay_s: float = DEFAULT_RECONNECT_DELAY_S,
    ) -> None:
        self.info = SessionInfo()
        self.events = AsyncEventEmitter()
        self.identities = identities
        self.messages = messages
        self.credentials = credentials
        self.retry_counter = retry_counter or RetryCounterStore()

        self._factory = session_factory
        self._render_pairing = render_pairing
        self._reconnect_delay_s = reconnect_delay_s

        self._session: SessionHandle | None = None
        self._bindings = EventBindings()
        self._starting = False
        self._stopped = False
        self._reconnect_handle: asyncio.TimerHandle | None = None

    @property
    def session(self) -> SessionHandle | None:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session is not None and self.info.state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def snapshot(self) -> SessionInfo:
        return dataclasses.replace(self.info)

    async def _publish_status(self) -> None:
        await self.events.emit("status", self.snapshot())

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> bool:
        """
        Run the startup sequence once.

        Returns False without doing anything when a session is active, a start
        is already running, a reconnect is pending, or the supervisor stopped.
        """

        if self._stopped or self._starting or self._session is not None:
            return False
        if self._reconnect_handle is not None:
            return False

        self._starting = True
        try:
            await self.credentials.ensure()
            hooks = SessionHooks(
                get_message=self.messages.get_message, retry_counter=self.retry_counter
            )
            session = await self._factory(hooks)
        except Exception as e:
            logger.error("failed to start session: %s", e)
            self.info.last_error = str(e) or type(e).__name__
            await self._publish_status()
            return False
        finally:
            self._starting = False

        if self._stopped:
            # stop() ran while the factory was still working.
            await session.close()
            return False

        self._session = session
        self._bindings.bind(
            session,
            {
                EV_PAIRING: self._on_pairing,
                EV_OPEN: self._on_open,
                EV_CLOSE: self._on_close,
                EV_MESSAGES: self._on_messages,
                EV_CONTACTS: self._on_contacts,
            },
        )

        try:
            await session.connect()
        except Exception as e:
            logger.warning("connect failed: %s", e)
            if self._session is session:
                await self._on_close(None, str(e))
        return True

    async def stop(self) -> None:
        self._stopped = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        session, self._session = self._session, None
        self._bindings.release()
        if session is not None:
            await session.close()
        self.info.state = ConnectionState.DISCONNECTED
        self.info.pairing_payload = ""

    def _schedule_reconnect(self) -> None:
        if self._stopped or self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay_s, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        ensure_task(self.start(), name="wabridge.reconnect")

    # -- protocol events ---------------------------------------------------

    async def _on_pairing(self, qr: str) -> None:
        try:
            payload = self._render_pairing(qr)
        except Exception as e:
            logger.error("QR generation failed: %s", e)
            return
        self.info.pairing_payload = payload
        self.info.state = ConnectionState.PAIRING_READY
        logger.info("QR code generated")
        await self._publish_status()

    async def _on_open(self, user_jid: str) -> None:
        self.info.state = ConnectionState.CONNECTED
        self.info.connected_identity = jid_user(user_jid)
        self.info.pairing_payload = ""
        self.info.last_error = ""
        logger.info("connected as %s", self.info.connected_identity)
        await self._publish_status()

    async def _on_close(self, status_code: int | None, reason: str = "") -> None:
        terminal = status_code == DisconnectReason.LOGGED_OUT
        logger.info(
            "connection closed (status %s%s), reconnect: %s",
            status_code,
            f", {reason}" if reason else "",
            not terminal,
        )

        self._session = None
        self._bindings.release()
        self.info.state = ConnectionState.DISCONNECTED
        self.info.pairing_payload = ""
        self.info.connected_identity = ""

        if terminal:
            self.info.last_error = LOGGED_OUT_ERROR
            await self.credentials.wipe()
        else:
            self.info.last_error = f"Disconnected (code {status_code}), reconnecting..."
            self._schedule_reconnect()
        await self._publish_status()

    def _on_contacts(self, records: Iterable[ContactRecord]) -> None:
        self.identities.absorb_contacts(records)

    async def _on_messages(self, upsert: MessageUpsert) -> None:
        if upsert.kind != "notify":
            return

        # Everything is kept for retransmission, including our own sends.
        for msg in upsert.messages:
            if msg.content is not None:
                self.messages.put(msg.key.remote_jid, msg.key.id, msg.content)

        for msg in upsert.messages:
            event = await self._to_webhook_event(msg)
            if event is not None:
                await self.events.emit("message", event)

    async def _to_webhook_event(self, msg: InboundMessage) -> WebhookEvent | None:
        chat_id = msg.key.remote_jid
        if msg.key.from_me:
            # Our own sends are echoed back; only self-chat is surfaced.
            if not self.identities.is_self(chat_id, self.info.connected_identity):
                return None
            logger.info(
                "self-chat message detected (chat=%s, phone=%s)",
                chat_id,
                self.info.connected_identity,
            )

        text = extract_text(msg.content)
        if not text:
            return None

        lid_form = is_lid(chat_id)
        phone = await self.identities.resolve(chat_id, self._session)
        logger.info(
            "message from %s (lid=%s): %s",
            phone,
            jid_user(chat_id) if lid_form else "n/a",
            text[:80],
        )
        return WebhookEvent(
            from_phone=phone,
            from_lid=jid_user(chat_id) if lid_form else "",
            sender_jid=msg.key.participant or chat_id,
            chat_id=chat_id,
            sender_name=msg.push_name or "",
            text=text,
            message_id=msg.key.id or "",
        )

    # -- operations used by the HTTP layer ---------------------------------

    def _require_session(self) -> SessionHandle:
        session = self._session
        if session is None or not self.connected:
            raise NotConnectedError()
        return session

    async def send(self, to: str, content: OutboundContent) -> str:
        """Send `content` and return the message id assigned by the library."""

        session = self._require_session()
        try:
            sent = await session.send_message(to_jid(to), content)
        except Exception as e:
            raise SendError(str(e) or type(e).__name__) from e

        if sent.content is not None:
            self.messages.put(sent.key.remote_jid, sent.key.id, sent.content)
        return sent.key.id or ""

    async def resolve_numbers(self, phones: Iterable[str]) -> dict[str, dict[str, Any]]:
        session = self._require_session()
        return await self.identities.resolve_phones(phones, session.on_whatsapp)
