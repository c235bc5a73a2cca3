"""
`SessionHandle` implementation on top of pyaileys.

pyaileys speaks the WhatsApp Web multi-device protocol; this module only maps
its events and calls onto the bridge's session contract:

- `connection.update` -> `pairing` / `open` / `close`
- `message.decrypted` -> `messages`
- `history.sync` and connection open -> `contacts` (LID <-> phone pairs the
  client learned)
- `stanza.stream:error` / `stanza.failure` -> the close status code
- retry receipts -> resend from the bridge's content store
"""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import secrets
import time
import urllib.request
from typing import Any, cast

from pyaileys import WhatsAppClient
from pyaileys.socket_config import SocketConfig
from pyaileys.usync import build_usync_iq, parse_usync_result
from pyaileys.wabinary.jid import jid_normalized_user
from pyaileys.wabinary.types import BinaryNode

from ..config import BridgeConfig
from ..constants import GROUP_SERVER, MAX_RETRANSMIT_ATTEMPTS, DisconnectReason
from ..exceptions import StartupError
from ..jid import jid_server, jid_user
from ..session import (
    EV_CLOSE,
    EV_CONTACTS,
    EV_MESSAGES,
    EV_OPEN,
    EV_PAIRING,
    ContactRecord,
    InboundMessage,
    LookupResult,
    MessageKey,
    MessageUpsert,
    OutboundContent,
    SentMessage,
    SessionHooks,
    TextContent,
)
from ..util.asyncio import ensure_task
from ..util.events import AsyncEventEmitter, Listener

logger = logging.getLogger(__name__)

VERSION_URL = (
    "https://raw.githubusercontent.com/WhiskeySockets/Baileys/master/src/Defaults/baileys-version.json"
)


def _fetch_bytes(url: str, *, timeout_s: float = 60.0) -> bytes:
    req = urllib.request.Request(url, headers={"User-Agent": "wabridge/0.1"})
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        return cast(bytes, resp.read())


def _parse_version(raw: bytes) -> tuple[int, int, int]:
    data = json.loads(raw)
    v = data["version"]
    return (int(v[0]), int(v[1]), int(v[2]))


async def fetch_latest_version(*, timeout_s: float = 10.0) -> tuple[int, int, int]:
    """
    Latest published WhatsApp Web client version.

    Falls back to the version pyaileys ships with when the lookup fails.
    """

    try:
        raw = await asyncio.to_thread(_fetch_bytes, VERSION_URL, timeout_s=timeout_s)
        return _parse_version(raw)
    except Exception as e:
        fallback = SocketConfig().version
        logger.warning("version lookup failed (%s), using %s", e, ".".join(map(str, fallback)))
        return fallback


def _stream_error_code(node: BinaryNode) -> int | None:
    raw = node.attrs.get("code")
    if raw and raw.isdigit():
        return int(raw)
    if isinstance(node.content, list):
        for child in node.content:
            if isinstance(child, BinaryNode) and child.tag == "conflict":
                if child.attrs.get("type") == "device_removed":
                    return int(DisconnectReason.LOGGED_OUT)
                return int(DisconnectReason.CONNECTION_REPLACED)
    return None


def _text_message(text: str) -> Any:
    from pyaileys.proto import WAProto_pb2 as proto

    msg = proto.Message()
    msg.conversation = text
    return msg


class PyaileysSession:
    def __init__(self, client: WhatsAppClient, auth_state: Any, hooks: SessionHooks) -> None:
        self._client = client
        self._auth_state = auth_state
        self._hooks = hooks
        self.events = AsyncEventEmitter()

        self._closing = False
        self._close_emitted = False
        self._restarting = False
        self._stream_code: int | None = None

        client.on("connection.update", self._on_connection_update)
        client.on("creds.update", self._on_creds_update)
        client.on("message.decrypted", self._on_decrypted)
        client.on("history.sync", self._on_history_sync)
        client.on("stanza.stream:error", self._on_stream_error)
        client.on("stanza.failure", self._on_failure)
        client.on("stanza.receipt", self._on_receipt)

    def on(self, event: str, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    def _me_users(self) -> set[str]:
        me = self._client.socket.auth.creds.me
        if me is None:
            return set()
        return {u for u in (jid_user(me.id), jid_user(me.lid)) if u}

    async def connect(self) -> None:
        await self._client.connect()

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        await self._client.disconnect()

    # -- library events ----------------------------------------------------

    async def _on_creds_update(self, _creds: Any) -> None:
        await self._auth_state.save_creds()

    async def _on_connection_update(self, update: Any) -> None:
        if update.qr:
            await self.events.emit(EV_PAIRING, update.qr)

        if update.connection == "open":
            self._stream_code = None
            await self._auth_state.save_creds()
            me = self._client.socket.auth.creds.me
            await self.events.emit(EV_OPEN, me.id if me else "")
            await self._emit_known_contacts()
        elif update.connection == "close":
            if self._closing or self._close_emitted:
                return
            if self._restarting:
                # 515 after pairing: pyaileys reconnects this same client itself.
                self._restarting = False
                return
            self._close_emitted = True
            err = update.last_disconnect
            code = self._stream_code
            if code is None:
                code = getattr(err, "status_code", None)
            if code is None:
                code = int(
                    DisconnectReason.CONNECTION_LOST if err else DisconnectReason.CONNECTION_CLOSED
                )
            await self.events.emit(EV_CLOSE, code, str(err or ""))
            ensure_task(self.close(), name="wabridge.pyaileys.teardown")

    async def _on_stream_error(self, node: BinaryNode) -> None:
        code = _stream_error_code(node)
        if code == DisconnectReason.RESTART_REQUIRED:
            self._restarting = True
            return
        self._stream_code = code

    async def _on_failure(self, node: BinaryNode) -> None:
        reason = node.attrs.get("reason") or ""
        if reason.isdigit():
            self._stream_code = int(reason)

    async def _on_decrypted(self, ev: dict[str, Any]) -> None:
        chat = str(ev.get("chat_jid") or "")
        sender = str(ev.get("sender_jid") or "")
        if not chat:
            return
        contact = self._client.get_contact(sender) if sender else None
        msg = InboundMessage(
            key=MessageKey(
                remote_jid=chat,
                id=str(ev.get("id") or ""),
                from_me=jid_user(sender) in self._me_users(),
                participant=sender if jid_server(chat) == GROUP_SERVER else None,
            ),
            content=ev.get("message"),
            push_name=(contact.notify or "") if contact else "",
        )
        await self.events.emit(EV_MESSAGES, MessageUpsert(messages=[msg]))

    async def _on_history_sync(self, _info: Any) -> None:
        await self._emit_known_contacts()

    async def _emit_known_contacts(self) -> None:
        records = [
            ContactRecord(id=c.lid_jid, phone_number=jid_user(c.pn_jid))
            for c in self._client.store.list_contacts()
            if c.lid_jid and c.pn_jid
        ]
        if records:
            await self.events.emit(EV_CONTACTS, records)

    async def _on_receipt(self, node: BinaryNode) -> None:
        if node.attrs.get("type") != "retry":
            return
        chat = jid_normalized_user(node.attrs.get("from")) or node.attrs.get("from") or ""
        msg_id = node.attrs.get("id") or ""
        if not chat or not msg_id:
            return

        counter_key = f"{chat}:{msg_id}"
        attempts = self._hooks.retry_counter.increment(counter_key)
        if attempts > MAX_RETRANSMIT_ATTEMPTS:
            if attempts == MAX_RETRANSMIT_ATTEMPTS + 1:
                logger.warning("giving up resending %s after %d attempts", counter_key, attempts - 1)
            return

        content = await self._hooks.get_message(chat, msg_id)
        if content is None:
            logger.debug("retry requested for %s but content is no longer available", counter_key)
            return
        # pyaileys has no public resend call; this re-encrypts for the chat.
        await self._client._send_message(
            chat,
            content,
            stanza_type="text",
            enc_extra_attrs=None,
            fanout=False,
            include_phash=False,
            wait_ack=False,
            timeout_s=15.0,
        )
        logger.info("resent %s (attempt %d)", counter_key, attempts)

    # -- SessionHandle operations ------------------------------------------

    def contact_phone(self, jid: str) -> str | None:
        contact = self._client.get_contact(jid)
        if contact is None or not contact.pn_jid:
            return None
        return jid_user(contact.pn_jid)

    async def send_message(self, jid: str, content: OutboundContent) -> SentMessage:
        if isinstance(content, TextContent):
            mid = await self._client.send_text(jid, content.text, wait_ack=True)
            return SentMessage(
                key=MessageKey(remote_jid=jid, id=mid, from_me=True),
                content=_text_message(content.text),
            )

        data = await asyncio.to_thread(_fetch_bytes, content.url)
        caption = content.caption or None
        guessed = mimetypes.guess_type(content.url)[0]
        if content.kind == "image":
            mid = await self._client.send_image(
                jid, data, mimetype=guessed or "image/jpeg", caption=caption, wait_ack=True
            )
        elif content.kind == "video":
            mid = await self._client.send_video(
                jid, data, mimetype=guessed or "video/mp4", caption=caption, wait_ack=True
            )
        else:
            mid = await self._client.send_document(
                jid,
                data,
                mimetype=content.mimetype or "application/octet-stream",
                filename=content.filename or None,
                caption=caption,
                wait_ack=True,
            )
        return SentMessage(key=MessageKey(remote_jid=jid, id=mid, from_me=True))

    async def on_whatsapp(self, jid: str) -> list[LookupResult]:
        iq = build_usync_iq(
            [jid],
            sid=f"{int(time.time())}-{secrets.randbelow(1_000_000)}",
            context="interactive",
            include_device_protocol=False,
            include_lid_protocol=True,
        )
        res = await self._client.socket.query(iq)
        out: list[LookupResult] = []
        for user in parse_usync_result(res):
            if user.lid:
                out.append(LookupResult(jid=user.lid, exists=True))
            else:
                out.append(LookupResult(jid=user.id, exists=bool(user.id)))
        return out


class PyaileysSessionFactory:
    """
    Startup sequence for one pyaileys session: negotiate the client version,
    load (or create) credentials from the session directory, build the client.
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config

    async def __call__(self, hooks: SessionHooks) -> PyaileysSession:
        version = await fetch_latest_version()
        socket = SocketConfig(
            version=version,
            browser=(self.config.browser[0], self.config.browser[1]),
            sync_full_history=False,
            auto_reconnect=False,
        )
        try:
            client, auth_state = await WhatsAppClient.from_auth_folder(
                str(self.config.session_dir), socket=socket
            )
        except Exception as e:
            raise StartupError(f"failed to load credentials: {e}") from e
        logger.debug("session created with client version %s", ".".join(map(str, version)))
        return PyaileysSession(client, auth_state, hooks)
