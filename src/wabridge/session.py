"""
Contract between the bridge and the protocol library.

The library itself (encryption, pairing, framing) is a black box. It is
reached only through `SessionHandle`, which emits these events:

- `pairing(qr: str)`: a new pairing challenge to render
- `open(user_jid: str)`: the session is authenticated
- `close(status_code: int | None, reason: str)`: the session ended
- `messages(upsert: MessageUpsert)`: inbound and self-sent messages
- `contacts(records: list[ContactRecord])`: contact directory sync

and it needs three things from the caller, bundled as `SessionHooks`: a
durable credential location (owned by the factory), a content provider for
retransmission, and a retry-attempt counter.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from .retransmit import RetryCounterStore
from .util.events import Listener

EV_PAIRING = "pairing"
EV_OPEN = "open"
EV_CLOSE = "close"
EV_MESSAGES = "messages"
EV_CONTACTS = "contacts"

MediaKind = Literal["image", "video", "document"]


@dataclass(frozen=True, slots=True)
class MessageKey:
    remote_jid: str
    id: str
    from_me: bool = False
    participant: str | None = None


@dataclass(slots=True)
class InboundMessage:
    key: MessageKey
    content: Any | None = None  # library message object or mapping
    push_name: str = ""


@dataclass(slots=True)
class MessageUpsert:
    messages: list[InboundMessage]
    # "notify" for live traffic, "append" for backfill the bridge ignores.
    kind: str = "notify"


@dataclass(frozen=True, slots=True)
class ContactRecord:
    id: str
    phone_number: str | None = None


@dataclass(frozen=True, slots=True)
class SentMessage:
    key: MessageKey
    content: Any | None = None


@dataclass(frozen=True, slots=True)
class LookupResult:
    jid: str
    exists: bool


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str


@dataclass(frozen=True, slots=True)
class MediaContent:
    kind: MediaKind
    url: str
    caption: str = ""
    filename: str = ""
    mimetype: str = ""


OutboundContent = TextContent | MediaContent

ContentProvider = Callable[[str, str], Awaitable[Any | None]]


@dataclass(slots=True)
class SessionHooks:
    get_message: ContentProvider
    retry_counter: RetryCounterStore = field(default_factory=RetryCounterStore)


class SessionHandle(Protocol):
    def on(self, event: str, listener: Listener) -> None: ...

    def off(self, event: str, listener: Listener) -> None: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def send_message(self, jid: str, content: OutboundContent) -> SentMessage: ...

    async def on_whatsapp(self, jid: str) -> list[LookupResult]: ...

    def contact_phone(self, jid: str) -> str | None:
        """Phone number the library's local contact directory holds for `jid`."""
        ...


SessionFactory = Callable[[SessionHooks], Awaitable[SessionHandle]]


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_text(content: Any) -> str | None:
    """
    Plain text body of a message, if it has one.

    Only plain conversation text and extended (rich) text count; media
    captions, reactions and everything else yield None.
    """

    conv = _field(content, "conversation")
    if isinstance(conv, str) and conv:
        return conv

    text = _field(_field(content, "extendedTextMessage"), "text")
    if isinstance(text, str) and text:
        return text

    return None
