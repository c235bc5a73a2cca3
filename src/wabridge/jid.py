from __future__ import annotations

import re

from .constants import LID_SERVER, PN_SERVER

_PHONE_NOISE = re.compile(r"[+\s-]")


def jid_user(jid: str | None) -> str:
    """
    The user part of a JID, without agent or device suffixes.

    `"15551234567:12@s.whatsapp.net"` -> `"15551234567"`; a string without `@`
    is treated as a bare user.
    """

    if not jid:
        return ""
    user = jid.split("@", 1)[0]
    return user.split(":", 1)[0].split("_", 1)[0]


def jid_server(jid: str | None) -> str:
    if not jid or "@" not in jid:
        return ""
    return jid.rsplit("@", 1)[1]


def is_lid(jid: str | None) -> bool:
    return jid_server(jid) == LID_SERVER


def normalize_phone(raw: str) -> str:
    return _PHONE_NOISE.sub("", raw or "")


def phone_jid(phone: str) -> str:
    return f"{normalize_phone(phone)}@{PN_SERVER}"


def to_jid(target: str) -> str:
    """Accept either a full JID or a bare phone number."""

    target = target.strip()
    if "@" in target:
        return target
    return phone_jid(target)
