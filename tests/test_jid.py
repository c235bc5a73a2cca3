from __future__ import annotations

import pytest

from wabridge.jid import is_lid, jid_server, jid_user, normalize_phone, phone_jid, to_jid


@pytest.mark.parametrize(
    ("jid", "user"),
    [
        ("15551234567@s.whatsapp.net", "15551234567"),
        ("15551234567:12@s.whatsapp.net", "15551234567"),
        ("999_1:3@lid", "999"),
        ("15551234567", "15551234567"),
        ("", ""),
        (None, ""),
    ],
)
def test_jid_user(jid: str | None, user: str) -> None:
    assert jid_user(jid) == user


def test_servers() -> None:
    assert jid_server("999@lid") == "lid"
    assert jid_server("4917") == ""
    assert is_lid("999:3@lid")
    assert not is_lid("999@s.whatsapp.net")
    assert not is_lid(None)


def test_phone_normalization() -> None:
    assert normalize_phone("+49 170-123 45") == "4917012345"
    assert phone_jid("+1 555") == "1555@s.whatsapp.net"


def test_to_jid() -> None:
    assert to_jid(" 4917 ") == "4917@s.whatsapp.net"
    assert to_jid("120363@g.us") == "120363@g.us"
    assert to_jid("999@lid") == "999@lid"
