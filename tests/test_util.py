from __future__ import annotations

import asyncio
import base64
import json
import logging

import pytest

from wabridge.credentials import CredentialStore
from wabridge.qr import render_qr_data_url
from wabridge.util.asyncio import Debouncer
from wabridge.util.events import AsyncEventEmitter, EventBindings
from wabridge.util.json import read_json, write_json
from wabridge.util.log import parse_level


@pytest.mark.asyncio
async def test_emitter_isolates_failing_listener(caplog) -> None:
    em = AsyncEventEmitter()
    got: list[int] = []

    def bad(_x: int) -> None:
        raise RuntimeError("boom")

    async def good(x: int) -> None:
        got.append(x)

    em.on("e", bad)
    em.on("e", good)
    with caplog.at_level(logging.ERROR):
        assert await em.emit("e", 1)

    assert got == [1]
    assert "listener for 'e' failed" in caplog.text
    assert not await em.emit("other")


@pytest.mark.asyncio
async def test_bindings_release_all() -> None:
    em = AsyncEventEmitter()
    b = EventBindings()
    b.bind(em, {"a": lambda: None, "b": lambda: None})

    assert len(b) == 2
    b.release()
    assert len(b) == 0
    assert em.listener_count("a") == 0
    assert em.listener_count("b") == 0


@pytest.mark.asyncio
async def test_debouncer_coalesces_and_flushes() -> None:
    runs: list[int] = []

    async def action() -> None:
        runs.append(1)

    d = Debouncer(action, delay_s=0.03, name="test")
    d.schedule()
    d.schedule()
    assert d.pending
    await asyncio.sleep(0.1)
    assert runs == [1]

    d.schedule()
    await d.flush()
    assert runs == [1, 1]
    assert not d.pending

    await d.flush()
    assert runs == [1, 1]


@pytest.mark.asyncio
async def test_json_write_is_readable(tmp_path) -> None:
    path = tmp_path / "m.json"
    await write_json(path, {"111": "4917"})

    assert await read_json(path) == {"111": "4917"}
    assert json.loads(path.read_text("utf-8")) == {"111": "4917"}
    assert not (tmp_path / ".m.json.tmp").exists()


@pytest.mark.asyncio
async def test_credential_wipe_keeps_mappings(tmp_path) -> None:
    store = CredentialStore(tmp_path / "sessions")
    folder = await store.ensure()
    (folder / "creds.json").write_text("{}")
    (folder / "keys").mkdir()
    (folder / "keys" / "pre-key-1.json").write_text("{}")
    (folder / "lid_map.json").write_text("{}")
    (folder / "lid-mapping-4917.json").write_text('"111"')

    assert not store.is_empty()
    await store.wipe()

    assert store.is_empty()
    assert sorted(p.name for p in folder.iterdir()) == ["lid-mapping-4917.json", "lid_map.json"]


def test_qr_data_url() -> None:
    url = render_qr_data_url("2@ref,noise,identity,adv")
    prefix = "data:image/svg+xml;base64,"
    assert url.startswith(prefix)
    assert b"<svg" in base64.b64decode(url[len(prefix) :])

    with pytest.raises(ValueError):
        render_qr_data_url("")


def test_parse_level() -> None:
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("WARNING") == logging.WARNING
    assert parse_level("") == logging.INFO
    assert parse_level("chatty") == logging.INFO


@pytest.mark.asyncio
async def test_emitter_off_takes_registered_listener() -> None:
    em = AsyncEventEmitter()
    got: list[str] = []
    em.on("e", got.append)
    em.on("e", got.append)

    em.off("e", got.append)
    assert em.listener_count("e") == 1
    em.off("e", got.append)
    assert not await em.emit("e", "x")
    assert got == []


@pytest.mark.asyncio
async def test_emitter_keeps_wait_for() -> None:
    em = AsyncEventEmitter()
    waiter = em.wait_for_future("ready")

    await em.emit("ready", 42)

    assert await waiter == 42
