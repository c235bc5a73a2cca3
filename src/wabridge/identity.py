"""
LID -> phone number resolution.

Inbound events may name a contact either by phone-number JID or by an opaque
per-device LID. Mappings are learned from three sources (contact sync, forward
lookups, and legacy per-mapping files left by earlier bridge versions) and
persisted as one `lid_map.json` document, mirrored into the legacy
`lid-mapping-{phone}.json` / `lid-mapping-{lid}_reverse.json` pair so older
tooling can read them.

A LID, once mapped, is never re-pointed at a different phone number.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any, Protocol

from .constants import (
    DEFAULT_LID_SAVE_DEBOUNCE_S,
    LEGACY_MAPPING_PREFIX,
    LEGACY_REVERSE_SUFFIX,
    LID_MAP_FILENAME,
)
from .jid import is_lid, jid_user, normalize_phone, phone_jid
from .session import ContactRecord, LookupResult
from .util.asyncio import Debouncer
from .util.json import read_json, write_json

logger = logging.getLogger(__name__)

PhoneLookup = Callable[[str], Awaitable[list[LookupResult]]]


class ContactDirectory(Protocol):
    def contact_phone(self, jid: str) -> str | None: ...


class IdentityResolver:
    def __init__(
        self, session_dir: str | Path, *, debounce_s: float = DEFAULT_LID_SAVE_DEBOUNCE_S
    ) -> None:
        self.session_dir = Path(session_dir)
        self._lid_to_phone: dict[str, str] = {}
        # LIDs whose legacy mirror files are known to exist on disk.
        self._mirrored: set[str] = set()
        self._saver = Debouncer(self._write, delay_s=debounce_s, name="wabridge.lid_map.save")

    @property
    def map_path(self) -> Path:
        return self.session_dir / LID_MAP_FILENAME

    @property
    def save_pending(self) -> bool:
        return self._saver.pending

    def __len__(self) -> int:
        return len(self._lid_to_phone)

    def __contains__(self, lid: object) -> bool:
        return lid in self._lid_to_phone

    def lookup(self, lid: str) -> str | None:
        return self._lid_to_phone.get(lid)

    def mappings(self) -> dict[str, str]:
        return dict(self._lid_to_phone)

    def _reverse_path(self, lid: str) -> Path:
        return self.session_dir / f"{LEGACY_MAPPING_PREFIX}{lid}{LEGACY_REVERSE_SUFFIX}"

    def _forward_path(self, phone: str) -> Path:
        return self.session_dir / f"{LEGACY_MAPPING_PREFIX}{phone}.json"

    async def load(self) -> int:
        """
        Load the unified document, then absorb legacy reverse files it lacks.

        Returns the number of mappings held afterwards.
        """

        path = self.map_path
        if await asyncio.to_thread(path.exists):
            try:
                data = await read_json(path)
            except (OSError, ValueError) as e:
                logger.error("failed to load LID map %s: %s", path, e)
            else:
                if isinstance(data, dict):
                    for lid, phone in data.items():
                        if lid and isinstance(phone, str) and phone:
                            self._lid_to_phone.setdefault(str(lid), phone)
                logger.info("loaded %d LID mappings from %s", len(self._lid_to_phone), path.name)

        legacy = await asyncio.to_thread(
            lambda: sorted(self.session_dir.glob(f"{LEGACY_MAPPING_PREFIX}*{LEGACY_REVERSE_SUFFIX}"))
        )
        absorbed = 0
        for f in legacy:
            lid = f.name[len(LEGACY_MAPPING_PREFIX) : -len(LEGACY_REVERSE_SUFFIX)]
            phone = await self._read_legacy(f)
            if not lid or not phone:
                continue
            self._mirrored.add(lid)
            if lid not in self._lid_to_phone:
                self._lid_to_phone[lid] = phone
                absorbed += 1
        if absorbed:
            logger.info(
                "absorbed %d legacy LID mappings (total %d)", absorbed, len(self._lid_to_phone)
            )
        return len(self._lid_to_phone)

    async def _read_legacy(self, path: Path) -> str | None:
        try:
            value = await read_json(path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("skipping unreadable mapping file %s: %s", path.name, e)
            return None
        return value if isinstance(value, str) and value else None

    def remember(self, lid: str, phone: str) -> bool:
        """
        Record `lid -> phone` unless the LID is already mapped.

        Returns True when a new mapping was added (and a save scheduled).
        """

        if not lid or not phone:
            return False
        existing = self._lid_to_phone.get(lid)
        if existing is not None:
            if existing != phone:
                logger.warning(
                    "keeping LID %s -> %s, ignoring conflicting phone %s", lid, existing, phone
                )
            return False
        self._lid_to_phone[lid] = phone
        self._saver.schedule()
        return True

    def absorb_contacts(self, contacts: Iterable[ContactRecord]) -> int:
        added = 0
        for c in contacts:
            if not c.phone_number or not is_lid(c.id):
                continue
            if self.remember(jid_user(c.id), normalize_phone(c.phone_number)):
                added += 1
        if added:
            logger.debug("contact sync added %d LID mappings", added)
        return added

    async def resolve(self, jid: str, directory: ContactDirectory | None = None) -> str:
        """
        Best-effort phone number for a chat/contact JID.

        Phone-number JIDs resolve to their user part. LIDs go through memory,
        the library's contact directory, then the legacy reverse file; when all
        miss, the LID itself is returned.
        """

        raw = jid_user(jid)
        if not is_lid(jid):
            return raw

        phone = self._lid_to_phone.get(raw)
        if phone:
            return phone

        if directory is not None:
            found = directory.contact_phone(jid)
            if found:
                phone = normalize_phone(found)
                self.remember(raw, phone)
                logger.info("resolved LID %s -> %s via contact directory", raw, phone)
                return phone

        phone = await self._read_legacy(self._reverse_path(raw))
        if phone:
            self._mirrored.add(raw)
            self.remember(raw, phone)
            logger.info("resolved LID %s -> %s via mapping file", raw, phone)
            return phone

        return raw

    def is_self(self, jid: str, phone: str) -> bool:
        """True when `jid` names the account `phone` directly or via a known LID."""

        if not phone:
            return False
        user = jid_user(jid)
        if user == phone:
            return True
        return is_lid(jid) and self._lid_to_phone.get(user) == phone

    async def resolve_phones(
        self, phones: Iterable[str], lookup: PhoneLookup
    ) -> dict[str, dict[str, Any]]:
        """
        Forward-resolve phone numbers through the network directory.

        Each result is `{"jid", "isLid"}`, `{"jid": None, "isLid": False}` for
        numbers not on the network, or `{"error"}` when the lookup failed.
        """

        results: dict[str, dict[str, Any]] = {}
        added = 0
        for phone in phones:
            try:
                found = await lookup(phone_jid(phone))
            except Exception as e:
                results[phone] = {"error": str(e)}
                continue

            if not found or not found[0].exists:
                results[phone] = {"jid": None, "isLid": False}
                continue

            jid = found[0].jid
            lid_form = is_lid(jid)
            results[phone] = {"jid": jid, "isLid": lid_form}
            if lid_form and self.remember(jid_user(jid), normalize_phone(phone)):
                added += 1

        if added:
            logger.info("resolve-numbers: %d new LID mappings", added)
        return results

    async def flush(self) -> None:
        """Write any pending mappings now instead of waiting for the debounce."""

        await self._saver.flush()

    async def _write(self) -> None:
        snapshot = dict(self._lid_to_phone)
        try:
            await asyncio.to_thread(self.session_dir.mkdir, parents=True, exist_ok=True)
            await write_json(self.map_path, snapshot)
        except OSError as e:
            logger.error("failed to save LID map: %s", e)
            return

        for lid, phone in snapshot.items():
            if lid in self._mirrored:
                continue
            try:
                await write_json(self._forward_path(phone), lid)
                await write_json(self._reverse_path(lid), phone)
            except OSError as e:
                logger.warning("failed to mirror LID mapping %s: %s", lid, e)
                continue
            self._mirrored.add(lid)
