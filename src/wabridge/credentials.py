from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from .constants import LEGACY_MAPPING_PREFIX, LID_MAP_FILENAME

logger = logging.getLogger(__name__)

# Identity mapping files share the session directory but are not credentials.
DEFAULT_PRESERVE = (LID_MAP_FILENAME, f"{LEGACY_MAPPING_PREFIX}*.json")


class CredentialStore:
    """
    The session directory as seen by the bridge.

    The protocol library owns the layout of the credential files inside it;
    the bridge only creates the directory and wipes it after a sign-out.
    """

    def __init__(self, folder: str | Path, *, preserve: Iterable[str] = DEFAULT_PRESERVE) -> None:
        self.folder = Path(folder)
        self._preserve = tuple(preserve)

    def _preserved(self, name: str) -> bool:
        return any(fnmatch.fnmatch(name, pat) for pat in self._preserve)

    async def ensure(self) -> Path:
        await asyncio.to_thread(self.folder.mkdir, parents=True, exist_ok=True)
        return self.folder

    def credential_files(self) -> list[Path]:
        if not self.folder.is_dir():
            return []
        return sorted(p for p in self.folder.iterdir() if not self._preserved(p.name))

    def is_empty(self) -> bool:
        return not self.credential_files()

    def _wipe(self) -> int:
        removed = 0
        for p in self.credential_files():
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p, ignore_errors=True)
            else:
                p.unlink(missing_ok=True)
            removed += 1
        self.folder.mkdir(parents=True, exist_ok=True)
        return removed

    async def wipe(self) -> None:
        """Remove all credential material, keeping identity mapping files."""

        try:
            removed = await asyncio.to_thread(self._wipe)
        except OSError as e:
            logger.error("failed to wipe credentials in %s: %s", self.folder, e)
            return
        logger.warning("wiped %d credential entries from %s", removed, self.folder)
