from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any


def dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _write_atomic(path: Path, data: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(data, "utf-8")
    os.replace(tmp, path)


async def read_json(path: Path) -> Any:
    raw = await asyncio.to_thread(path.read_text, "utf-8")
    return json.loads(raw)


async def write_json(path: Path, obj: Any) -> None:
    """Write `obj` as JSON, replacing the target only once fully written."""

    await asyncio.to_thread(_write_atomic, path, dumps(obj))
