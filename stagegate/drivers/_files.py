"""Shared helpers for the JSON file drivers."""

from __future__ import annotations

import json
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    return str(value)


def key_to_filename(key: str, suffix: str = ".json") -> str:
    """Encode an arbitrary key (identity, run id) as a single safe file name."""
    return quote(key, safe="") + suffix


def filename_to_key(name: str, suffix: str = ".json") -> str:
    return unquote(name.removesuffix(suffix))


async def read_json(path: Path) -> Any | None:
    """Return the decoded document at *path*, or None if it does not exist."""
    if not await aiofiles.os.path.exists(path):
        return None
    async with aiofiles.open(path, encoding="utf-8") as f:
        return json.loads(await f.read())


async def write_json(path: Path, data: Any) -> None:
    """Write *data* atomically: a reader never sees a partial document."""
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=2, sort_keys=True, default=_json_default))
    await aiofiles.os.replace(tmp, path)


def list_keys(directory: Path, suffix: str = ".json") -> list[Path]:
    """Files in *directory* carrying *suffix*, oldest first."""
    if not directory.is_dir():
        return []
    files = [p for p in directory.iterdir() if p.suffix == suffix and not p.name.startswith(".")]
    return sorted(files, key=lambda p: (p.stat().st_mtime, p.name))
