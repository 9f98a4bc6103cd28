"""
JSON file helpers.

Blocking file work runs in a worker thread. Writes go to a private temp file
in the target directory and are renamed into place, so a reader sees either
the old document or the new one, never a partial file.
"""
from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any


async def read_json(path: Path, default: Any = None) -> Any:
    """Load ``path``; a missing file yields ``default``. Malformed JSON raises ValueError."""
    def _load() -> Any:
        if not path.exists():
            return default
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    return await asyncio.to_thread(_load)


async def write_json_atomic(path: Path, data: Any) -> None:
    def _dump() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=True, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    await asyncio.to_thread(_dump)
