"""
Persistent per-member activity records.

Records live in sharded JSON files under ``<data>/.activity/<guild_id>/``,
one shard per leading two digits of the member id. Every read-modify-write
of a record happens under the lock of its (guild, shard) pair, which makes
each upsert atomic with respect to concurrent callers. Loaded shards are
kept in a small LRU cache and written back when dirty.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .io_utils import read_json, write_json_atomic
from .paths import DATA_DIR
from .types import ActivityRecord
from .utils import safe_int

logger = logging.getLogger("warden.storage")

ShardKey = Tuple[int, str]

SHARDS = [f"{i:02d}" for i in range(100)]


class StorageError(RuntimeError):
    pass


class ActivityStore:
    def __init__(self, root: Optional[Path] = None, cache_size: int = 8) -> None:
        self.root = Path(root) if root is not None else DATA_DIR / ".activity"
        self.cache_size = max(2, cache_size)
        self.cache: "OrderedDict[ShardKey, Dict[str, Any]]" = OrderedDict()
        self.cache_meta: Dict[ShardKey, Dict[str, Any]] = {}
        self.cache_lock = asyncio.Lock()
        self.shard_locks: Dict[ShardKey, asyncio.Lock] = {}
        self.locked_shards: set[ShardKey] = set()

    @staticmethod
    def shard_for(member_id: int) -> str:
        member_str = str(member_id)
        shard = member_str[:2] if len(member_str) >= 2 else member_str.zfill(2)
        return shard.zfill(2)

    def guild_root(self, guild_id: int) -> Path:
        return self.root / str(guild_id)

    def shard_path(self, guild_id: int, shard: str) -> Path:
        return self.guild_root(guild_id) / f"{shard}.json"

    def _get_shard_lock(self, key: ShardKey) -> asyncio.Lock:
        if key not in self.shard_locks:
            self.shard_locks[key] = asyncio.Lock()
        return self.shard_locks[key]

    # ─── Shard I/O ────────────────────────────────────────────────────────────

    async def _read_shard_file(self, path: Path) -> Dict[str, Any]:
        try:
            data = await read_json(path, default={})
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read shard {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Shard {path} is not a JSON object")
        return data

    async def _write_shard_file(self, key: ShardKey, data: Dict[str, Any]) -> None:
        guild_id, shard = key
        try:
            await write_json_atomic(self.shard_path(guild_id, shard), data)
        except OSError as exc:
            raise StorageError(f"Cannot write shard {shard} of guild {guild_id}: {exc}") from exc

    async def _evict_if_needed(self) -> None:
        if len(self.cache) <= self.cache_size:
            return
        for key, data in list(self.cache.items()):
            if key in self.locked_shards:
                continue
            meta = self.cache_meta.get(key, {})
            if meta.get("dirty"):
                await self._write_shard_file(key, data)
            self.cache.pop(key, None)
            self.cache_meta.pop(key, None)
            break

    async def _get_shard_data(self, key: ShardKey) -> Dict[str, Any]:
        async with self.cache_lock:
            if key in self.cache:
                self.cache.move_to_end(key)
                return self.cache[key]
        data = await self._read_shard_file(self.shard_path(*key))
        async with self.cache_lock:
            self.cache[key] = data
            self.cache_meta.setdefault(key, {})
            self.cache.move_to_end(key)
            await self._evict_if_needed()
        return data

    async def _mark_dirty(self, key: ShardKey) -> None:
        async with self.cache_lock:
            meta = self.cache_meta.setdefault(key, {})
            meta["dirty"] = True

    async def flush_dirty_shards(self, guild_id: Optional[int] = None) -> int:
        """Write dirty cached shards to disk, optionally of one guild only. Returns the number written."""
        async with self.cache_lock:
            shards = list(self.cache.items())
        written = 0
        for key, data in shards:
            if guild_id is not None and key[0] != int(guild_id):
                continue
            lock = self._get_shard_lock(key)
            async with lock:
                meta = self.cache_meta.get(key, {})
                if meta.get("dirty"):
                    await self._write_shard_file(key, data)
                    meta["dirty"] = False
                    written += 1
        return written

    async def flush_all(self) -> None:
        written = await self.flush_dirty_shards()
        if written:
            logger.info("Flushed %d activity shard(s)", written)

    # ─── Record access ────────────────────────────────────────────────────────

    async def _with_shard(
        self,
        guild_id: int,
        member_id: int,
        action: Callable[[Dict[str, Any], str], Any],
    ) -> Any:
        key = (int(guild_id), self.shard_for(member_id))
        lock = self._get_shard_lock(key)
        async with lock:
            async with self.cache_lock:
                self.locked_shards.add(key)
            try:
                data = await self._get_shard_data(key)
                return await action(data, key)
            finally:
                async with self.cache_lock:
                    self.locked_shards.discard(key)

    async def update_record(
        self,
        guild_id: int,
        member_id: int,
        updater: Callable[[Dict[str, Any]], None],
    ) -> ActivityRecord:
        """Create the record if absent, apply ``updater`` to it, return the result."""
        member_str = str(member_id)

        async def _apply(data: Dict[str, Any], key: ShardKey) -> ActivityRecord:
            record = data.get(member_str)
            if not isinstance(record, dict):
                record = ActivityRecord().to_dict()
                data[member_str] = record
            updater(record)
            await self._mark_dirty(key)
            return ActivityRecord.from_dict(record)

        return await self._with_shard(guild_id, member_id, _apply)

    async def find(self, guild_id: int, member_id: int) -> Optional[ActivityRecord]:
        """Return the stored record, or None when nothing was ever observed."""
        member_str = str(member_id)

        async def _read(data: Dict[str, Any], key: ShardKey) -> Optional[ActivityRecord]:
            record = data.get(member_str)
            return ActivityRecord.from_dict(record) if isinstance(record, dict) else None

        return await self._with_shard(guild_id, member_id, _read)

    async def get(self, guild_id: int, member_id: int) -> ActivityRecord:
        """Return the stored record, or an empty record when absent."""
        record = await self.find(guild_id, member_id)
        return record if record is not None else ActivityRecord()

    async def record_message(
        self,
        guild_id: int,
        member_id: int,
        timestamp: int,
        keep_latest: bool = False,
    ) -> ActivityRecord:
        """
        Set ``last_message_at``.

        Live messages overwrite unconditionally. Backfilled history passes
        ``keep_latest`` so an older message never replaces a newer one.
        """
        def _update(record: Dict[str, Any]) -> None:
            current = safe_int(record.get("last_message_at"))
            if keep_latest and current is not None and current >= timestamp:
                return
            record["last_message_at"] = int(timestamp)

        return await self.update_record(guild_id, member_id, _update)

    async def record_voice_join(self, guild_id: int, member_id: int, timestamp: int) -> ActivityRecord:
        def _update(record: Dict[str, Any]) -> None:
            current = safe_int(record.get("last_voice_at"))
            record["last_voice_at"] = max(current or 0, int(timestamp))

        return await self.update_record(guild_id, member_id, _update)

    async def add_voice_seconds(
        self,
        guild_id: int,
        member_id: int,
        delta_seconds: int,
        timestamp: int,
    ) -> ActivityRecord:
        def _update(record: Dict[str, Any]) -> None:
            total = safe_int(record.get("voice_seconds_total")) or 0
            record["voice_seconds_total"] = max(0, total) + max(0, int(delta_seconds))
            current = safe_int(record.get("last_voice_at"))
            record["last_voice_at"] = max(current or 0, int(timestamp))

        return await self.update_record(guild_id, member_id, _update)

    async def iter_records(self, guild_id: int) -> List[Tuple[int, ActivityRecord]]:
        """Return every stored (member_id, record) pair of a guild."""
        results: List[Tuple[int, ActivityRecord]] = []
        for shard in SHARDS:
            key = (int(guild_id), shard)
            lock = self._get_shard_lock(key)
            async with lock:
                async with self.cache_lock:
                    cached = self.cache.get(key)
                    data = dict(cached) if cached is not None else None
                if data is None:
                    data = await self._read_shard_file(self.shard_path(*key))
            for member_str, record in data.items():
                member_id = safe_int(member_str)
                if member_id is None or not isinstance(record, dict):
                    continue
                results.append((member_id, ActivityRecord.from_dict(record)))
        return results
