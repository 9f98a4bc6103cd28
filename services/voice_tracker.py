"""
Voice session tracking.

Turns voice presence changes into durable voice seconds. Open sessions live
only in memory: time spent before a restart is lost, and members found
already connected at startup are timed from that moment.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Awaitable, Callable, Dict, Optional, Tuple

from core.storage import ActivityStore
from core.utils import MS_PER_SECOND, now_ms

logger = logging.getLogger("warden.voice")

SessionKey = Tuple[int, int]


class VoiceTransition:
    """Presence transitions a voice state update can represent."""
    JOIN = "join"
    LEAVE = "leave"
    MOVE = "move"
    NONE = "none"


def classify_transition(before_channel_id: Optional[int], after_channel_id: Optional[int]) -> str:
    was_connected = before_channel_id is not None
    is_connected = after_channel_id is not None
    if not was_connected and is_connected:
        return VoiceTransition.JOIN
    if was_connected and not is_connected:
        return VoiceTransition.LEAVE
    if was_connected and is_connected and before_channel_id != after_channel_id:
        return VoiceTransition.MOVE
    return VoiceTransition.NONE


def elapsed_seconds(start_ms: int, end_ms: int) -> int:
    return max(0, (end_ms - start_ms) // MS_PER_SECOND)


class VoiceSessionTracker:
    """
    Owns the (guild, member) -> session start map.

    Updates for the same member are serialized by a per-member lock, so a
    channel move always flushes the old session before the new one opens.
    Storage failures are logged and the observation is dropped; the session
    map stays consistent with the presence events either way.
    """

    def __init__(self, store: ActivityStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.clock = clock
        self.sessions: Dict[SessionKey, int] = {}
        # Entries vanish once no update holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[SessionKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: SessionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def session_start(self, guild_id: int, member_id: int) -> Optional[int]:
        return self.sessions.get((guild_id, member_id))

    async def _safe(self, label: str, key: SessionKey, write: Awaitable[object]) -> bool:
        try:
            await write
            return True
        except Exception as e:
            logger.error(
                "Dropped voice %s for user %s in guild %s: %s",
                label, key[1], key[0], e,
            )
            return False

    async def _flush(self, key: SessionKey, start: Optional[int], now: int) -> int:
        if start is None:
            logger.debug("No tracked voice session for user %s in guild %s", key[1], key[0])
            return 0
        delta = elapsed_seconds(start, now)
        await self._safe("flush", key, self.store.add_voice_seconds(key[0], key[1], delta, now))
        return delta

    async def handle_update(
        self,
        guild_id: int,
        member_id: int,
        before_channel_id: Optional[int],
        after_channel_id: Optional[int],
        now: Optional[int] = None,
    ) -> str:
        """Apply one presence change. Returns the transition that was applied."""
        transition = classify_transition(before_channel_id, after_channel_id)
        if transition == VoiceTransition.NONE:
            return transition

        key = (int(guild_id), int(member_id))
        when = self.clock() if now is None else now
        async with self._lock_for(key):
            if transition == VoiceTransition.JOIN:
                self.sessions[key] = when
                await self._safe("join", key, self.store.record_voice_join(key[0], key[1], when))
            elif transition == VoiceTransition.LEAVE:
                start = self.sessions.pop(key, None)
                await self._flush(key, start, when)
            else:
                await self._flush(key, self.sessions.get(key), when)
                self.sessions[key] = when
                await self._safe("join", key, self.store.record_voice_join(key[0], key[1], when))
        return transition

    def open_session(self, guild_id: int, member_id: int, now: Optional[int] = None) -> bool:
        """Start timing a member found already connected. Existing sessions are kept."""
        key = (int(guild_id), int(member_id))
        if key in self.sessions:
            return False
        self.sessions[key] = self.clock() if now is None else now
        return True

    async def close_all(self, now: Optional[int] = None) -> int:
        """Flush and drop every open session. Returns the seconds attributed."""
        when = self.clock() if now is None else now
        total = 0
        for key in list(self.sessions):
            async with self._lock_for(key):
                start = self.sessions.pop(key, None)
                total += await self._flush(key, start, when)
        return total
