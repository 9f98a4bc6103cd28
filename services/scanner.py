"""
Member scanning and removal.

``scan_inactive`` is read-only: it walks the guild's membership in listing
order, skips protected members and members holding the excluded role, and
classifies everyone else from their stored activity. ``remove_members`` is
the separate, destructive step and refuses to run without an explicit
confirmation.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

import discord

from core.permissions import has_role, is_protected
from core.storage import ActivityStore
from core.types import ActivityRecord, InactiveMember, RemovalResult
from core.utils import ms_from_days, now_ms

from .classifier import is_inactive

logger = logging.getLogger("warden.scanner")

REMOVAL_REASON = "Inactive (no messages and no voice activity within the threshold)"


class ScanError(RuntimeError):
    pass


class ConfirmationRequired(RuntimeError):
    pass


def scan_cutoff(window_days: int, min_voice_minutes: int, now: int) -> tuple[int, int]:
    """Return (cutoff timestamp in ms, minimum voice seconds)."""
    cutoff = now - ms_from_days(max(0, window_days))
    min_voice_seconds = max(0, min_voice_minutes) * 60
    return cutoff, min_voice_seconds


async def fetch_members(guild: discord.Guild, timeout: float = 30.0) -> Sequence[discord.Member]:
    """
    Return the full member listing of a guild.

    A chunk request that times out falls back to the cached members. Any other
    failure with nothing cached means no listing can be produced.
    """
    if not guild.chunked:
        try:
            await asyncio.wait_for(guild.chunk(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Member fetch for guild %s timed out after %ss, using %d cached member(s)",
                guild.id, timeout, len(guild.members),
            )
        except discord.HTTPException as e:
            if not guild.members:
                raise ScanError(f"Could not fetch members of guild {guild.id}: {e}") from e
            logger.warning("Member fetch for guild %s failed, using cache: %s", guild.id, e)
    return list(guild.members)


async def _lookup(store: ActivityStore, guild_id: int, member_id: int) -> ActivityRecord:
    try:
        return await store.get(guild_id, member_id)
    except Exception as e:
        logger.warning("Activity lookup failed for user %s in guild %s: %s", member_id, guild_id, e)
        return ActivityRecord()


async def classify_members(
    guild_id: int,
    members: Iterable[discord.Member],
    store: ActivityStore,
    window_days: int,
    min_voice_minutes: int = 0,
    exclude_role_id: Optional[int] = None,
    now: Optional[int] = None,
) -> List[InactiveMember]:
    """Apply protection rules and the classifier to an already fetched listing."""
    cutoff, min_voice_seconds = scan_cutoff(
        window_days, min_voice_minutes, now_ms() if now is None else now
    )
    inactive: List[InactiveMember] = []
    for member in members:
        if is_protected(member):
            continue
        if has_role(member, exclude_role_id):
            continue
        record = await _lookup(store, guild_id, member.id)
        if not is_inactive(record, cutoff, min_voice_seconds):
            continue
        inactive.append(InactiveMember(member_id=member.id, display=str(member)))
    return inactive


async def scan_inactive(
    guild: discord.Guild,
    store: ActivityStore,
    window_days: int,
    min_voice_minutes: int = 0,
    exclude_role_id: Optional[int] = None,
    now: Optional[int] = None,
    fetch_timeout: float = 30.0,
) -> List[InactiveMember]:
    members = await fetch_members(guild, timeout=fetch_timeout)
    inactive = await classify_members(
        guild.id, members, store, window_days, min_voice_minutes, exclude_role_id, now
    )
    logger.info(
        "Scanned guild %s: members=%d inactive=%d window_days=%d min_vc_minutes=%d",
        guild.id, len(members), len(inactive), window_days, min_voice_minutes,
    )
    return inactive


async def _refetch(guild: discord.Guild, member_id: int) -> Optional[discord.Member]:
    try:
        return await guild.fetch_member(member_id)
    except discord.NotFound:
        return None


async def remove_members(
    guild: discord.Guild,
    member_ids: Sequence[int],
    confirm: bool = False,
    reason: str = REMOVAL_REASON,
) -> RemovalResult:
    """
    Kick the given members.

    Each member is re-fetched and re-checked against the protection rules
    first. A failure for one member is logged and does not stop the rest.
    """
    if confirm is not True:
        raise ConfirmationRequired("Removal requires explicit confirmation")

    removed: List[int] = []
    failed: List[int] = []
    for member_id in member_ids:
        try:
            member = await _refetch(guild, member_id)
            if member is None or is_protected(member):
                continue
            await member.kick(reason=reason)
            removed.append(member_id)
        except discord.HTTPException as e:
            logger.warning("Failed to remove user %s from guild %s: %s", member_id, guild.id, e)
            failed.append(member_id)

    logger.info(
        "Removed %d / %d inactive member(s) from guild %s",
        len(removed), len(member_ids), guild.id,
    )
    return RemovalResult(targeted=len(member_ids), removed=tuple(removed), failed=tuple(failed))
