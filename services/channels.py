"""
Channel capability queries.

Wraps a discord channel together with the bot's own member so callers ask
questions (can it hold history, is it visible, is a permission granted)
instead of inspecting concrete channel types.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import discord

logger = logging.getLogger("warden.channels")


class HistoryUnavailable(RuntimeError):
    """The channel's history can no longer be read (forbidden or deleted)."""


class HistoryFetchError(RuntimeError):
    """A history page could not be fetched; retrying may succeed."""


class ChannelAccess:
    def __init__(self, channel: discord.abc.GuildChannel | discord.Thread, me: discord.Member) -> None:
        self.channel = channel
        self.me = me

    @property
    def id(self) -> int:
        return self.channel.id

    @property
    def mention(self) -> str:
        return self.channel.mention

    def _permissions(self) -> discord.Permissions:
        return self.channel.permissions_for(self.me)

    def supports_history(self) -> bool:
        return isinstance(self.channel, discord.abc.Messageable)

    def is_visible(self) -> bool:
        return self._permissions().view_channel

    def has_permission(self, name: str) -> bool:
        return bool(getattr(self._permissions(), name, False))

    def can_read_history(self) -> bool:
        return (
            self.supports_history()
            and self.is_visible()
            and self.has_permission("read_message_history")
        )

    async def fetch_page(self, limit: int, before: Optional[discord.abc.Snowflake] = None) -> List[discord.Message]:
        """Fetch up to ``limit`` messages older than ``before``, newest first."""
        try:
            return [m async for m in self.channel.history(limit=limit, before=before)]
        except (discord.Forbidden, discord.NotFound) as e:
            raise HistoryUnavailable(str(e)) from e
        except discord.HTTPException as e:
            raise HistoryFetchError(str(e)) from e


async def _threads_of(channel: discord.abc.GuildChannel, me: discord.Member) -> List[ChannelAccess]:
    threads: List[ChannelAccess] = []
    seen: set[int] = set()
    for thread in getattr(channel, "threads", []):
        seen.add(thread.id)
        threads.append(ChannelAccess(thread, me))
    archived = getattr(channel, "archived_threads", None)
    if archived is None:
        return threads
    try:
        async for thread in archived(limit=None):
            if thread.id not in seen:
                seen.add(thread.id)
                threads.append(ChannelAccess(thread, me))
    except discord.HTTPException as e:
        logger.warning("Could not list archived threads of channel %s: %s", channel.id, e)
    return threads


async def collect_channels(
    guild: discord.Guild,
    target: Optional[discord.abc.GuildChannel] = None,
    include_threads: bool = False,
) -> List[ChannelAccess]:
    """
    Build the list of channels a history backfill should read.

    Either the single target channel, or every channel of the guild the bot
    can see and read. With ``include_threads`` each base channel's active and
    archived threads are added after it.
    """
    me = guild.me
    base = [target] if target is not None else list(guild.channels)
    candidates: List[ChannelAccess] = []
    for channel in base:
        access = ChannelAccess(channel, me)
        if access.can_read_history():
            candidates.append(access)
        if include_threads and access.is_visible() and hasattr(channel, "threads"):
            for thread in await _threads_of(channel, me):
                if thread.can_read_history():
                    candidates.append(thread)
    return candidates
