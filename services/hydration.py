"""
History backfill.

Live listeners only see activity from the moment the bot starts. Hydration
pages backwards through channel history and records the last message time of
every non-bot author whose messages fall inside the window, so long-time
members who were active before the bot arrived are not reported as inactive.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Set

import discord

from core.storage import ActivityStore, StorageError
from core.types import HydrationStats
from core.utils import clamp, dt_to_ms, ms_from_days, now_ms

from .channels import ChannelAccess, HistoryFetchError, HistoryUnavailable

logger = logging.getLogger("warden.hydration")

PAGE_SIZE = 100
DEFAULT_PER_CHANNEL_LIMIT = 500
MIN_PER_CHANNEL_LIMIT = 200
MAX_PER_CHANNEL_LIMIT = 20_000
DEFAULT_PAGE_DELAY = 0.35

Sleeper = Callable[[float], Awaitable[None]]


def clamp_per_channel_limit(value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_PER_CHANNEL_LIMIT
    return clamp(int(value), MIN_PER_CHANNEL_LIMIT, MAX_PER_CHANNEL_LIMIT)


async def _fetch_with_retry(
    channel: ChannelAccess,
    limit: int,
    before: Optional[discord.abc.Snowflake],
    max_retries: int,
    page_delay: float,
    sleep: Sleeper,
) -> List[discord.Message]:
    attempt = 0
    while True:
        try:
            return await channel.fetch_page(limit, before)
        except HistoryFetchError as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "History page fetch failed in channel %s (attempt %d/%d): %s",
                channel.id, attempt, max_retries, e,
            )
            await sleep(max(page_delay, 0.5) * attempt)


async def _scan_channel(
    guild_id: int,
    channel: ChannelAccess,
    store: ActivityStore,
    cutoff: int,
    per_channel_limit: int,
    stats: HydrationStats,
    touched: Set[int],
    page_delay: float,
    max_retries: int,
    sleep: Sleeper,
) -> None:
    scanned_here = 0
    before: Optional[discord.abc.Snowflake] = None

    while scanned_here < per_channel_limit:
        requested = min(PAGE_SIZE, per_channel_limit - scanned_here)
        batch = await _fetch_with_retry(channel, requested, before, max_retries, page_delay, sleep)
        if not batch:
            break

        for message in batch:
            scanned_here += 1
            stats.messages_scanned += 1
            if message.author.bot:
                continue
            created = dt_to_ms(message.created_at)
            if created >= cutoff:
                await store.record_message(guild_id, message.author.id, created, keep_latest=True)
                touched.add(message.author.id)

        oldest = batch[-1]
        before = oldest
        # History is newest-first: once a page reaches past the cutoff nothing older can count.
        if dt_to_ms(oldest.created_at) < cutoff or len(batch) < requested:
            break
        await sleep(page_delay)


async def hydrate(
    guild_id: int,
    channels: Sequence[ChannelAccess],
    store: ActivityStore,
    window_days: int,
    per_channel_limit: int = DEFAULT_PER_CHANNEL_LIMIT,
    now: Optional[int] = None,
    page_delay: float = DEFAULT_PAGE_DELAY,
    max_retries: int = 3,
    sleep: Sleeper = asyncio.sleep,
) -> HydrationStats:
    """
    Backfill ``last_message_at`` from the history of ``channels``.

    A channel that fails part-way is skipped; whatever it already recorded is
    kept.
    """
    cutoff = (now_ms() if now is None else now) - ms_from_days(max(0, window_days))
    stats = HydrationStats()
    touched: Set[int] = set()

    for channel in channels:
        stats.channels_scanned += 1
        try:
            await _scan_channel(
                guild_id, channel, store, cutoff, per_channel_limit,
                stats, touched, page_delay, max_retries, sleep,
            )
        except HistoryUnavailable as e:
            stats.channels_failed += 1
            logger.warning("Skipping channel %s in guild %s: %s", channel.id, guild_id, e)
        except (HistoryFetchError, StorageError) as e:
            stats.channels_failed += 1
            logger.error("Abandoned channel %s in guild %s: %s", channel.id, guild_id, e)

    stats.users_touched = len(touched)
    logger.info("Hydration for guild %s finished: %s", guild_id, stats.to_dict())
    return stats
