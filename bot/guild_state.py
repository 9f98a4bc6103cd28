"""
Guild state management.

One GuildState per guild: its validated config, the periodic flush of its
activity shards, and the lock that keeps hydrations from overlapping.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any, Optional

from core.constants import K
from core.utils import utcnow

if TYPE_CHECKING:
    from .client import WardenBot

logger = logging.getLogger("warden.guild")


class GuildState:
    """
    Manages state for a single Discord guild.

    The activity store itself is shared by the whole bot; a guild only owns
    the flushing of its own shards.
    """

    def __init__(self, bot: "WardenBot", config: dict[str, Any]) -> None:
        self.bot = bot
        self.config = config
        self.guild_id = int(config.get(K.GUILD_ID, 0))

        self.start_time = utcnow()
        self.flush_task: Optional[asyncio.Task] = None
        self.hydrate_lock = asyncio.Lock()

        self._refresh_config_cache()

    def _refresh_config_cache(self) -> None:
        self._ignored_channels = set(self.config.get(K.IGNORED_CHANNEL_IDS, []))

    def update_config(self, config: dict[str, Any]) -> None:
        """Update guild configuration."""
        self.config = config
        self.guild_id = int(config.get(K.GUILD_ID, 0))
        self._refresh_config_cache()

    async def start(self) -> None:
        self.flush_task = asyncio.create_task(self._periodic_flush())
        logger.info("Guild %s state started", self.guild_id)

    async def stop(self) -> None:
        """Stop background tasks and flush this guild's shards."""
        if self.flush_task:
            self.flush_task.cancel()
            await asyncio.gather(self.flush_task, return_exceptions=True)
        try:
            await self.bot.store.flush_dirty_shards(self.guild_id)
        except Exception as e:
            logger.error("Final flush failed for guild %s: %s", self.guild_id, e, exc_info=True)
        logger.info("Guild %s state stopped", self.guild_id)

    async def _periodic_flush(self) -> None:
        """Periodically flush dirty shards to disk."""
        interval = float(self.config.get(K.STORE_FLUSH_INTERVAL_SECONDS, 30))
        # Jitter so guilds do not all write at once
        await asyncio.sleep(random.uniform(0, interval * 0.1))

        while True:
            try:
                await asyncio.sleep(interval)
                await self.bot.store.flush_dirty_shards(self.guild_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in periodic flush for guild %s: %s", self.guild_id, e, exc_info=True)
                await asyncio.sleep(min(interval, 60))

    def is_channel_ignored(self, channel_id: int) -> bool:
        """Check if a channel should be ignored."""
        return channel_id in self._ignored_channels
