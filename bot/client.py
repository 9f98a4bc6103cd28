"""
Discord bot client - lean event handling.

Activity observation (messages and voice presence) feeds the shared
ActivityStore; commands and the daily reports are delegated to modules and
services.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

import discord
from discord.ext import tasks

from core.config import (
    ConfigError,
    ensure_guild_config,
    load_default_template,
    load_guild_config,
    report_schedule,
)
from core.constants import K, ReportKind
from core.scheduling import daily_loop
from core.storage import ActivityStore
from core.utils import dt_to_ms, now_ms
from modules.inactivity import handle_command as handle_inactivity_command
from services.reports import (
    build_inactivity_report,
    render_health_snapshot,
    resolve_report_channel,
    summarize_health,
)
from services.scanner import scan_inactive
from services.voice_tracker import VoiceSessionTracker

from .guild_state import GuildState

logger = logging.getLogger("warden")


class WardenBot(discord.Client):
    """
    Main Discord bot client.

    Handles:
    - Discord events (on_ready, on_message, on_voice_state_update, etc.)
    - Guild state management
    - The daily inactivity report and health snapshot
    """

    def __init__(self, store: Optional[ActivityStore] = None) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.guilds = True
        intents.voice_states = True
        super().__init__(intents=intents)

        self.store = store if store is not None else ActivityStore()
        self.voice_tracker = VoiceSessionTracker(self.store)
        self.guild_states: dict[int, GuildState] = {}
        self.default_template: Optional[dict[str, Any]] = None
        self.report_loops: List[tasks.Loop] = []
        self.ready_once = False

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def on_ready(self) -> None:
        """Called when the bot is ready."""
        if self.ready_once:
            return
        logger.info("Bot ready as %s", self.user)
        self.ready_once = True

        for guild in self.guilds:
            await self._ensure_guild_state(guild, create_if_missing=True)
            self._open_existing_voice_sessions(guild)

        self._start_report_loops()

    async def close(self) -> None:
        """Cleanup when shutting down."""
        for loop in self.report_loops:
            loop.cancel()
        try:
            seconds = await self.voice_tracker.close_all()
            logger.info("Closed open voice sessions (%ds attributed)", seconds)
        except Exception as e:
            logger.error("Failed to close voice sessions: %s", e, exc_info=True)
        for state in list(self.guild_states.values()):
            await state.stop()
        try:
            await self.store.flush_all()
        except Exception as e:
            logger.error("Final activity flush failed: %s", e, exc_info=True)
        await super().close()

    def _start_report_loops(self) -> None:
        try:
            inactivity_at, health_at, timezone = report_schedule()
        except ConfigError as e:
            logger.error("Daily reports disabled: %s", e)
            return
        self.report_loops = [
            daily_loop("inactivity-report", inactivity_at, timezone, self.run_inactivity_reports),
            daily_loop("health-snapshot", health_at, timezone, self.run_health_snapshots),
        ]
        for loop in self.report_loops:
            if not loop.is_running():
                loop.start()

    def _open_existing_voice_sessions(self, guild: discord.Guild) -> None:
        """Start timing members who were already connected when the bot came up."""
        opened = 0
        for channel in list(guild.voice_channels) + list(guild.stage_channels):
            for member in channel.members:
                if member.bot:
                    continue
                if self.voice_tracker.open_session(guild.id, member.id):
                    opened += 1
        if opened:
            logger.info("Guild %s: opened %d voice session(s) at startup", guild.id, opened)

    # ─── Guild State Management ───────────────────────────────────────────────

    def _get_guild_state(self, guild_id: int) -> Optional[GuildState]:
        """Get state for a guild if it exists."""
        return self.guild_states.get(guild_id)

    async def _ensure_guild_state(
        self,
        guild: discord.Guild,
        create_if_missing: bool,
    ) -> Optional[GuildState]:
        """Ensure guild state exists, optionally creating config if missing."""
        if guild.id in self.guild_states:
            return self.guild_states[guild.id]

        try:
            config = await load_guild_config(guild.id)
        except ConfigError as exc:
            if not create_if_missing:
                logger.warning("Guild %s not configured: %s", guild.id, exc)
                return None

            if self.default_template is None:
                self.default_template = await load_default_template()

            try:
                config = await ensure_guild_config(guild.id, self.default_template)
            except ConfigError as exc2:
                logger.error("Failed to seed config for guild %s: %s", guild.id, exc2)
                return None

        state = GuildState(self, config)
        await state.start()
        self.guild_states[guild.id] = state
        return state

    async def _remove_guild_state(self, guild_id: int) -> None:
        """Remove and cleanup guild state."""
        state = self.guild_states.pop(guild_id, None)
        if state:
            await state.stop()

    # ─── Guild Events ─────────────────────────────────────────────────────────

    async def on_guild_join(self, guild: discord.Guild) -> None:
        """Called when the bot joins a guild."""
        await self._ensure_guild_state(guild, create_if_missing=True)
        self._open_existing_voice_sessions(guild)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        """Called when the bot is removed from a guild."""
        await self._remove_guild_state(guild.id)

    # ─── Activity Events ──────────────────────────────────────────────────────

    async def on_message(self, message: discord.Message) -> None:
        """Handle incoming messages."""
        if message.author.bot or message.guild is None:
            return

        if await handle_inactivity_command(message, self):
            return

        state = self._get_guild_state(message.guild.id)
        if state and state.is_channel_ignored(message.channel.id):
            return

        try:
            await self.store.record_message(
                message.guild.id,
                message.author.id,
                dt_to_ms(message.created_at) if message.created_at else now_ms(),
            )
        except Exception as e:
            logger.error("Failed to record message for user %s: %s", message.author.id, e)

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Feed voice presence changes to the session tracker."""
        if member.bot:
            return
        await self.voice_tracker.handle_update(
            member.guild.id,
            member.id,
            before.channel.id if before.channel else None,
            after.channel.id if after.channel else None,
        )

    # ─── Daily Reports ────────────────────────────────────────────────────────

    async def _post_report(
        self,
        guild: discord.Guild,
        state: GuildState,
        kind: str,
        content: str,
        embed: Optional[discord.Embed] = None,
    ) -> bool:
        channel = await resolve_report_channel(guild, state.config, kind)
        if channel is None:
            return False
        await channel.send(
            content,
            embed=embed,
            allowed_mentions=discord.AllowedMentions.none(),
        )
        return True

    async def run_inactivity_reports(self) -> None:
        """Post the daily inactive-member scan to every guild's mod-log."""
        for guild_id, state in list(self.guild_states.items()):
            guild = self.get_guild(guild_id)
            if guild is None:
                continue
            try:
                window_days = int(state.config.get(K.INACTIVE_DAYS_THRESHOLD, 90))
                min_vc = int(state.config.get(K.MIN_VOICE_MINUTES, 0))
                inactive = await scan_inactive(
                    guild,
                    self.store,
                    window_days,
                    min_vc,
                    fetch_timeout=float(state.config.get(K.MEMBER_FETCH_TIMEOUT_SECONDS, 30)),
                )
                text = build_inactivity_report(
                    inactive,
                    window_days,
                    min_vc,
                    int(state.config.get(K.REPORT_PREVIEW_SIZE, 20)),
                )
                if not await self._post_report(guild, state, ReportKind.INACTIVITY, text):
                    logger.info("[%s] %s", guild.name, text.replace("\n", " "))
            except Exception as e:
                logger.warning("Daily inactivity report failed for guild %s: %s", guild_id, e, exc_info=True)

    async def run_health_snapshots(self) -> None:
        """Post the last-24h activity snapshot to every guild's health-log."""
        for guild_id, state in list(self.guild_states.items()):
            guild = self.get_guild(guild_id)
            if guild is None:
                continue
            try:
                records = await self.store.iter_records(guild_id)
                snapshot = summarize_health(
                    records,
                    now_ms(),
                    int(state.config.get(K.HEALTH_LOW_ACTIVITY_THRESHOLD, 15)),
                )
                preface, embed = render_health_snapshot(snapshot)
                if not await self._post_report(guild, state, ReportKind.HEALTH, preface, embed):
                    logger.debug("Guild %s has no health-log channel", guild_id)
            except Exception as e:
                logger.warning("Health snapshot failed for guild %s: %s", guild_id, e, exc_info=True)
