"""
Report building for scans and the scheduled jobs.

Builders are pure functions of their inputs; only ``resolve_report_channel``
talks to Discord.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

import discord

from core import config as config_module
from core.constants import K, ReportKind
from core.types import ActivityRecord, InactiveMember
from core.utils import MS_PER_DAY

from .channels import ChannelAccess

logger = logging.getLogger("warden.reports")

MAX_PREVIEW = 50


@dataclass(frozen=True)
class HealthSnapshot:
    text_senders: int
    voice_joiners: int
    threshold: int
    generated_at: int

    @property
    def active_users(self) -> int:
        return self.text_senders

    @property
    def needs_boost(self) -> bool:
        return self.active_users < self.threshold


def format_preview(inactive: Sequence[InactiveMember], limit: int) -> Tuple[str, int]:
    """Return the mention sample and how many members were left out of it."""
    sample = ", ".join(member.mention for member in inactive[:limit])
    return sample, max(0, len(inactive) - limit)


def build_scan_reply(
    inactive: Sequence[InactiveMember],
    window_days: int,
    min_voice_minutes: int,
    exclude_role_name: Optional[str] = None,
) -> str:
    sample, more = format_preview(inactive, MAX_PREVIEW)
    criteria = "no msgs & no VC"
    if min_voice_minutes > 0:
        criteria += f" & < {min_voice_minutes} VC mins"
    return (
        f"Inactive users in last **{window_days}** days ({criteria}; "
        f"exclude role: {exclude_role_name or 'none'}).\n"
        f"Total: **{len(inactive)}**\n"
        f"Sample: {sample or '_None_'}{f' + {more} more' if more else ''}\n\n"
        "Use `inactivity kick confirm=true` to remove them."
    )


def build_inactivity_report(
    inactive: Sequence[InactiveMember],
    window_days: int,
    min_voice_minutes: int,
    preview_size: int,
) -> str:
    sample, more = format_preview(inactive, preview_size)
    criteria = "no messages & no VC join in window"
    if min_voice_minutes > 0:
        criteria += f" & < {min_voice_minutes} VC mins"
    return (
        f"⏰ Daily inactive scan (last **{window_days}** days)\n"
        f"• Candidates: **{len(inactive)}**\n"
        f"• Sample: {sample or '_None_'}{f', +{more} more' if more else ''}\n"
        f"• Note: criteria = {criteria}"
    )


def summarize_health(
    records: Iterable[Tuple[int, ActivityRecord]],
    now: int,
    threshold: int,
) -> HealthSnapshot:
    """Count distinct members active over the trailing 24 hours."""
    since = now - MS_PER_DAY
    text_senders = 0
    voice_joiners = 0
    for _member_id, record in records:
        if record.last_message_at is not None and record.last_message_at >= since:
            text_senders += 1
        if record.last_voice_at is not None and record.last_voice_at >= since:
            voice_joiners += 1
    return HealthSnapshot(
        text_senders=text_senders,
        voice_joiners=voice_joiners,
        threshold=threshold,
        generated_at=now,
    )


def render_health_snapshot(snapshot: HealthSnapshot) -> Tuple[str, discord.Embed]:
    embed = discord.Embed(
        title="📊 Server Health Snapshot (last 24h)",
        description="Here is how many people showed up today.",
        timestamp=dt.datetime.fromtimestamp(snapshot.generated_at / 1000, tz=dt.timezone.utc),
    )
    embed.add_field(name="Active users", value=f"**{snapshot.active_users}**", inline=True)
    embed.add_field(name="Text senders", value=f"**{snapshot.text_senders}**", inline=True)
    embed.add_field(name="VC joins", value=f"**{snapshot.voice_joiners}**", inline=True)
    embed.set_footer(text=f"Cutoff for \"needs boost\": < {snapshot.threshold} active users")

    if snapshot.needs_boost:
        preface = (
            f"⚠️ **Activity looks low today (<{snapshot.threshold} active users).** "
            "Consider posting a prompt or hosting a quick VC!"
        )
    else:
        preface = "✅ **Looks healthy!** Keep the momentum going."
    return preface, embed


_CHANNEL_SETTINGS = {
    ReportKind.INACTIVITY: (K.MODLOG_CHANNEL_ID, K.MODLOG_CHANNEL_NAME, "MOD_LOG_CHANNEL_ID"),
    ReportKind.HEALTH: (K.HEALTHLOG_CHANNEL_ID, K.HEALTHLOG_CHANNEL_NAME, "HEALTH_LOG_CHANNEL_ID"),
}


def is_usable_report_channel(channel: Any, me: discord.Member) -> bool:
    if channel is None:
        return False
    access = ChannelAccess(channel, me)
    return access.supports_history() and access.is_visible()


async def resolve_report_channel(
    guild: discord.Guild,
    config: dict[str, Any],
    kind: str,
) -> Optional[discord.abc.Messageable]:
    """
    Find where a report of ``kind`` goes.

    Order: the guild setting, the environment fallback, then a text channel
    with the configured name. The channel must be text-capable and visible.
    """
    id_key, name_key, env_attr = _CHANNEL_SETTINGS[kind]
    channel_id = config.get(id_key) or getattr(config_module, env_attr)

    channel = None
    if channel_id:
        channel = guild.get_channel(int(channel_id))
        if channel is None:
            try:
                channel = await guild.fetch_channel(int(channel_id))
            except discord.HTTPException as e:
                logger.warning("Report channel %s of guild %s unavailable: %s", channel_id, guild.id, e)
                channel = None
    else:
        channel = discord.utils.get(guild.text_channels, name=config.get(name_key))

    if not is_usable_report_channel(channel, guild.me):
        return None
    return channel
