"""
Inactivity commands - find, inspect and remove inactive members.

Text commands:
    inactivity scan [days=N] [min_vc=M] [role=R]            - List inactive members
    inactivity kick confirm=true [days=N] [min_vc=M] [role=R] - Remove inactive members
    inactivity hydrate [days=N] [limit=L] [channel=C] [threads=yes] - Backfill message history
    inactivity inspect <member>                              - Show a member's stored activity
    inactivity peek <channel> [limit=N]                      - Show the last messages of a channel
    inactivity channel <channel>                             - Show what the bot can do in a channel
    inactivity modlog <channel>                              - Set the daily inactivity report channel
    inactivity healthlog <channel>                           - Set the daily health snapshot channel
    inactivity help                                          - Show all inactivity commands

Scanning never removes anyone; removal needs ``confirm=true`` every time.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import discord

from core.config import ConfigError, set_report_channel
from core.constants import K, ReportKind
from core.permissions import can_manage_guild, can_remove_members
from core.utils import clamp, dt_to_ms, ms_to_iso, parse_snowflake, safe_int, sanitize_text
from services.channels import ChannelAccess, HistoryFetchError, HistoryUnavailable, collect_channels
from services.hydration import DEFAULT_PER_CHANNEL_LIMIT, clamp_per_channel_limit, hydrate
from services.reports import build_scan_reply, is_usable_report_channel
from services.scanner import ScanError, remove_members, scan_inactive

if TYPE_CHECKING:
    from bot.client import WardenBot
    from bot.guild_state import GuildState

logger = logging.getLogger("warden.inactivity")

COMMAND_PATTERN = re.compile(r"^inactivity\s+(\w+)(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)

SUBCOMMANDS = {
    "scan", "kick", "hydrate", "inspect", "peek", "channel",
    "modlog", "healthlog", "help",
}

MANAGE_GUILD_SUBCOMMANDS = {"hydrate", "modlog", "healthlog"}

TRUE_WORDS = {"true", "yes", "y", "1", "on"}
FALSE_WORDS = {"false", "no", "n", "0", "off"}

PEEK_DEFAULT = 10
PEEK_MAX = 25


class CommandError(ValueError):
    """Invalid command input; the message is shown to the invoker."""


def parse_arguments(args: Optional[str]) -> Tuple[List[str], Dict[str, str]]:
    """Split ``a b key=value`` into positional tokens and lower-cased options."""
    positional: List[str] = []
    options: Dict[str, str] = {}
    for token in (args or "").split():
        if "=" in token:
            key, _, value = token.partition("=")
            options[key.strip().lower()] = value.strip()
        else:
            positional.append(token)
    return positional, options


def int_option(options: Dict[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = options.get(key)
    if raw is None or raw == "":
        return default
    value = safe_int(raw)
    if value is None or value < minimum:
        raise CommandError(f"`{key}` must be an integer ≥ {minimum}.")
    return value


def bool_option(options: Dict[str, str], key: str, default: bool = False) -> bool:
    raw = options.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.lower()
    if lowered in TRUE_WORDS:
        return True
    if lowered in FALSE_WORDS:
        return False
    raise CommandError(f"`{key}` must be yes or no.")


def is_confirmed(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() == "true"


async def _reply(message: discord.Message, text: str) -> None:
    await message.reply(
        text,
        mention_author=False,
        allowed_mentions=discord.AllowedMentions.none(),
    )


async def handle_command(message: discord.Message, bot: "WardenBot") -> bool:
    """
    Handle inactivity commands.

    Returns True if message was an inactivity command (handled), False otherwise.
    """
    if not message.guild:
        return False

    content = (message.content or "").strip()
    match = COMMAND_PATTERN.match(content)
    if not match:
        return False

    subcommand = match.group(1).lower()
    if subcommand not in SUBCOMMANDS:
        return False

    member = message.author if isinstance(message.author, discord.Member) else None
    if member is None:
        member = message.guild.get_member(message.author.id)
    if member is None or not can_remove_members(member):
        await _reply(message, "❌ You need **Kick Members** permission to use this.")
        return True
    if subcommand in MANAGE_GUILD_SUBCOMMANDS and not can_manage_guild(member):
        await _reply(message, "❌ You need **Manage Server** to run this.")
        return True

    state = bot.guild_states.get(message.guild.id)
    if state is None and subcommand != "help":
        await _reply(message, "❌ Guild state not initialized. Please try again later.")
        return True

    positional, options = parse_arguments(match.group(2))
    try:
        if subcommand == "help":
            await _cmd_help(message)
        elif subcommand == "scan":
            await _cmd_scan(message, bot, state, options)
        elif subcommand == "kick":
            await _cmd_kick(message, bot, state, options)
        elif subcommand == "hydrate":
            await _cmd_hydrate(message, bot, state, options)
        elif subcommand == "inspect":
            await _cmd_inspect(message, bot, positional)
        elif subcommand == "peek":
            await _cmd_peek(message, positional, options)
        elif subcommand == "channel":
            await _cmd_channel(message, positional)
        elif subcommand == "modlog":
            await _cmd_set_report_channel(message, state, positional, ReportKind.INACTIVITY)
        elif subcommand == "healthlog":
            await _cmd_set_report_channel(message, state, positional, ReportKind.HEALTH)
    except CommandError as e:
        await _reply(message, f"❌ {e}")
    except Exception as e:
        logger.error("inactivity %s failed in guild %s: %s", subcommand, message.guild.id, e, exc_info=True)
        await _reply(message, "Something went wrong. Check permissions and try again.")

    return True


async def _cmd_help(message: discord.Message) -> None:
    """Show help for inactivity commands."""
    help_text = """**⏰ Inactivity Commands**

**Finding inactive members:**
**`inactivity scan [days=90] [min_vc=0] [role=<role>]`** - List members with no messages and no voice activity
**`inactivity kick confirm=true [days=90] [min_vc=0] [role=<role>]`** - Kick them
**`inactivity inspect <member>`** - Show a member's stored activity

**History:**
**`inactivity hydrate [days=90] [limit=500] [channel=<channel>] [threads=yes]`** - Backfill messages sent before the bot was watching

**Reports:**
**`inactivity modlog <channel>`** - Daily inactivity report channel
**`inactivity healthlog <channel>`** - Daily health snapshot channel

**Debugging:**
**`inactivity peek <channel> [limit=10]`** - Last messages of a channel
**`inactivity channel <channel>`** - What the bot can do in a channel

**How it works:**
A member counts as active with a message or a voice join inside the window,
or with at least `min_vc` minutes of voice time in total. Bots, the owner and
administrators are never listed. `role` excludes everyone holding that role.
"""
    await message.reply(help_text, mention_author=False)


def _scan_filters(
    message: discord.Message,
    state: "GuildState",
    options: Dict[str, str],
) -> Tuple[int, int, Optional[discord.Role]]:
    days = int_option(options, "days", int(state.config.get(K.INACTIVE_DAYS_THRESHOLD, 90)))
    min_vc = int_option(options, "min_vc", int(state.config.get(K.MIN_VOICE_MINUTES, 0)))
    role = None
    if options.get("role"):
        role_id = parse_snowflake(options["role"])
        role = message.guild.get_role(role_id) if role_id else None
        if role is None:
            raise CommandError(f"Role `{sanitize_text(options['role'], 40)}` not found in this server.")
    return days, min_vc, role


async def _run_scan(
    message: discord.Message,
    bot: "WardenBot",
    state: "GuildState",
    days: int,
    min_vc: int,
    role: Optional[discord.Role],
):
    try:
        return await scan_inactive(
            message.guild,
            bot.store,
            days,
            min_vc,
            exclude_role_id=role.id if role else None,
            fetch_timeout=float(state.config.get(K.MEMBER_FETCH_TIMEOUT_SECONDS, 30)),
        )
    except ScanError as e:
        logger.error("Scan failed for guild %s: %s", message.guild.id, e)
        raise CommandError("Could not fetch the member list. Try again later.") from e


async def _cmd_scan(
    message: discord.Message,
    bot: "WardenBot",
    state: "GuildState",
    options: Dict[str, str],
) -> None:
    days, min_vc, role = _scan_filters(message, state, options)
    inactive = await _run_scan(message, bot, state, days, min_vc, role)
    await _reply(message, build_scan_reply(inactive, days, min_vc, role.name if role else None))


async def _cmd_kick(
    message: discord.Message,
    bot: "WardenBot",
    state: "GuildState",
    options: Dict[str, str],
) -> None:
    if not is_confirmed(options.get("confirm")):
        await _reply(message, "Type `confirm=true` to proceed.")
        return

    days, min_vc, role = _scan_filters(message, state, options)
    inactive = await _run_scan(message, bot, state, days, min_vc, role)
    ids = [member.member_id for member in inactive]
    result = await remove_members(message.guild, ids, confirm=True)

    logger.info(
        "Inactivity kick in guild %s by user %s: removed=%d targeted=%d",
        message.guild.id, message.author.id, result.removed_count, result.targeted,
    )
    await _reply(message, f"**Kicked {result.removed_count} / {result.targeted}** inactive members.")


def _resolve_channel(guild: discord.Guild, raw: Optional[str]) -> Any:
    channel_id = parse_snowflake(raw)
    if channel_id is None:
        raise CommandError("Provide a channel mention or ID.")
    channel = guild.get_channel_or_thread(channel_id)
    if channel is None:
        raise CommandError(f"Channel `{channel_id}` not found in this server.")
    return channel


async def _cmd_hydrate(
    message: discord.Message,
    bot: "WardenBot",
    state: "GuildState",
    options: Dict[str, str],
) -> None:
    guild = message.guild
    days = int_option(options, "days", int(state.config.get(K.INACTIVE_DAYS_THRESHOLD, 90)))
    limit = clamp_per_channel_limit(int_option(options, "limit", DEFAULT_PER_CHANNEL_LIMIT))
    include_threads = bool_option(options, "threads")
    target = _resolve_channel(guild, options["channel"]) if options.get("channel") else None

    if state.hydrate_lock.locked():
        await _reply(message, "⏳ A hydration is already running in this server.")
        return

    async with state.hydrate_lock:
        channels = await collect_channels(guild, target=target, include_threads=include_threads)
        if target and not channels:
            raise CommandError(
                "I cannot read message history in that channel or its threads."
                if include_threads
                else "I cannot read message history in that channel."
            )
        await _reply(
            message,
            f"Hydrate starting (≤{days}d, up to {limit} msgs/channel)"
            + (f" on {target.mention}" if target else " on all visible text channels")
            + (" + threads" if include_threads else "")
            + "…",
        )
        stats = await hydrate(
            guild.id,
            channels,
            bot.store,
            days,
            per_channel_limit=limit,
            page_delay=float(state.config.get(K.HYDRATE_PAGE_DELAY_SECONDS, 0.35)),
            max_retries=int(state.config.get(K.HYDRATE_MAX_PAGE_RETRIES, 3)),
        )

    lines = [
        "Hydrate complete.",
        f"• Channels scanned: {stats.channels_scanned}",
        f"• Messages scanned: {stats.messages_scanned}",
        f"• Users updated: {stats.users_touched}",
    ]
    if stats.channels_failed:
        lines.append(f"• Channels skipped after errors: {stats.channels_failed}")
    if target:
        lines.append(f"• Channel: {target.mention}")
    await message.channel.send("\n".join(lines), allowed_mentions=discord.AllowedMentions.none())


async def _cmd_inspect(message: discord.Message, bot: "WardenBot", positional: List[str]) -> None:
    member_id = parse_snowflake(positional[0] if positional else None)
    if member_id is None:
        raise CommandError("Usage: `inactivity inspect <member>`")

    record = await bot.store.get(message.guild.id, member_id)
    session_start = bot.voice_tracker.session_start(message.guild.id, member_id)
    if record.is_empty and session_start is None:
        await _reply(message, f"No activity recorded for <@{member_id}>.")
        return
    lines = [
        f"User: <@{member_id}>",
        f"last_message_at: {ms_to_iso(record.last_message_at) or 'none'}",
        f"last_vc_at:      {ms_to_iso(record.last_voice_at) or 'none'}",
        f"vc_seconds_total: {record.voice_seconds_total}",
    ]
    if session_start is not None:
        lines.append(f"open VC session since: {ms_to_iso(session_start)}")
    await _reply(message, "\n".join(lines))


async def _cmd_peek(message: discord.Message, positional: List[str], options: Dict[str, str]) -> None:
    channel = _resolve_channel(message.guild, positional[0] if positional else None)
    limit = clamp(int_option(options, "limit", PEEK_DEFAULT, minimum=1), 1, PEEK_MAX)

    access = ChannelAccess(channel, message.guild.me)
    if not access.can_read_history():
        raise CommandError("I cannot read messages in that channel.")

    try:
        batch = await access.fetch_page(limit)
    except (HistoryUnavailable, HistoryFetchError) as e:
        raise CommandError(f"Fetch failed: {e}") from e
    if not batch:
        await _reply(message, "No messages returned.")
        return

    lines = []
    for msg in batch[:limit]:
        when = ms_to_iso(dt_to_ms(msg.created_at))
        who = f"(bot) {msg.author}" if msg.author.bot else str(msg.author)
        text = (msg.content or "[embed/attachment]")[:60].replace("\n", " ")
        lines.append(f"• {when} - {sanitize_text(who, 64)}: {sanitize_text(text, 80)}")

    await _reply(message, f"Last {len(lines)} messages in {channel.mention}:\n" + "\n".join(lines))


async def _cmd_channel(message: discord.Message, positional: List[str]) -> None:
    channel = _resolve_channel(message.guild, positional[0] if positional else None)
    access = ChannelAccess(channel, message.guild.me)
    await _reply(
        message,
        f"Channel: {channel.mention} (id: {channel.id})\n"
        f"type: {channel.type}\n"
        f"supports history: {'yes' if access.supports_history() else 'no'}\n"
        f"visible: {'yes' if access.is_visible() else 'no'}\n"
        f"perms(view_channel): {access.has_permission('view_channel')}\n"
        f"perms(read_message_history): {access.has_permission('read_message_history')}\n"
        f"perms(send_messages): {access.has_permission('send_messages')}",
    )


async def _cmd_set_report_channel(
    message: discord.Message,
    state: "GuildState",
    positional: List[str],
    kind: str,
) -> None:
    channel = _resolve_channel(message.guild, positional[0] if positional else None)
    if not is_usable_report_channel(channel, message.guild.me):
        raise CommandError("Please choose a text channel I can see.")

    key = K.MODLOG_CHANNEL_ID if kind == ReportKind.INACTIVITY else K.HEALTHLOG_CHANNEL_ID
    try:
        config = await set_report_channel(message.guild.id, key, channel.id)
    except ConfigError as e:
        logger.error("Could not store %s for guild %s: %s", key, message.guild.id, e)
        raise CommandError("Could not save the setting. Check the guild config file.") from e
    state.update_config(config)

    logger.info(
        "Set %s=%s for guild %s by user %s",
        key, channel.id, message.guild.id, message.author.id,
    )
    if kind == ReportKind.INACTIVITY:
        await _reply(message, f"Inactive-scan reports will post to {channel.mention}.")
    else:
        await _reply(message, f"Server Health Snapshots will post to {channel.mention}.")
