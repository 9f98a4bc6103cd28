"""
Member protection and command capability checks.

Protected members (bots, the guild owner, administrators) are never reported
as inactive and never removed, whatever their activity.
"""
from __future__ import annotations

from typing import Optional

import discord


def is_protected(member: Optional[discord.Member]) -> bool:
    """Check if a member must never be flagged or removed."""
    if member is None:
        return True
    if member.bot:
        return True
    if member.id == member.guild.owner_id:
        return True
    if member.guild_permissions.administrator:
        return True
    return False


def has_role(member: discord.Member, role_id: Optional[int]) -> bool:
    if role_id is None:
        return False
    return any(role.id == role_id for role in member.roles)


def can_remove_members(member: discord.Member) -> bool:
    """Capability required for scanning, inspecting and removing."""
    perms = member.guild_permissions
    return perms.administrator or perms.kick_members


def can_manage_guild(member: discord.Member) -> bool:
    """Elevated capability required for hydration and report settings."""
    perms = member.guild_permissions
    return perms.administrator or perms.manage_guild
