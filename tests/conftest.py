"""Fakes standing in for discord.py objects, plus shared fixtures."""
from __future__ import annotations

import datetime as dt
from types import SimpleNamespace
from typing import Dict, List, Optional

import discord
import pytest

from core.storage import ActivityStore
from core.utils import UTC

NOW = 1_700_000_000_000
DAY_MS = 24 * 60 * 60 * 1000


def http_response(status: int = 500, reason: str = "Server Error") -> SimpleNamespace:
    return SimpleNamespace(status=status, reason=reason)


class FakeRole:
    def __init__(self, role_id: int, name: str = "role") -> None:
        self.id = role_id
        self.name = name


class FakeMember:
    def __init__(
        self,
        member_id: int,
        guild: "FakeGuild",
        name: str = "",
        bot: bool = False,
        administrator: bool = False,
        kick_members: bool = False,
        manage_guild: bool = False,
        roles: Optional[List[FakeRole]] = None,
    ) -> None:
        self.id = member_id
        self.guild = guild
        self.name = name or f"user{member_id}"
        self.bot = bot
        self.roles = roles or []
        self.guild_permissions = discord.Permissions(
            administrator=administrator,
            kick_members=kick_members,
            manage_guild=manage_guild,
        )
        self.kicked_reason: Optional[str] = None
        self.kick_error: Optional[Exception] = None

    def __str__(self) -> str:
        return self.name

    async def kick(self, reason: Optional[str] = None) -> None:
        if self.kick_error is not None:
            raise self.kick_error
        self.kicked_reason = reason
        self.guild.kicked.append(self.id)


class FakeGuild:
    def __init__(self, guild_id: int = 1000, owner_id: int = 1) -> None:
        self.id = guild_id
        self.name = f"guild{guild_id}"
        self.owner_id = owner_id
        self.members: List[FakeMember] = []
        self.channels: list = []
        self.chunked = True
        self.chunk_error: Optional[Exception] = None
        self.kicked: List[int] = []
        self.departed: set[int] = set()
        self.me: Optional[FakeMember] = None

    def add_member(self, member_id: int, **kwargs) -> FakeMember:
        member = FakeMember(member_id, self, **kwargs)
        self.members.append(member)
        return member

    async def chunk(self) -> None:
        if self.chunk_error is not None:
            raise self.chunk_error
        self.chunked = True

    async def fetch_member(self, member_id: int) -> FakeMember:
        for member in self.members:
            if member.id == member_id and member_id not in self.departed:
                return member
        raise discord.NotFound(http_response(404, "Not Found"), "Unknown Member")


class FakeMessage:
    def __init__(self, message_id: int, author: SimpleNamespace, created_ms: int) -> None:
        self.id = message_id
        self.author = author
        self.content = f"message {message_id}"
        self.created_at = dt.datetime.fromtimestamp(created_ms / 1000, tz=UTC)


class FakeTextChannel(discord.abc.Messageable):
    """Messages are kept newest first, like channel history."""

    def __init__(
        self,
        channel_id: int,
        messages: Optional[List[FakeMessage]] = None,
        view_channel: bool = True,
        read_message_history: bool = True,
    ) -> None:
        self.id = channel_id
        self.mention = f"<#{channel_id}>"
        self.type = discord.ChannelType.text
        self.messages = sorted(messages or [], key=lambda m: m.id, reverse=True)
        self.perms = discord.Permissions(
            view_channel=view_channel,
            read_message_history=read_message_history,
            send_messages=True,
        )
        self.failures: List[Exception] = []
        self.calls: List[Dict[str, object]] = []

    def permissions_for(self, member) -> discord.Permissions:
        return self.perms

    async def _get_channel(self):
        return self

    async def history(self, limit: int = 100, before=None):
        self.calls.append({"limit": limit, "before": getattr(before, "id", None)})
        if self.failures:
            raise self.failures.pop(0)
        emitted = 0
        for message in self.messages:
            if before is not None and message.id >= before.id:
                continue
            if emitted >= limit:
                break
            emitted += 1
            yield message


class FakeThreadedChannel(FakeTextChannel):
    """A text channel with active threads and a paginated archive."""

    def __init__(self, channel_id: int, threads=(), archived=(), **kwargs) -> None:
        super().__init__(channel_id, **kwargs)
        self.threads = list(threads)
        self.archived = list(archived)
        self.archive_error: Optional[Exception] = None

    async def archived_threads(self, limit=None):
        for thread in self.archived:
            yield thread
        if self.archive_error is not None:
            raise self.archive_error


def author(user_id: int, bot: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=user_id, bot=bot)


def make_history(entries, start_id: int = 1) -> List[FakeMessage]:
    """Build messages from (author, created_ms) pairs given oldest first."""
    return [
        FakeMessage(start_id + index, msg_author, created)
        for index, (msg_author, created) in enumerate(entries)
    ]


@pytest.fixture
def store(tmp_path) -> ActivityStore:
    return ActivityStore(root=tmp_path / "activity")


@pytest.fixture
def guild() -> FakeGuild:
    g = FakeGuild()
    g.me = FakeMember(999, g, name="warden", bot=True)
    return g


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    from core import config

    path = tmp_path / "config.guild"
    monkeypatch.setattr(config, "GUILD_CONFIG_DIR", path)
    return path
