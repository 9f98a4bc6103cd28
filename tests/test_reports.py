"""Tests for report builders and report channel resolution."""
import asyncio

import discord

from core import config
from core.constants import ReportKind
from core.types import ActivityRecord, InactiveMember
from services.reports import (
    build_inactivity_report,
    build_scan_reply,
    format_preview,
    render_health_snapshot,
    resolve_report_channel,
    summarize_health,
)

from conftest import DAY_MS, NOW, FakeTextChannel


def _inactive(count):
    return [InactiveMember(member_id=i + 1) for i in range(count)]


def test_format_preview_limits_sample():
    sample, more = format_preview(_inactive(5), 3)
    assert sample == "<@1>, <@2>, <@3>"
    assert more == 2
    assert format_preview([], 3) == ("", 0)


def test_scan_reply_shows_total_and_criteria():
    text = build_scan_reply(_inactive(60), 90, 30, "regulars")
    assert "Total: **60**" in text
    assert "< 30 VC mins" in text
    assert "exclude role: regulars" in text
    assert "+ 10 more" in text
    assert "<@51>" not in text


def test_scan_reply_without_candidates():
    text = build_scan_reply([], 90, 0)
    assert "Total: **0**" in text
    assert "_None_" in text
    assert "VC mins" not in text


def test_inactivity_report_uses_preview_size():
    text = build_inactivity_report(_inactive(25), 90, 0, 20)
    assert "Candidates: **25**" in text
    assert "+5 more" in text
    assert "last **90** days" in text


def test_health_summary_counts_last_day_only():
    records = [
        (1, ActivityRecord(last_message_at=NOW - 1_000)),
        (2, ActivityRecord(last_message_at=NOW - 2 * DAY_MS, last_voice_at=NOW - 60_000)),
        (3, ActivityRecord(last_message_at=NOW - DAY_MS, last_voice_at=NOW - DAY_MS)),
        (4, ActivityRecord()),
    ]

    snapshot = summarize_health(records, NOW, threshold=15)
    assert snapshot.text_senders == 2
    assert snapshot.voice_joiners == 2
    assert snapshot.active_users == 2
    assert snapshot.needs_boost


def test_health_snapshot_rendering():
    records = [(i, ActivityRecord(last_message_at=NOW)) for i in range(3)]

    preface, embed = render_health_snapshot(summarize_health(records, NOW, threshold=3))
    assert preface.startswith("✅")
    assert isinstance(embed, discord.Embed)
    assert [field.value for field in embed.fields] == ["**3**", "**3**", "**0**"]

    preface, _ = render_health_snapshot(summarize_health(records, NOW, threshold=4))
    assert "<4 active users" in preface


def test_report_channel_from_setting(guild):
    channel = FakeTextChannel(55)
    guild.get_channel = lambda channel_id: channel if channel_id == 55 else None

    found = asyncio.run(resolve_report_channel(guild, {"modlog_channel_id": 55}, ReportKind.INACTIVITY))
    assert found is channel


def test_report_channel_from_environment(guild, monkeypatch):
    channel = FakeTextChannel(66)
    guild.get_channel = lambda channel_id: channel if channel_id == 66 else None
    monkeypatch.setattr(config, "HEALTH_LOG_CHANNEL_ID", 66)

    found = asyncio.run(resolve_report_channel(guild, {"healthlog_channel_id": None}, ReportKind.HEALTH))
    assert found is channel


def test_report_channel_by_name(guild, monkeypatch):
    channel = FakeTextChannel(77)
    channel.name = "mod-log"
    guild.text_channels = [channel]
    monkeypatch.setattr(config, "MOD_LOG_CHANNEL_ID", None)

    found = asyncio.run(resolve_report_channel(
        guild,
        {"modlog_channel_id": None, "modlog_channel_name": "mod-log"},
        ReportKind.INACTIVITY,
    ))
    assert found is channel


def test_hidden_report_channel_is_rejected(guild):
    channel = FakeTextChannel(55, view_channel=False)
    guild.get_channel = lambda channel_id: channel

    assert asyncio.run(resolve_report_channel(guild, {"modlog_channel_id": 55}, ReportKind.INACTIVITY)) is None
