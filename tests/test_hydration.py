"""Tests for history backfill."""
import asyncio
import logging

import discord

from services.channels import ChannelAccess, collect_channels
from services.hydration import (
    MAX_PER_CHANNEL_LIMIT,
    MIN_PER_CHANNEL_LIMIT,
    clamp_per_channel_limit,
    hydrate,
)

from conftest import (
    DAY_MS,
    NOW,
    FakeTextChannel,
    FakeThreadedChannel,
    author,
    http_response,
    make_history,
)

GUILD = 1000


async def no_sleep(_seconds):
    return None


def _run(channels, store, window_days=30, **kwargs):
    kwargs.setdefault("sleep", no_sleep)
    accesses = [ChannelAccess(channel, None) for channel in channels]
    return asyncio.run(hydrate(GUILD, accesses, store, window_days, now=NOW, **kwargs))


def test_clamp_per_channel_limit():
    assert clamp_per_channel_limit(None) == 500
    assert clamp_per_channel_limit(5) == MIN_PER_CHANNEL_LIMIT
    assert clamp_per_channel_limit(10**9) == MAX_PER_CHANNEL_LIMIT
    assert clamp_per_channel_limit(1_000) == 1_000


def test_records_latest_message_per_author(store):
    alice, bob = author(1), author(2)
    channel = FakeTextChannel(10, make_history([
        (alice, NOW - 3 * DAY_MS),
        (bob, NOW - 2 * DAY_MS),
        (alice, NOW - 1 * DAY_MS),
    ]))

    stats = _run([channel], store)
    assert stats.messages_scanned == 3
    assert stats.users_touched == 2
    assert asyncio.run(store.get(GUILD, 1)).last_message_at == NOW - 1 * DAY_MS
    assert asyncio.run(store.get(GUILD, 2)).last_message_at == NOW - 2 * DAY_MS


def test_final_totals_are_logged(store, caplog):
    channel = FakeTextChannel(10, make_history([(author(1), NOW - DAY_MS)]))

    with caplog.at_level(logging.INFO, logger="warden.hydration"):
        stats = _run([channel], store)

    assert stats.to_dict() == {
        "channels_scanned": 1,
        "messages_scanned": 1,
        "users_touched": 1,
        "channels_failed": 0,
    }
    assert f"Hydration for guild {GUILD} finished: {stats.to_dict()}" in caplog.text


def test_bots_and_messages_before_cutoff_are_ignored(store):
    channel = FakeTextChannel(10, make_history([
        (author(1), NOW - 60 * DAY_MS),
        (author(2, bot=True), NOW - DAY_MS),
    ]))

    stats = _run([channel], store)
    assert stats.users_touched == 0
    assert asyncio.run(store.find(GUILD, 1)) is None
    assert asyncio.run(store.find(GUILD, 2)) is None


def test_backfill_never_replaces_newer_live_activity(store):
    asyncio.run(store.record_message(GUILD, 1, NOW))
    channel = FakeTextChannel(10, make_history([(author(1), NOW - DAY_MS)]))

    _run([channel], store)
    assert asyncio.run(store.get(GUILD, 1)).last_message_at == NOW


def test_pages_backwards_until_limit(store):
    entries = [(author(1000 + i), NOW - DAY_MS + i) for i in range(250)]
    channel = FakeTextChannel(10, make_history(entries))

    stats = _run([channel], store, per_channel_limit=230)
    assert stats.messages_scanned == 230
    assert [call["limit"] for call in channel.calls] == [100, 100, 30]
    assert channel.calls[0]["before"] is None
    assert channel.calls[1]["before"] == 151


def test_stops_at_first_page_reaching_past_cutoff(store):
    old = [(author(1), NOW - 90 * DAY_MS + i) for i in range(150)]
    recent = [(author(2), NOW - DAY_MS + i) for i in range(50)]
    channel = FakeTextChannel(10, make_history(old + recent))

    stats = _run([channel], store, per_channel_limit=1_000)
    assert len(channel.calls) == 1
    assert stats.messages_scanned == 100
    assert stats.users_touched == 1


def test_short_page_ends_channel(store):
    channel = FakeTextChannel(10, make_history([(author(1), NOW - DAY_MS)]))

    _run([channel], store)
    assert len(channel.calls) == 1


def test_transient_failure_is_retried(store):
    channel = FakeTextChannel(10, make_history([(author(1), NOW - DAY_MS)]))
    channel.failures = [discord.HTTPException(http_response(503, "Unavailable"), "try later")]
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    stats = _run([channel], store, sleep=record_sleep, page_delay=0.1)
    assert stats.channels_failed == 0
    assert stats.users_touched == 1
    assert delays == [0.5]


def test_channel_abandoned_after_retries(store):
    failing = FakeTextChannel(10)
    failing.failures = [discord.HTTPException(http_response(), "boom") for _ in range(3)]
    healthy = FakeTextChannel(11, make_history([(author(1), NOW - DAY_MS)]))

    stats = _run([failing, healthy], store, max_retries=2)
    assert stats.channels_scanned == 2
    assert stats.channels_failed == 1
    assert stats.users_touched == 1


def test_forbidden_channel_is_skipped_without_retry(store):
    forbidden = FakeTextChannel(10)
    forbidden.failures = [discord.Forbidden(http_response(403, "Forbidden"), "Missing Access")]
    healthy = FakeTextChannel(11, make_history([(author(1), NOW - DAY_MS)]))

    stats = _run([forbidden, healthy], store)
    assert len(forbidden.calls) == 1
    assert stats.channels_failed == 1
    assert stats.users_touched == 1


def test_collect_channels_keeps_readable_history(guild):
    readable = FakeTextChannel(10)
    hidden = FakeTextChannel(11, view_channel=False)
    no_history = FakeTextChannel(12, read_message_history=False)
    guild.channels = [readable, hidden, no_history, object()]

    accesses = asyncio.run(collect_channels(guild))
    assert [access.id for access in accesses] == [10]


def test_collect_channels_with_target(guild):
    target = FakeTextChannel(10)
    guild.channels = [target, FakeTextChannel(11)]

    assert [a.id for a in asyncio.run(collect_channels(guild, target=target))] == [10]


def test_collect_channels_adds_threads_after_parent(guild):
    parent = FakeThreadedChannel(
        10,
        threads=[FakeTextChannel(21), FakeTextChannel(22)],
        archived=[FakeTextChannel(31)],
    )
    guild.channels = [parent, FakeTextChannel(11)]

    accesses = asyncio.run(collect_channels(guild, include_threads=True))
    assert [access.id for access in accesses] == [10, 21, 22, 31, 11]


def test_collect_channels_without_threads_flag_skips_threads(guild):
    parent = FakeThreadedChannel(10, threads=[FakeTextChannel(21)], archived=[FakeTextChannel(31)])
    guild.channels = [parent]

    assert [a.id for a in asyncio.run(collect_channels(guild))] == [10]


def test_thread_listed_active_and_archived_appears_once(guild):
    thread = FakeTextChannel(21)
    parent = FakeThreadedChannel(10, threads=[thread], archived=[thread, FakeTextChannel(31)])
    guild.channels = [parent]

    accesses = asyncio.run(collect_channels(guild, include_threads=True))
    assert [access.id for access in accesses] == [10, 21, 31]


def test_unreadable_threads_are_filtered(guild):
    parent = FakeThreadedChannel(
        10,
        threads=[FakeTextChannel(21, read_message_history=False)],
        archived=[FakeTextChannel(31, view_channel=False), FakeTextChannel(32)],
    )
    guild.channels = [parent]

    accesses = asyncio.run(collect_channels(guild, include_threads=True))
    assert [access.id for access in accesses] == [10, 32]


def test_readable_threads_of_unreadable_target_are_kept(guild):
    parent = FakeThreadedChannel(10, threads=[FakeTextChannel(21)], read_message_history=False)
    guild.channels = [parent]

    accesses = asyncio.run(collect_channels(guild, target=parent, include_threads=True))
    assert [access.id for access in accesses] == [21]


def test_archive_listing_failure_keeps_parent_and_active_threads(guild, caplog):
    parent = FakeThreadedChannel(10, threads=[FakeTextChannel(21)], archived=[FakeTextChannel(31)])
    parent.archive_error = discord.HTTPException(http_response(500), "archive unavailable")
    guild.channels = [parent]

    with caplog.at_level(logging.WARNING, logger="warden.channels"):
        accesses = asyncio.run(collect_channels(guild, include_threads=True))

    assert [access.id for access in accesses] == [10, 21, 31]
    assert "Could not list archived threads of channel 10" in caplog.text
