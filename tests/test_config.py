"""Tests for guild configuration loading and validation."""
import asyncio
import datetime as dt
import json

import pytest

from core import config
from core.config import (
    DEFAULT_CONFIG,
    ConfigError,
    ensure_guild_config,
    load_guild_config,
    report_schedule,
    set_report_channel,
    validate_and_normalize_config,
)
from core.constants import K

GUILD = 123456789012345678


def _valid(**overrides):
    data = dict(DEFAULT_CONFIG)
    data["guild_id"] = GUILD
    data.update(overrides)
    return data


def test_defaults_validate():
    normalized = validate_and_normalize_config(_valid())
    assert normalized[K.INACTIVE_DAYS_THRESHOLD] == 90
    assert normalized[K.MODLOG_CHANNEL_ID] is None
    assert normalized[K.HYDRATE_PAGE_DELAY_SECONDS] == 0.35


def test_missing_guild_id_is_rejected():
    with pytest.raises(ConfigError):
        validate_and_normalize_config(dict(DEFAULT_CONFIG))


@pytest.mark.parametrize(
    "key, value",
    [
        ("inactive_days_threshold", -1),
        ("inactive_days_threshold", "90"),
        ("report_preview_size", 0),
        ("modlog_channel_id", "general"),
        ("ignored_channel_ids", [1, "two"]),
        ("hydrate_page_delay_seconds", True),
        ("healthlog_channel_name", "  "),
    ],
)
def test_invalid_values_are_rejected(key, value):
    with pytest.raises(ConfigError):
        validate_and_normalize_config(_valid(**{key: value}))


def test_missing_optional_keys_take_defaults():
    data = _valid()
    del data["modlog_channel_name"]
    assert validate_and_normalize_config(data)["modlog_channel_name"] == "mod-log"


def test_ensure_seeds_missing_config(config_dir):
    created = asyncio.run(ensure_guild_config(GUILD, dict(DEFAULT_CONFIG)))
    assert created["guild_id"] == GUILD
    stored = json.loads((config_dir / f"{GUILD}.json").read_text(encoding="utf-8"))
    assert stored["guild_id"] == GUILD


def test_load_rejects_mismatched_guild(config_dir):
    config_dir.mkdir()
    (config_dir / f"{GUILD}.json").write_text(json.dumps({"guild_id": GUILD + 1}), encoding="utf-8")

    with pytest.raises(ConfigError):
        asyncio.run(load_guild_config(GUILD))


def test_load_rejects_broken_json(config_dir):
    config_dir.mkdir()
    (config_dir / f"{GUILD}.json").write_text("{", encoding="utf-8")

    with pytest.raises(ConfigError):
        asyncio.run(load_guild_config(GUILD))


def test_set_report_channel_persists(config_dir):
    async def run():
        await ensure_guild_config(GUILD, dict(DEFAULT_CONFIG))
        await set_report_channel(GUILD, K.HEALTHLOG_CHANNEL_ID, 555)
        return await load_guild_config(GUILD)

    assert asyncio.run(run())[K.HEALTHLOG_CHANNEL_ID] == 555


def test_set_report_channel_rejects_other_keys(config_dir):
    with pytest.raises(ConfigError):
        asyncio.run(set_report_channel(GUILD, K.INACTIVE_DAYS_THRESHOLD, 5))


def test_report_schedule_parses_times(monkeypatch):
    monkeypatch.setattr(config, "INACTIVITY_REPORT_TIME", "04:00")
    monkeypatch.setattr(config, "HEALTH_REPORT_TIME", "12:30")
    monkeypatch.setattr(config, "REPORT_TIMEZONE", "America/Los_Angeles")

    assert report_schedule() == (dt.time(4, 0), dt.time(12, 30), "America/Los_Angeles")


def test_report_schedule_rejects_bad_time(monkeypatch):
    monkeypatch.setattr(config, "HEALTH_REPORT_TIME", "25:00")

    with pytest.raises(ConfigError):
        report_schedule()
