"""
Guild configuration loading and validation.

Each guild has one JSON file under ``<data>/config.guild/`` holding its report
channels and inactivity thresholds. Environment-level fallbacks (shared by all
guilds) are read once at import time.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from .constants import K
from .io_utils import read_json, write_json_atomic
from .paths import BASE_DIR, DATA_DIR
from .utils import is_int, is_valid_id, parse_clock, safe_int

DEFAULT_CONFIG_PATH = BASE_DIR / "config.default.json"
GUILD_CONFIG_DIR = DATA_DIR / "config.guild"

# Environment fallbacks
MOD_LOG_CHANNEL_ID = safe_int(os.getenv("MOD_LOG_CHANNEL_ID"))
HEALTH_LOG_CHANNEL_ID = safe_int(os.getenv("HEALTH_LOG_CHANNEL_ID"))
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "America/Los_Angeles")
INACTIVITY_REPORT_TIME = os.getenv("INACTIVITY_REPORT_TIME", "04:00")
HEALTH_REPORT_TIME = os.getenv("HEALTH_REPORT_TIME", "12:30")

DEFAULT_CONFIG: Dict[str, Any] = {
    "guild_id": 0,
    "modlog_channel_id": None,
    "healthlog_channel_id": None,
    "modlog_channel_name": "mod-log",
    "healthlog_channel_name": "health-log",
    "ignored_channel_ids": [],
    "inactive_days_threshold": 90,
    "min_voice_minutes": 0,
    "report_preview_size": 20,
    "health_low_activity_threshold": 15,
    "hydrate_page_delay_seconds": 0.35,
    "hydrate_max_page_retries": 3,
    "member_fetch_timeout_seconds": 30,
    "store_flush_interval_seconds": 30,
}

CONFIG_SCHEMA: Dict[str, Tuple[str, bool]] = {
    "guild_id": ("int", True),
    "modlog_channel_id": ("int_or_none", False),
    "healthlog_channel_id": ("int_or_none", False),
    "modlog_channel_name": ("str", False),
    "healthlog_channel_name": ("str", False),
    "ignored_channel_ids": ("list_int", False),
    "inactive_days_threshold": ("nonneg_int", True),
    "min_voice_minutes": ("nonneg_int", True),
    "report_preview_size": ("pos_int", True),
    "health_low_activity_threshold": ("nonneg_int", True),
    "hydrate_page_delay_seconds": ("nonneg_number", True),
    "hydrate_max_page_retries": ("nonneg_int", True),
    "member_fetch_timeout_seconds": ("pos_int", True),
    "store_flush_interval_seconds": ("pos_int", True),
}

_config_locks: Dict[int, asyncio.Lock] = {}


class ConfigError(RuntimeError):
    pass


def _lock_for(guild_id: int) -> asyncio.Lock:
    if guild_id not in _config_locks:
        _config_locks[guild_id] = asyncio.Lock()
    return _config_locks[guild_id]


def guild_config_path(guild_id: int):
    return GUILD_CONFIG_DIR / f"{guild_id}.json"


def validate_and_normalize_config(data: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    normalized: Dict[str, Any] = {}

    for key, (type_name, required) in CONFIG_SCHEMA.items():
        if key not in data:
            if required:
                errors.append(f"Missing required config key: {key}")
            else:
                normalized[key] = DEFAULT_CONFIG.get(key)
            continue
        value = data[key]
        if type_name == "int":
            if not is_valid_id(value):
                errors.append(f"{key} must be an integer ID")
                continue
            normalized[key] = int(value)
        elif type_name == "int_or_none":
            if value is None:
                normalized[key] = None
            elif is_valid_id(value):
                normalized[key] = int(value)
            else:
                errors.append(f"{key} must be an integer ID or null")
        elif type_name == "pos_int":
            if not is_int(value) or value <= 0:
                errors.append(f"{key} must be a positive integer")
            else:
                normalized[key] = int(value)
        elif type_name == "nonneg_int":
            if not is_int(value) or value < 0:
                errors.append(f"{key} must be a non-negative integer")
            else:
                normalized[key] = int(value)
        elif type_name == "nonneg_number":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                errors.append(f"{key} must be a non-negative number")
            else:
                normalized[key] = float(value)
        elif type_name == "str":
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{key} must be a non-empty string")
            else:
                normalized[key] = value.strip()
        elif type_name == "list_int":
            if not isinstance(value, list):
                errors.append(f"{key} must be a list of integer IDs")
                continue
            items: List[int] = []
            for item in value:
                if not is_valid_id(item):
                    errors.append(f"{key} must be a list of integer IDs")
                    items = []
                    break
                items.append(int(item))
            normalized[key] = items
        else:
            errors.append(f"Unknown config type for {key}")

    if errors:
        raise ConfigError("; ".join(errors))

    if normalized.get("guild_id", 0) <= 0:
        raise ConfigError("guild_id must be set to a valid guild ID")

    return normalized


def report_schedule() -> Tuple[dt.time, dt.time, str]:
    """Return (inactivity report time, health report time, timezone name)."""
    try:
        return parse_clock(INACTIVITY_REPORT_TIME), parse_clock(HEALTH_REPORT_TIME), REPORT_TIMEZONE
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


async def load_default_template() -> Dict[str, Any]:
    data = await read_json(DEFAULT_CONFIG_PATH, default=None)
    if data is None:
        return dict(DEFAULT_CONFIG)
    if not isinstance(data, dict):
        raise ConfigError("config.default.json must be a JSON object")
    merged = dict(DEFAULT_CONFIG)
    merged.update(data)
    return merged


async def load_guild_config(guild_id: int) -> Dict[str, Any]:
    path = guild_config_path(guild_id)
    try:
        data = await read_json(path, default=None)
    except ValueError as exc:
        raise ConfigError(f"Guild config {path} is not valid JSON: {exc}") from exc
    if data is None:
        raise ConfigError(f"Missing guild config: {path}")
    if not isinstance(data, dict):
        raise ConfigError("Guild override config must be a JSON object")
    value = data.get("guild_id")
    if not is_valid_id(value):
        raise ConfigError("guild_id must be set to a valid guild ID")
    if int(value) != int(guild_id):
        raise ConfigError("guild_id in override does not match config file name")
    merged = dict(DEFAULT_CONFIG)
    merged.update(data)
    return validate_and_normalize_config(merged)


async def ensure_guild_config(guild_id: int, template: Dict[str, Any]) -> Dict[str, Any]:
    path = guild_config_path(guild_id)
    exists = await asyncio.to_thread(path.exists)
    if exists:
        return await load_guild_config(guild_id)
    seeded = dict(template)
    seeded["guild_id"] = int(guild_id)
    normalized = validate_and_normalize_config(seeded)
    await write_json_atomic(path, normalized)
    return normalized


async def update_guild_config(
    guild_id: int,
    updater: Callable[[Dict[str, Any]], None],
) -> Dict[str, Any]:
    """
    Apply ``updater`` to the stored config and persist it.

    The updated config is validated before anything is written; an invalid
    result raises ConfigError and leaves the file untouched.
    """
    async with _lock_for(guild_id):
        try:
            config = await load_guild_config(guild_id)
        except ConfigError:
            config = validate_and_normalize_config({**DEFAULT_CONFIG, "guild_id": int(guild_id)})
        updated = dict(config)
        updater(updated)
        normalized = validate_and_normalize_config(updated)
        await write_json_atomic(guild_config_path(guild_id), normalized)
        return normalized


async def set_report_channel(guild_id: int, key: str, channel_id: Optional[int]) -> Dict[str, Any]:
    """Store the modlog or healthlog channel for a guild."""
    if key not in (K.MODLOG_CHANNEL_ID, K.HEALTHLOG_CHANNEL_ID):
        raise ConfigError(f"{key} is not a report channel setting")
    return await update_guild_config(guild_id, lambda c: c.update({key: channel_id}))
