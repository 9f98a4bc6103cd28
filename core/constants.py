"""
Configuration key constants.

Using constants instead of string literals provides:
- IDE autocomplete
- Typo protection (caught at import time)
- Single source of truth for key names
"""
from __future__ import annotations


class ConfigKey:
    """All configuration keys used in guild configs."""

    # Identity
    GUILD_ID = "guild_id"

    # Report channels
    MODLOG_CHANNEL_ID = "modlog_channel_id"
    HEALTHLOG_CHANNEL_ID = "healthlog_channel_id"
    MODLOG_CHANNEL_NAME = "modlog_channel_name"
    HEALTHLOG_CHANNEL_NAME = "healthlog_channel_name"

    # Channels whose messages are never recorded
    IGNORED_CHANNEL_IDS = "ignored_channel_ids"

    # Inactivity thresholds
    INACTIVE_DAYS_THRESHOLD = "inactive_days_threshold"
    MIN_VOICE_MINUTES = "min_voice_minutes"

    # Reports
    REPORT_PREVIEW_SIZE = "report_preview_size"
    HEALTH_LOW_ACTIVITY_THRESHOLD = "health_low_activity_threshold"

    # History backfill
    HYDRATE_PAGE_DELAY_SECONDS = "hydrate_page_delay_seconds"
    HYDRATE_MAX_PAGE_RETRIES = "hydrate_max_page_retries"

    # Timing
    MEMBER_FETCH_TIMEOUT_SECONDS = "member_fetch_timeout_seconds"
    STORE_FLUSH_INTERVAL_SECONDS = "store_flush_interval_seconds"


class ReportKind:
    """Scheduled report types and the settings they resolve their channel from."""
    INACTIVITY = "inactivity"
    HEALTH = "health"


# Shorthand alias for cleaner imports
K = ConfigKey
