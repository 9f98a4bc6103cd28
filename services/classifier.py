"""
Inactivity classification.

A member is active when any one signal holds: a message at or after the
cutoff, a voice join at or after the cutoff, or (when a quota is set) a
lifetime voice total reaching the quota. The quota has no expiry. Unset
timestamps compare as 0 (the epoch).
"""
from __future__ import annotations

from core.types import ActivityRecord


def is_inactive(record: ActivityRecord, cutoff_ms: int, min_voice_seconds: int) -> bool:
    has_recent_message = (record.last_message_at or 0) >= cutoff_ms
    has_recent_voice = (record.last_voice_at or 0) >= cutoff_ms
    meets_voice_quota = min_voice_seconds > 0 and record.voice_seconds_total >= min_voice_seconds
    return not (has_recent_message or has_recent_voice or meets_voice_quota)
