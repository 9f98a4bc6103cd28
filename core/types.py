"""
Type definitions and dataclasses for the activity bot.

Using dataclasses instead of raw dicts provides:
- Type safety and IDE autocomplete
- Self-documenting code
- Easier refactoring
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .utils import is_int


@dataclass(frozen=True)
class ActivityRecord:
    """
    Stored activity for one (guild, member) pair.

    Timestamps are milliseconds since the epoch. A member with no stored
    row is represented by ``ActivityRecord()``: nothing observed.
    """
    last_message_at: int | None = None
    last_voice_at: int | None = None
    voice_seconds_total: int = 0

    @property
    def is_empty(self) -> bool:
        return (
            self.last_message_at is None
            and self.last_voice_at is None
            and self.voice_seconds_total == 0
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_message_at": self.last_message_at,
            "last_voice_at": self.last_voice_at,
            "voice_seconds_total": self.voice_seconds_total,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityRecord:
        last_message = data.get("last_message_at")
        last_voice = data.get("last_voice_at")
        total = data.get("voice_seconds_total")
        return cls(
            last_message_at=last_message if is_int(last_message) else None,
            last_voice_at=last_voice if is_int(last_voice) else None,
            voice_seconds_total=max(0, total) if is_int(total) else 0,
        )


@dataclass(frozen=True)
class InactiveMember:
    """A member classified as inactive by a scan."""
    member_id: int
    display: str = ""

    @property
    def mention(self) -> str:
        return f"<@{self.member_id}>"


@dataclass
class HydrationStats:
    """Totals of one history backfill run."""
    channels_scanned: int = 0
    messages_scanned: int = 0
    users_touched: int = 0
    channels_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "channels_scanned": self.channels_scanned,
            "messages_scanned": self.messages_scanned,
            "users_touched": self.users_touched,
            "channels_failed": self.channels_failed,
        }


@dataclass(frozen=True)
class RemovalResult:
    """Outcome of a removal run."""
    targeted: int
    removed: tuple[int, ...] = ()
    failed: tuple[int, ...] = ()

    @property
    def removed_count(self) -> int:
        return len(self.removed)
