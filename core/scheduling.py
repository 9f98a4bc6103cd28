"""
Daily wall-clock report loops.

Each report runs on a discord.ext.tasks loop pinned to a time of day in the
configured timezone. The callback owns all report logic; the loop only
decides when to call it.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from discord.ext import tasks

from .utils import UTC

logger = logging.getLogger("warden.scheduling")


def resolve_timezone(name: str) -> dt.tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, scheduling in UTC", name)
        return UTC


def daily_loop(
    name: str,
    at: dt.time,
    timezone: str,
    callback: Callable[[], Awaitable[None]],
) -> tasks.Loop:
    """Build (but do not start) a loop that awaits ``callback`` daily at ``at`` in ``timezone``."""
    run_at = at.replace(tzinfo=resolve_timezone(timezone))

    @tasks.loop(time=run_at)
    async def report_loop() -> None:
        logger.info("Running scheduled job %s", name)
        # An exception escaping the body would stop the loop for good.
        try:
            await callback()
        except Exception as e:
            logger.error("Scheduled job %s failed: %s", name, e, exc_info=True)

    logger.info("Scheduled %s daily at %s (%s)", name, at.strftime("%H:%M"), run_at.tzinfo)
    return report_loop
