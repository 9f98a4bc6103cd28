"""
Main entry point for the activity bot.

Reads the token and log level from the environment (a ``.env`` file next to
this script is loaded first) and runs the client until interrupted.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from discord.errors import LoginFailure, PrivilegedIntentsRequired

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(ENV_PATH)

# Imported after .env is loaded: core.config reads its fallbacks at import time.
from bot import WardenBot

logger = logging.getLogger("warden")


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Gateway chatter is only interesting when debugging
    if level > logging.DEBUG:
        logging.getLogger("discord").setLevel(max(level, logging.WARNING))
        logging.getLogger("asyncio").setLevel(max(level, logging.WARNING))


async def run(token: str) -> None:
    bot = WardenBot()
    try:
        await bot.start(token)
    except PrivilegedIntentsRequired:
        logger.error(
            "Enable the SERVER MEMBERS and MESSAGE CONTENT intents for this bot "
            "in the Discord developer portal, then restart."
        )
    except LoginFailure:
        logger.error(
            "Discord rejected the token. Reset it on the Bot tab of your application "
            "and update DISCORD_BOT_TOKEN."
        )
    finally:
        if not bot.is_closed():
            await bot.close()


def main() -> None:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    if not ENV_PATH.exists():
        logger.warning(".env file not found at %s", ENV_PATH)

    token = os.getenv("DISCORD_BOT_TOKEN") or os.getenv("BOT_TOKEN")
    if not token:
        logger.error("Missing bot token. Set DISCORD_BOT_TOKEN in .env or environment.")
        return

    try:
        asyncio.run(run(token))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
