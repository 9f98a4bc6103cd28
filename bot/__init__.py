"""Bot package - Discord client and guild state management."""
from .guild_state import GuildState
from .client import WardenBot

__all__ = ["GuildState", "WardenBot"]
