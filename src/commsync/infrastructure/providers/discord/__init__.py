"""Discord REST adapter."""

from commsync.infrastructure.providers.discord.client import DiscordAdapter

__all__ = ["DiscordAdapter"]
