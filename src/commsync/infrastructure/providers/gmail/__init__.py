"""Gmail REST adapter."""

from commsync.infrastructure.providers.gmail.client import GmailAdapter

__all__ = ["GmailAdapter"]
