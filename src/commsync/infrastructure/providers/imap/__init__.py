"""IMAP/SMTP mailbox adapter."""

from commsync.infrastructure.providers.imap.client import ImapAdapter, ImapConfig, ImapSession

__all__ = ["ImapAdapter", "ImapConfig", "ImapSession"]
