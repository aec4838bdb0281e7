"""Fuzzy search over contacts and messages."""

from commsync.application.search.ranking import RankedContact, RankedMessage, SearchResult, search

__all__ = ["RankedContact", "RankedMessage", "SearchResult", "search"]
