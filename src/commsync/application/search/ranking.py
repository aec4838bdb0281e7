"""Search/ranking overlay - fuzzy matches contacts and messages for a query."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from commsync.domain.models import Contact, Message

CONTACT_WEIGHTS: dict[str, float] = {"name": 0.5, "address": 0.3, "last_message": 0.2}
MESSAGE_WEIGHTS: dict[str, float] = {"subject": 0.4, "body": 0.6}

# Contacts surfaced only through their messages rank below direct hits
MESSAGE_BLEND = 0.8
MIN_TOKEN_LENGTH = 2


@dataclass
class RankedContact:
    contact: Contact
    score: float
    relevance: float
    matched_fields: list[str] = field(default_factory=list)


@dataclass
class RankedMessage:
    message: Message
    score: float
    relevance: float
    matched_fields: list[str] = field(default_factory=list)


@dataclass
class SearchResult:
    contacts: list[Contact]
    messages: list[Message]
    matches: list[str] = field(default_factory=list)
    ranked: list[RankedContact] = field(default_factory=list)
    ranked_messages: list[RankedMessage] = field(default_factory=list)


def _similarity(query: str, text: str) -> float:
    if not text:
        return 0.0
    return fuzz.partial_ratio(query, text, processor=default_process) / 100.0


def _score(
    query: str,
    fields: dict[str, str],
    weights: dict[str, float],
    threshold: float,
) -> tuple[float, float, list[str]]:
    """Best field similarity, weighted relevance, and the fields that cleared the threshold."""
    similarities = {name: _similarity(query, fields.get(name, "")) for name in weights}
    best = max(similarities.values(), default=0.0)
    relevance = sum(weights[name] * s for name, s in similarities.items())
    matched = [name for name, s in similarities.items() if s >= threshold]
    return best, relevance, matched


def _by_rank(ranked: RankedContact | RankedMessage) -> tuple[float, float]:
    return (ranked.score, ranked.relevance)


def _normalize_query(query: str) -> str:
    tokens = [t for t in query.split() if len(t) >= MIN_TOKEN_LENGTH]
    return " ".join(tokens)


def search(
    query: str,
    contacts: Sequence[Contact],
    messages: Sequence[Message],
    contact_threshold: float = 0.7,
    message_threshold: float = 0.7,
) -> SearchResult:
    """Rank contacts by max(direct score, 0.8 x best score of a message involving them).

    An empty query is an identity passthrough: the inputs come back
    unscored, with no matches.
    """
    if not query or not query.strip():
        return SearchResult(contacts=list(contacts), messages=list(messages))

    normalized = _normalize_query(query)
    if not normalized:
        return SearchResult(contacts=[], messages=[])

    ranked_messages: list[RankedMessage] = []
    best_by_address: dict[str, float] = {}
    for message in messages:
        score, relevance, matched = _score(
            normalized,
            {"subject": message.subject, "body": message.body or message.html_body},
            MESSAGE_WEIGHTS,
            message_threshold,
        )
        if score < message_threshold:
            continue
        ranked_messages.append(RankedMessage(message, score, relevance, matched))
        for participant in message.participants():
            address = participant.address.lower()
            if address and score > best_by_address.get(address, 0.0):
                best_by_address[address] = score

    ranked: list[RankedContact] = []
    for contact in contacts:
        direct, relevance, matched = _score(
            normalized,
            {
                "name": contact.name,
                "address": contact.address,
                "last_message": contact.last_message,
            },
            CONTACT_WEIGHTS,
            contact_threshold,
        )
        via_messages = MESSAGE_BLEND * best_by_address.get(contact.address.lower(), 0.0)
        if via_messages > direct:
            matched = [*matched, "messages"]
        if direct < contact_threshold and via_messages == 0.0:
            continue
        score = max(direct, via_messages)
        ranked.append(RankedContact(contact, round(score, 4), relevance, matched))

    ranked.sort(key=_by_rank, reverse=True)
    ranked_messages.sort(key=_by_rank, reverse=True)

    return SearchResult(
        contacts=[r.contact for r in ranked],
        messages=[r.message for r in ranked_messages],
        matches=[r.contact.address for r in ranked],
        ranked=ranked,
        ranked_messages=ranked_messages,
    )
