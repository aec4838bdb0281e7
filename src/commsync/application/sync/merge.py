"""Merge incoming provider batches into the canonical message set."""

from __future__ import annotations

from typing import Iterable

from commsync.domain.models import Message

MessageKey = tuple[str, str]


def _combine(current: Message, incoming: Message) -> Message:
    """Incoming wins, except empty content never erases content already known."""
    update: dict[str, object] = {}
    if not incoming.body.strip() and current.body.strip():
        update["body"] = current.body
    if not incoming.html_body.strip() and current.html_body.strip():
        update["html_body"] = current.html_body
    if not incoming.attachments and current.attachments:
        update["attachments"] = current.attachments
    if incoming.provider_ref is None and current.provider_ref is not None:
        update["provider_ref"] = current.provider_ref
    return incoming.model_copy(update=update) if update else incoming


def sort_for_display(messages: Iterable[Message]) -> list[Message]:
    """Newest first; key breaks ties so output is deterministic."""
    return sorted(messages, key=lambda m: (m.date, m.account_id, m.id), reverse=True)


def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
    """Union keyed by (account_id, id), last writer wins.

    Pure and idempotent: ``merge(merge(s, a), a) == merge(s, a)``. A real
    provider record carrying the same provider reference as a local
    placeholder replaces that placeholder.
    """
    by_key: dict[MessageKey, Message] = {}
    placeholders: dict[tuple[str, str], MessageKey] = {}

    for message in existing:
        by_key[message.key] = message
        if message.placeholder and message.provider_ref:
            placeholders[(message.account_id, message.provider_ref)] = message.key

    for message in incoming:
        current = by_key.get(message.key)
        if current is not None:
            by_key[message.key] = _combine(current, message)
            continue

        if not message.placeholder and message.provider_ref:
            stale = placeholders.pop((message.account_id, message.provider_ref), None)
            if stale is not None:
                previous = by_key.pop(stale)
                by_key[message.key] = _combine(previous, message)
                continue

        by_key[message.key] = message
        if message.placeholder and message.provider_ref:
            placeholders[(message.account_id, message.provider_ref)] = message.key

    return sort_for_display(by_key.values())


def dedupe(messages: Iterable[Message]) -> list[Message]:
    """Collapse duplicates within a single batch."""
    return merge([], messages)
