"""Single owner of the in-memory working set of messages."""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Mapping

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from commsync.application.ports.cache_store import CacheStore
from commsync.application.sync.contacts import derive_contacts
from commsync.application.sync.merge import MessageKey, merge, sort_for_display
from commsync.domain.models import Contact, Message

_messages_adapter = TypeAdapter(list[Message])


class CanonicalStore:
    """Owns the user's merged message set and its contact projection.

    All mutation goes through ``merge``/``replace``/``update``/``remove``,
    serialized by one asyncio lock so concurrent sync passes and the
    completion worker never tear each other's writes.
    """

    CACHE_KEY = "messages"

    def __init__(
        self,
        user_id: str,
        cache: CacheStore | None = None,
        own_addresses: Mapping[str, Iterable[str]] | None = None,
    ):
        self.user_id = user_id
        self._cache = cache
        self._own_addresses: dict[str, tuple[str, ...]] = {
            k: tuple(v) for k, v in (own_addresses or {}).items()
        }
        self._messages: list[Message] = []
        self._contacts: list[Contact] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def messages(self, account_id: str | None = None) -> list[Message]:
        if account_id is None:
            return list(self._messages)
        return [m for m in self._messages if m.account_id == account_id]

    def contacts(self) -> list[Contact]:
        return list(self._contacts)

    def get(self, account_id: str, message_id: str) -> Message | None:
        for message in self._messages:
            if message.account_id == account_id and message.id == message_id:
                return message
        return None

    def missing_content(self) -> list[Message]:
        return [m for m in self._messages if m.needs_content]

    def serialize(self) -> bytes:
        return _messages_adapter.dump_json(self._messages)

    def bytes_size(self) -> int:
        return len(self.serialize())

    def __len__(self) -> int:
        return len(self._messages)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_own_addresses(self, account_id: str, addresses: Iterable[str]) -> None:
        self._own_addresses[account_id] = tuple(addresses)
        self._contacts = derive_contacts(self._messages, self._own_addresses)

    async def merge(self, incoming: Iterable[Message]) -> list[Message]:
        incoming = list(incoming)
        async with self._lock:
            self._set(merge(self._messages, incoming))
            return list(self._messages)

    async def fill_content(self, completed: Iterable[Message]) -> int:
        """Apply completed bodies onto the current records, never older state.

        Only content fields are taken from ``completed``; read and flag state
        stay as they are now. Keys no longer in the store are dropped.
        """
        completed = list(completed)
        async with self._lock:
            current = {m.key: m for m in self._messages}
            patches: list[Message] = []
            for message in completed:
                existing = current.get(message.key)
                if existing is None:
                    continue
                patches.append(
                    existing.model_copy(
                        update={
                            "body": message.body,
                            "html_body": message.html_body,
                            "attachments": message.attachments,
                        }
                    )
                )
            if patches:
                self._set(merge(self._messages, patches))
            return len(patches)

    async def replace(self, messages: Iterable[Message]) -> None:
        async with self._lock:
            self._set(sort_for_display(messages))

    async def update(self, keys: Iterable[MessageKey], change: Callable[[Message], Message]) -> int:
        wanted = set(keys)
        changed = 0
        async with self._lock:
            updated: list[Message] = []
            for message in self._messages:
                if message.key in wanted:
                    message = change(message)
                    changed += 1
                updated.append(message)
            self._set(updated)
        return changed

    async def remove(self, keys: Iterable[MessageKey]) -> int:
        doomed = set(keys)
        async with self._lock:
            kept = [m for m in self._messages if m.key not in doomed]
            removed = len(self._messages) - len(kept)
            self._set(kept)
        return removed

    def _set(self, messages: list[Message]) -> None:
        self._messages = messages
        self._contacts = derive_contacts(messages, self._own_addresses)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Restore the working set from the cache. Corrupt entries start empty."""
        if self._cache is None:
            return 0
        raw = await asyncio.to_thread(self._cache.get, self.user_id, self.CACHE_KEY)
        if not raw:
            return 0
        try:
            messages = _messages_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable message cache for {self.user_id}: {e}")
            return 0
        await self.replace(messages)
        logger.info(f"Loaded {len(messages)} cached messages for {self.user_id}")
        return len(messages)

    async def persist(self) -> None:
        if self._cache is None:
            return
        async with self._lock:
            payload = self.serialize().decode("utf-8")
        await asyncio.to_thread(self._cache.set, self.user_id, self.CACHE_KEY, payload)
