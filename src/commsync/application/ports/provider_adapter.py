from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, Sequence

from commsync.domain.entities.account import Account
from commsync.domain.models import Message, Participant, ProviderType


@dataclass(frozen=True)
class FetchFilter:
    since: Optional[datetime] = None
    before: Optional[datetime] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    seen: Optional[bool] = None
    flagged: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in ("since", "before", "sender", "recipient", "subject", "seen", "flagged")
        )

    def matches(self, message: Message) -> bool:
        """Client-side filtering for providers without a server-side primitive."""
        if self.since is not None and message.date < self.since:
            return False
        if self.before is not None and message.date >= self.before:
            return False
        if self.sender and not _contains(self.sender, message.sender):
            return False
        if self.recipient and not any(_contains(self.recipient, p) for p in message.to):
            return False
        if self.subject and self.subject.lower() not in message.subject.lower():
            return False
        if self.seen is not None and message.read != self.seen:
            return False
        if self.flagged is not None and message.flagged != self.flagged:
            return False
        return True


def _contains(needle: str, participant: Participant) -> bool:
    needle = needle.lower()
    return needle in participant.address.lower() or needle in participant.name.lower()


@dataclass(frozen=True)
class FetchRequest:
    page: int = 1
    page_size: int = 50
    filter: FetchFilter = field(default_factory=FetchFilter)
    cursor: Optional[str] = None
    sort_direction: Literal["asc", "desc"] = "desc"

    def resolved_page(self) -> int:
        """Offset providers encode the next page number as their cursor."""
        if self.cursor and self.cursor.isdigit():
            return max(1, int(self.cursor))
        return max(1, self.page)

    @property
    def offset(self) -> int:
        return (self.resolved_page() - 1) * self.page_size


@dataclass
class FetchResult:
    messages: list[Message]
    total: Optional[int] = None
    cursor: Optional[str] = None

    def __post_init__(self) -> None:
        if self.total is None and self.cursor is None:
            # A final cursor page: report what we have as the total
            self.total = len(self.messages)

    @property
    def has_more(self) -> bool:
        return self.cursor is not None

    @classmethod
    def from_offset(cls, messages: list[Message], total: int, request: FetchRequest) -> FetchResult:
        page = request.resolved_page()
        more = page * request.page_size < total and bool(messages)
        return cls(messages=messages, total=total, cursor=str(page + 1) if more else None)


@dataclass(frozen=True)
class OutgoingAttachment:
    filename: str
    mime_type: str
    content: bytes


@dataclass(frozen=True)
class OutgoingMessage:
    to: Sequence[str]
    body: str
    subject: str = ""
    html: Optional[str] = None
    attachments: Sequence[OutgoingAttachment] = ()
    thread_id: Optional[str] = None


class ProviderAdapter:
    """Uniform surface every provider family implements.

    Adapters are the only code that sees provider-native payloads. They
    decrypt credentials through the vault inside each call and translate
    provider failures into the commsync error taxonomy.
    """

    provider_type: ProviderType

    async def test_connection(self, account: Account) -> bool:
        raise NotImplementedError

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        raise NotImplementedError

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        raise NotImplementedError

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        raise NotImplementedError

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        raise NotImplementedError

    async def fetch_body(self, account: Account, message: Message) -> Message:
        # Providers whose fetch returns full bodies have nothing to complete
        return message
