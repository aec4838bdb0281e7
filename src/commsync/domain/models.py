"""Domain models for CommSync."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

DEFAULT_LABEL = "INBOX"


class ProviderType(str, Enum):
    """Provider families an account can be linked to."""

    IMAP = "imap"
    GMAIL = "gmail"
    DISCORD = "discord"
    WHATSAPP = "whatsapp"
    SMS_A = "sms-A"
    SMS_B = "sms-B"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_datetime(value: object) -> datetime:
    """Resolve a provider timestamp into an aware datetime, falling back to now."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Epoch millis vs seconds
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                return _utc_now()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _utc_now()


class Participant(BaseModel):
    """A sender or recipient: email address, phone number or chat handle."""

    name: str = ""
    address: str = ""

    def display(self) -> str:
        return self.name or self.address


class Attachment(BaseModel):
    """Attachment metadata. Bytes stay with the provider."""

    id: str
    filename: str = "attachment.bin"
    mime_type: str = "application/octet-stream"
    size: int = 0


class Message(BaseModel):
    """Canonical message shared by every provider family."""

    id: str
    thread_id: str | None = None
    sender: Participant = Field(default_factory=Participant)
    to: list[Participant] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    html_body: str = ""
    date: datetime = Field(default_factory=_utc_now)
    attachments: list[Attachment] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=lambda: [DEFAULT_LABEL])
    read: bool = False
    flagged: bool = False
    provider_type: ProviderType
    account_id: str

    # Locally synthesized send records awaiting the provider's own copy
    placeholder: bool = False
    provider_ref: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _resolve_date(cls, value: object) -> datetime:
        return coerce_datetime(value)

    @field_validator("labels", mode="before")
    @classmethod
    def _default_labels(cls, value: object) -> list[str]:
        if not value:
            return [DEFAULT_LABEL]
        labels: list[str] = []
        for label in value:
            if label and label not in labels:
                labels.append(label)
        return labels or [DEFAULT_LABEL]

    @field_validator("subject", "body", "html_body", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def key(self) -> tuple[str, str]:
        """Display identity: ids are only unique within one account."""
        return (self.account_id, self.id)

    @property
    def needs_content(self) -> bool:
        return not self.body.strip() and not self.html_body.strip()

    def participants(self) -> list[Participant]:
        return [self.sender, *self.to]

    def snippet(self, length: int = 80) -> str:
        text = " ".join(self.body.split())
        return text[:length]


class Contact(BaseModel):
    """Derived view over the message set, keyed by account and address."""

    account_id: str
    address: str
    name: str = ""
    last_message: str = ""
    last_message_time: datetime
    unread_count: int = 0
    labels: list[str] = Field(default_factory=list)
    provider_type: ProviderType | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.account_id, self.address.lower())
