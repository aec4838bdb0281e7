"""Contact projection derived from the canonical message set."""

from __future__ import annotations

from typing import Iterable, Mapping

from commsync.domain.models import Contact, Message


def derive_contacts(
    messages: Iterable[Message],
    own_addresses: Mapping[str, Iterable[str]] | None = None,
) -> list[Contact]:
    """Build one Contact per (account_id, address) seen in the messages.

    Addresses the user owns on an account are skipped. Never mutated in
    place; callers recompute after every store change.
    """
    own = {
        account_id: {a.lower() for a in addresses}
        for account_id, addresses in (own_addresses or {}).items()
    }
    contacts: dict[tuple[str, str], Contact] = {}

    for message in messages:
        mine = own.get(message.account_id, set())
        for participant in message.participants():
            address = participant.address.strip()
            if not address or address.lower() in mine:
                continue

            key = (message.account_id, address.lower())
            unread = 1 if (not message.read and participant is message.sender) else 0
            contact = contacts.get(key)

            if contact is None:
                contacts[key] = Contact(
                    account_id=message.account_id,
                    address=address,
                    name=participant.name,
                    last_message=message.subject or message.snippet(),
                    last_message_time=message.date,
                    unread_count=unread,
                    labels=list(message.labels),
                    provider_type=message.provider_type,
                )
                continue

            contact.unread_count += unread
            if not contact.name and participant.name:
                contact.name = participant.name
            for label in message.labels:
                if label not in contact.labels:
                    contact.labels.append(label)
            if message.date > contact.last_message_time:
                contact.last_message = message.subject or message.snippet()
                contact.last_message_time = message.date

    return sorted(
        contacts.values(),
        key=lambda c: (c.last_message_time, c.account_id, c.address),
        reverse=True,
    )
