"""Domain models and entities."""

from commsync.domain.errors import (
    AccountNotFound,
    AuthError,
    CommSyncError,
    PartialContentError,
    ProviderConnectionError,
    QuotaExceeded,
    SubscriptionNotFound,
    UnsupportedProvider,
)
from commsync.domain.models import (
    Attachment,
    Contact,
    Message,
    Participant,
    ProviderType,
)

__all__ = [
    "ProviderType",
    "Participant",
    "Attachment",
    "Message",
    "Contact",
    "CommSyncError",
    "ProviderConnectionError",
    "AuthError",
    "PartialContentError",
    "QuotaExceeded",
    "AccountNotFound",
    "SubscriptionNotFound",
    "UnsupportedProvider",
]
