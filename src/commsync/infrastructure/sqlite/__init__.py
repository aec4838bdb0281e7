"""SQLite infrastructure for accounts, subscriptions, cache, SMS inbox and local message state."""

from commsync.infrastructure.sqlite.client import (
    SQLiteClient,
    get_sqlite_client,
)
from commsync.infrastructure.sqlite.message_state import LocalMessageState
from commsync.infrastructure.sqlite.repositories import (
    SQLiteAccountRepository,
    SQLiteCacheStore,
    SQLiteSubscriptionRepository,
)
from commsync.infrastructure.sqlite.sms_inbox import SmsInbox, SmsRecord

__all__ = [
    "SQLiteClient",
    "get_sqlite_client",
    "LocalMessageState",
    "SQLiteAccountRepository",
    "SQLiteCacheStore",
    "SQLiteSubscriptionRepository",
    "SmsInbox",
    "SmsRecord",
]
