from __future__ import annotations
from datetime import datetime
from typing import Optional, Protocol

from commsync.domain.entities.account import Account


class AccountRepository(Protocol):
    def get(self, account_id: str) -> Optional[Account]: ...
    def save(self, account: Account) -> None: ...
    def list_linked(self, user_id: Optional[str] = None) -> list[Account]: ...
    def count_linked(self, user_id: str) -> int: ...
    def update_last_sync(self, account_id: str, when: datetime) -> None: ...
    def set_linked(self, account_id: str, linked: bool) -> None: ...
