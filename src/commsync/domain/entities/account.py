from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from commsync.domain.models import ProviderType


@dataclass(frozen=True)
class Account:
    id: str
    user_id: str
    provider_type: ProviderType
    label: str = ""
    # Vault ciphertext; plaintext only exists inside an adapter call
    credentials: str = ""
    last_sync: Optional[datetime] = None
    linked: bool = True
    # Addresses/handles owned by the user on this account (excluded from contacts)
    own_addresses: tuple[str, ...] = field(default_factory=tuple)

    def owns(self, address: str) -> bool:
        lowered = address.lower()
        return any(lowered == mine.lower() for mine in self.own_addresses)
