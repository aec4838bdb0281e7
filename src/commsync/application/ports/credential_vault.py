from __future__ import annotations
from typing import Any, Protocol


class CredentialVault(Protocol):
    def encrypt(self, credentials: dict[str, Any]) -> str: ...
    def decrypt(self, token: str) -> dict[str, Any]: ...
