"""Credential vault backed by Fernet symmetric encryption."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from commsync.domain.errors import AuthError


class FernetCredentialVault:
    """Encrypts account credentials at rest.

    Plaintext only exists for the duration of an adapter call and is never
    logged.
    """

    def __init__(self, key: str | bytes):
        try:
            self._cipher = Fernet(key if isinstance(key, bytes) else key.encode())
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid vault key format: {e}") from e

    @classmethod
    def from_key_file(cls, path: str | Path) -> FernetCredentialVault:
        """Load the key from disk, generating one on first use."""
        path = Path(path)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(Fernet.generate_key())
            path.chmod(0o600)
            logger.info(f"Generated new vault key at {path}")
        return cls(path.read_bytes().strip())

    def encrypt(self, credentials: dict[str, Any]) -> str:
        return self._cipher.encrypt(json.dumps(credentials).encode()).decode()

    def decrypt(self, token: str) -> dict[str, Any]:
        try:
            return json.loads(self._cipher.decrypt(token.encode()))
        except InvalidToken as e:
            raise AuthError("Stored credentials could not be decrypted") from e


# Singleton instance
_vault: FernetCredentialVault | None = None


def get_credential_vault() -> FernetCredentialVault:
    """Get or create credential vault singleton."""
    global _vault
    if _vault is None:
        from commsync.infrastructure.settings import get_settings

        settings = get_settings()
        if settings.vault_key is not None:
            _vault = FernetCredentialVault(settings.vault_key.get_secret_value())
        else:
            _vault = FernetCredentialVault.from_key_file(settings.vault_key_path)
    return _vault
