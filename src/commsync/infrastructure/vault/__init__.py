"""Credential vault."""

from commsync.infrastructure.vault.fernet_vault import FernetCredentialVault, get_credential_vault

__all__ = ["FernetCredentialVault", "get_credential_vault"]
