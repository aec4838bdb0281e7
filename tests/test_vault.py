"""Tests for the Fernet credential vault."""

import pytest
from cryptography.fernet import Fernet

from commsync.domain.errors import AuthError
from commsync.infrastructure.vault import FernetCredentialVault


class TestFernetCredentialVault:
    def test_round_trip(self):
        vault = FernetCredentialVault(Fernet.generate_key())
        creds = {"username": "me@example.com", "password": "hunter2"}

        token = vault.encrypt(creds)

        assert "hunter2" not in token
        assert vault.decrypt(token) == creds

    def test_wrong_key_is_an_auth_error(self):
        token = FernetCredentialVault(Fernet.generate_key()).encrypt({"k": "v"})

        with pytest.raises(AuthError):
            FernetCredentialVault(Fernet.generate_key()).decrypt(token)

    def test_invalid_key_rejected(self):
        with pytest.raises(ValueError):
            FernetCredentialVault("not-a-key")

    def test_key_file_created_once(self, tmp_path):
        path = tmp_path / "keys" / "vault.key"

        first = FernetCredentialVault.from_key_file(path)
        token = first.encrypt({"a": 1})
        second = FernetCredentialVault.from_key_file(path)

        assert second.decrypt(token) == {"a": 1}
