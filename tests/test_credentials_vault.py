"""Tests for the credentials vault (AES-256-GCM)."""

import pytest

from botlink.infra.credentials_vault import (
    CredentialsDecryptionError,
    decrypt_credentials,
    encrypt_credentials,
)

TEST_KEY = "ab" * 32


@pytest.fixture
def credentials_key(monkeypatch):
    monkeypatch.setenv("CREDENTIALS_KEY", TEST_KEY)


class TestCredentialsVault:
    """Encryption at rest for integration credentials."""

    def test_decrypts_what_it_encrypted(self, credentials_key):
        bag = {"bot_token": "123456789:AAHsecret", "webhook_secret": "s3"}
        encrypted = encrypt_credentials(bag, associated_data="int-1")

        assert "AAHsecret" not in encrypted
        assert decrypt_credentials(encrypted, associated_data="int-1") == bag

    def test_nonce_differs_per_encryption(self, credentials_key):
        bag = {"access_token": "EAAsecret"}
        assert encrypt_credentials(bag, associated_data="i") != encrypt_credentials(
            bag, associated_data="i"
        )

    def test_ciphertext_bound_to_integration_id(self, credentials_key):
        encrypted = encrypt_credentials({"k": "v"}, associated_data="int-1")
        with pytest.raises(CredentialsDecryptionError):
            decrypt_credentials(encrypted, associated_data="int-2")

    def test_wrong_key_fails(self, credentials_key, monkeypatch):
        encrypted = encrypt_credentials({"k": "v"}, associated_data="int-1")
        monkeypatch.setenv("CREDENTIALS_KEY", "cd" * 32)
        with pytest.raises(CredentialsDecryptionError):
            decrypt_credentials(encrypted, associated_data="int-1")

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.delenv("CREDENTIALS_KEY", raising=False)
        with pytest.raises(RuntimeError, match="CREDENTIALS_KEY not configured"):
            encrypt_credentials({"k": "v"}, associated_data="int-1")

    @pytest.mark.parametrize("key", ["abcd", "zz" * 32])
    def test_invalid_key_raises(self, monkeypatch, key):
        monkeypatch.setenv("CREDENTIALS_KEY", key)
        with pytest.raises(RuntimeError, match="32 bytes hex"):
            encrypt_credentials({"k": "v"}, associated_data="int-1")
