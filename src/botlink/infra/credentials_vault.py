"""Encryption at rest for integration credentials.

The integration layer only ever sees decrypted credential bags; this module
is the storage side of that boundary.

Security:
- AES-256-GCM, random 96-bit nonce per value
- Key from CREDENTIALS_KEY (32 bytes hex)
- Plaintext and ciphertext are never logged
"""

from __future__ import annotations

import base64
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12


class CredentialsDecryptionError(Exception):
    """Raised when stored credentials cannot be decrypted (wrong key or tampering)."""

    pass


def _get_encryption_key() -> bytes:
    """Get AES-256 key for credentials encryption.

    Raises:
        RuntimeError: If CREDENTIALS_KEY is not configured or invalid.
    """
    key_hex = os.environ.get("CREDENTIALS_KEY")
    if not key_hex:
        raise RuntimeError(
            "CREDENTIALS_KEY not configured. "
            "Generate with: openssl rand -hex 32"
        )
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        key = b""
    if len(key) != 32:
        raise RuntimeError(
            "CREDENTIALS_KEY must be 32 bytes hex (64 hex chars). "
            "Generate with: openssl rand -hex 32"
        )
    return key


def encrypt_credentials(credentials: dict[str, Any], *, associated_data: str) -> str:
    """Encrypt a credentials bag.

    Args:
        credentials: Decrypted credentials. NEVER logged.
        associated_data: Bound to the ciphertext (the integration id), so a
            row's credentials cannot be copied onto another row.

    Returns:
        Base64-encoded nonce + ciphertext.
    """
    aesgcm = AESGCM(_get_encryption_key())
    nonce = os.urandom(_NONCE_SIZE)
    plaintext = json.dumps(credentials, sort_keys=True).encode()
    ciphertext = aesgcm.encrypt(nonce, plaintext, associated_data.encode())
    return base64.b64encode(nonce + ciphertext).decode()


def decrypt_credentials(encrypted: str, *, associated_data: str) -> dict[str, str]:
    """Decrypt a credentials bag produced by encrypt_credentials().

    Raises:
        CredentialsDecryptionError: On wrong key, wrong associated data or
            corrupted ciphertext.
    """
    aesgcm = AESGCM(_get_encryption_key())
    try:
        data = base64.b64decode(encrypted)
        plaintext = aesgcm.decrypt(
            data[:_NONCE_SIZE], data[_NONCE_SIZE:], associated_data.encode()
        )
    except (InvalidTag, ValueError) as e:
        raise CredentialsDecryptionError("stored credentials could not be decrypted") from e

    bag = json.loads(plaintext)
    return {str(k): str(v) for k, v in bag.items()}
