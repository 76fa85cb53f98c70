"""Key storage for encrypting account tokens at rest.

This module provides:
- TokenKeyStore: Encrypts and decrypts OAuth tokens with a local key
- create_keystore, load_keystore, load_or_create_keystore: Keyfile handling

The key is random and lives in a keyfile next to the configuration, outside
the SQLite database, so a copied database alone does not reveal the tokens.
"""

from __future__ import annotations

import base64
import json
import os
import uuid
from datetime import UTC, datetime
from pathlib import Path

from cryptography.exceptions import InvalidTag

from calmirror.core.crypto import KEY_SIZE, decrypt_token, encrypt_token, generate_key

KEYFILE_NAME = "token.key"


class KeyStoreError(Exception):
    """Exception raised for keystore-related errors."""


class TokenKeyStore:
    """Holds the token encryption key loaded from the keyfile."""

    def __init__(self, key: bytes, key_id: str, created_at: str) -> None:
        """Initialize keystore (use create_keystore or load_keystore instead)."""
        if len(key) != KEY_SIZE:
            raise KeyStoreError(f"Invalid key: must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key
        self._key_id = key_id
        self._created_at = created_at

    @property
    def key_id(self) -> str:
        """Get the unique key identifier."""
        return self._key_id

    def encrypt(self, plaintext: str) -> str:
        return encrypt_token(plaintext, self._key)

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a stored token.

        Raises:
            KeyStoreError: If the value was encrypted with another key or is
                corrupted.
        """
        try:
            return decrypt_token(encrypted, self._key)
        except (InvalidTag, ValueError) as e:
            raise KeyStoreError(
                "Cannot decrypt stored token (wrong keyfile or corrupted value)"
            ) from e


def create_keystore(config_dir: Path) -> TokenKeyStore:
    """Create a new keyfile with a random key.

    Args:
        config_dir: Directory to store the keyfile.

    Returns:
        The new keystore.

    Raises:
        KeyStoreError: If a keyfile already exists.
    """
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True)

    keyfile = config_dir / KEYFILE_NAME
    if keyfile.exists():
        raise KeyStoreError(f"Keystore already exists at {keyfile}")

    key = generate_key()
    key_id = str(uuid.uuid4())
    created_at = datetime.now(UTC).isoformat()
    data = {
        "key": base64.b64encode(key).decode(),
        "key_id": key_id,
        "created_at": created_at,
    }
    keyfile.write_text(json.dumps(data, indent=2))
    os.chmod(keyfile, 0o600)

    return TokenKeyStore(key=key, key_id=key_id, created_at=created_at)


def load_keystore(config_dir: Path) -> TokenKeyStore:
    """Load an existing keyfile.

    Args:
        config_dir: Directory containing the keyfile.

    Raises:
        KeyStoreError: If the keyfile is missing or malformed.
    """
    keyfile = Path(config_dir) / KEYFILE_NAME
    if not keyfile.exists():
        raise KeyStoreError(f"Keystore not found at {keyfile}")

    try:
        data = json.loads(keyfile.read_text())
    except json.JSONDecodeError as e:
        raise KeyStoreError(f"Corrupted keyfile: {e}") from e

    try:
        key = base64.b64decode(data["key"], validate=True)
        key_id = data["key_id"]
        created_at = data["created_at"]
    except (KeyError, TypeError, ValueError) as e:
        raise KeyStoreError(f"Invalid keyfile format: {e}") from e

    return TokenKeyStore(key=key, key_id=key_id, created_at=created_at)


def load_or_create_keystore(config_dir: Path) -> TokenKeyStore:
    """Load the keyfile, creating it on first use."""
    if (Path(config_dir) / KEYFILE_NAME).exists():
        return load_keystore(config_dir)
    return create_keystore(config_dir)
