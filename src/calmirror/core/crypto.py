"""Cryptographic functions for calmirror.

This module provides:
- Random key generation for token encryption
- Authenticated encryption of short secrets using AES-256-GCM
"""

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# AES-GCM constants
KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)


def generate_key() -> bytes:
    """Generate a random 256-bit encryption key.

    Returns:
        32 bytes of random data suitable for AES-256.
    """
    return os.urandom(KEY_SIZE)


def encrypt_token(plaintext: str, key: bytes) -> str:
    """Encrypt a token using AES-256-GCM with a random nonce.

    Args:
        plaintext: Token to encrypt.
        key: 32-byte encryption key.

    Returns:
        Base64 text of: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_token(encrypted: str, key: bytes) -> str:
    """Decrypt a token encrypted with encrypt_token.

    Args:
        encrypted: Base64 text produced by encrypt_token.
        key: 32-byte encryption key.

    Returns:
        The plaintext token.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key or tampered data).
        binascii.Error: If the value is not valid base64.
    """
    combined = base64.b64decode(encrypted, validate=True)
    nonce = combined[:NONCE_SIZE]
    ciphertext = combined[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, None).decode("utf-8")
