"""Encryption of stored API keys.

AES-256-GCM with a key derived by SHA-256 from a secret string. The
token is URL-safe base64 (no padding) of a 12-byte nonce followed by
the ciphertext and tag.
"""

from __future__ import annotations

import base64
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12


def _cipher(secret: str) -> AESGCM:
    return AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())


def encrypt(plaintext: str, secret: str) -> str:
    """Encrypt plaintext; empty input encrypts to an empty token."""
    if not plaintext:
        return ""
    nonce = os.urandom(_NONCE_SIZE)
    sealed = _cipher(secret).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.urlsafe_b64encode(nonce + sealed).decode("ascii").rstrip("=")


def decrypt(token: str, secret: str) -> str:
    """Decrypt a token produced by encrypt().

    Raises:
        ValueError: The token is malformed or was sealed with another secret.
    """
    if not token:
        return ""
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (ValueError, TypeError) as e:
        raise ValueError("Encrypted value is not valid base64") from e
    if len(raw) <= _NONCE_SIZE:
        raise ValueError("Encrypted value is too short")
    try:
        plaintext = _cipher(secret).decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], None)
    except InvalidTag as e:
        raise ValueError("Encrypted value could not be authenticated") from e
    return plaintext.decode("utf-8")
