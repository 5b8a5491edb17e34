"""Cryptographic primitives for kreep.

Randomness:  os.urandom (OS CSPRNG) for keys and nonces.
Encryption:  AES-256-GCM-SIV, 96-bit nonce, 128-bit tag, associated data
             bound to the credential id.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCMSIV

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class CryptoError(Exception):
    """Base class for sealing / opening failures."""


class EncryptionError(CryptoError):
    """Raised when the cipher fails to seal a payload."""


class AuthenticationError(CryptoError, ValueError):
    """Raised when a sealed payload fails tag verification."""


class RandomSourceError(CryptoError):
    """Raised when the OS random source is unavailable."""


def _random_bytes(size: int) -> bytes:
    try:
        return os.urandom(size)
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError("Secure random source is unavailable.") from exc


def generate_key() -> bytes:
    """Return a fresh 32-byte AES-256 key."""
    return _random_bytes(KEY_SIZE)


def generate_nonce() -> bytes:
    """Return a fresh 12-byte nonce."""
    return _random_bytes(NONCE_SIZE)


def seal(key: bytes, aad: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt *plaintext* under *key*, binding *aad*.

    Returns *(nonce, ciphertext || tag)*. A new nonce is drawn on every call.
    """
    nonce = generate_nonce()
    try:
        token = AESGCMSIV(key).encrypt(nonce, plaintext, aad)
    except (ValueError, TypeError, OverflowError) as exc:
        raise EncryptionError("Sealing failed.") from exc
    return nonce, token


def open_sealed(key: bytes, aad: bytes, nonce: bytes, token: bytes) -> bytes:
    """Decrypt *token*; raises :class:`AuthenticationError` on any mismatch."""
    try:
        return AESGCMSIV(key).decrypt(nonce, token, aad)
    except InvalidTag as exc:
        logger.debug("Capsule rejected: tag verification failed")
        raise AuthenticationError("Authentication failed: wrong key, wrong id or corrupted capsule.") from exc
    except ValueError as exc:
        # malformed key or nonce length
        raise AuthenticationError("Authentication failed: malformed key or nonce.") from exc
