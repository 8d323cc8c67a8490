"""
Identifier obfuscation with AES-GCM + base-58.

An internal identifier (a UUID string) is encrypted under a fresh 12-byte
nonce; nonce + ciphertext + 16-byte tag are base-58 encoded (Bitcoin
alphabet) to give a URL-safe public key with no look-alike glyphs.

The same identifier yields a different key on every call. The service never
decrypts keys: the (truncated) encoding is itself the lookup key.
"""

from __future__ import annotations

import math
import secrets

import base58
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from disapyr.errors import CryptoError

NONCE_SIZE = 12  # 96 bits, standard for AES-GCM
TAG_SIZE = 16
VALID_KEY_SIZES = (16, 24, 32)  # AES-128 / 192 / 256

BITS_PER_CHAR = math.log2(58)
MIN_KEY_ENTROPY_BITS = 128


def check_key(key: bytes) -> None:
    """Raise CryptoError unless the key has an AES length."""
    if len(key) not in VALID_KEY_SIZES:
        raise CryptoError(
            f"Encryption key must be 16, 24 or 32 bytes, got {len(key)}"
        )


def _cipher(key: bytes) -> AESGCM:
    check_key(key)
    return AESGCM(key)


def obfuscate(identifier: str, key: bytes) -> str:
    """Encrypt an identifier and return the base-58 public form."""
    aesgcm = _cipher(key)
    try:
        nonce = secrets.token_bytes(NONCE_SIZE)
    except OSError as e:
        raise CryptoError(f"Failed to generate nonce: {e}") from e
    ciphertext = aesgcm.encrypt(nonce, identifier.encode("utf-8"), None)
    return base58.b58encode(nonce + ciphertext).decode("ascii")


def reveal(encoded: str, key: bytes) -> str:
    """Recover the identifier from a full (untruncated) obfuscated key."""
    aesgcm = _cipher(key)
    try:
        data = base58.b58decode(encoded)
    except ValueError as e:
        raise CryptoError(f"Not a base-58 string: {e}") from e
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise CryptoError("Encrypted data too short")
    try:
        plaintext = aesgcm.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise CryptoError("Authentication tag mismatch") from e
    return plaintext.decode("utf-8")


def truncate_key(encoded: str, max_len: int) -> str:
    """Cut a public key to ``max_len`` characters. Lossy and never reversed."""
    if max_len < 1:
        raise ValueError(f"max_len must be positive, got {max_len}")
    return encoded[:max_len]


def key_entropy_bits(length: int) -> float:
    """Upper bound on the entropy carried by a base-58 key of ``length`` chars."""
    return length * BITS_PER_CHAR
