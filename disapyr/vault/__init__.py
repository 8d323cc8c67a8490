"""
Disapyr vault — read-once secrets in PostgreSQL under obfuscated keys.

Public API:
    SecretStore(enc_key, key_len).put(payload)   → public key
    SecretStore(enc_key, key_len).take_once(key) → payload, exactly once
    obfuscate(identifier, key) / reveal(encoded, key)
"""

from __future__ import annotations

from disapyr.vault.crypto import check_key, key_entropy_bits, obfuscate, reveal, truncate_key
from disapyr.vault.models import SecretRecord
from disapyr.vault.store import SecretStore

__all__ = [
    "SecretRecord",
    "SecretStore",
    "check_key",
    "key_entropy_bits",
    "obfuscate",
    "reveal",
    "truncate_key",
]
