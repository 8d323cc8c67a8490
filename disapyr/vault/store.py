"""
Secret store — the ``secrets`` table and its read-once transaction.

Uses psycopg2 through the shared pool in disapyr.db.connection. Each public
method is one transaction: it commits on success and rolls back on any error,
so a failed retrieval never leaves a half-written tombstone.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime

import psycopg2
import psycopg2.errors

from disapyr.db.connection import get_connection
from disapyr.errors import AlreadyConsumedError, NotFoundError, StorageError
from disapyr.vault.crypto import (
    MIN_KEY_ENTROPY_BITS,
    key_entropy_bits,
    obfuscate,
    truncate_key,
)
from disapyr.vault.models import SecretRecord

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS secrets (
    key TEXT PRIMARY KEY,
    secret TEXT,
    retrieved_at TIMESTAMPTZ NULL
)
"""

ConnectionFactory = Callable[[], AbstractContextManager]


class SecretStore:
    """Persists secrets under obfuscated keys and hands each one out once."""

    def __init__(
        self,
        enc_key: bytes,
        key_len: int,
        connection_factory: ConnectionFactory = get_connection,
    ) -> None:
        if key_len < 1:
            raise ValueError(f"key_len must be positive, got {key_len}")
        self._enc_key = enc_key
        self._key_len = key_len
        self._connect = connection_factory

        bits = key_entropy_bits(key_len)
        if bits < MIN_KEY_ENTROPY_BITS:
            logger.warning(
                "Public key length %d carries at most %.0f bits (< %d); collisions and guessing get easier",
                key_len,
                bits,
                MIN_KEY_ENTROPY_BITS,
            )

    def ensure_schema(self) -> None:
        """Create the secrets table if it does not exist."""
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
        except psycopg2.Error as e:
            raise StorageError(f"Error creating table: {e}") from e
        logger.info("Schema ready (secrets)")

    def put(self, payload: str) -> str:
        """Store a payload and return its public key."""
        key = truncate_key(obfuscate(str(uuid.uuid4()), self._enc_key), self._key_len)
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "INSERT INTO secrets (key, secret) VALUES (%s, %s)",
                        (key, payload),
                    )
        except psycopg2.errors.UniqueViolation as e:
            raise StorageError(f"Key collision on insert: {e}") from e
        except psycopg2.Error as e:
            raise StorageError(f"Failed to store secret: {e}") from e
        return key

    def take_once(self, key: str) -> str:
        """Return the payload for ``key`` and tombstone the row.

        The row is locked with SELECT ... FOR UPDATE, so concurrent callers on
        the same key queue behind the first; they see the tombstone once it
        commits and get AlreadyConsumedError.
        """
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT secret, retrieved_at FROM secrets WHERE key = %s FOR UPDATE",
                        (key,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise NotFoundError("secret not found")
                    secret, retrieved_at = row
                    if retrieved_at is not None or not secret:
                        raise AlreadyConsumedError("secret already retrieved")

                    cur.execute(
                        "UPDATE secrets SET secret = '', retrieved_at = %s WHERE key = %s",
                        (datetime.now(UTC), key),
                    )
        except psycopg2.Error as e:
            raise StorageError(f"Read-once transaction failed: {e}") from e
        return secret

    def get_record(self, key: str) -> SecretRecord | None:
        """Read a row without consuming it."""
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT key, secret, retrieved_at FROM secrets WHERE key = %s",
                        (key,),
                    )
                    row = cur.fetchone()
        except psycopg2.Error as e:
            raise StorageError(f"Failed to read secret: {e}") from e
        if row is None:
            return None
        return SecretRecord(key=row[0], payload=row[1], retrieved_at=row[2])
