"""Vault data models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SecretRecord(BaseModel):
    """A row of the secrets table.

    Once read, ``payload`` is emptied and ``retrieved_at`` stamped in the same
    transaction; the row stays behind as a tombstone.
    """

    key: str
    payload: str | None = None
    retrieved_at: datetime | None = None

    @property
    def consumed(self) -> bool:
        return self.retrieved_at is not None or not self.payload
