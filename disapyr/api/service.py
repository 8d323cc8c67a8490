"""
Vault service — the two operations behind the HTTP API.

Every dependency is injected, so tests can hand in fakes:
  store       put / take_once          (disapyr.vault.store.SecretStore)
  limiter     allow                    (disapyr.api.limiter.TokenBucket)
  gatekeeper  authenticate             (disapyr.auth.gatekeeper.Gatekeeper)

Order per request: authenticate -> admit -> store_secret / retrieve_secret.
"""

from __future__ import annotations

import logging
from typing import Protocol

from disapyr.auth.gatekeeper import AuthContext
from disapyr.errors import RateLimitedError, ValidationError

logger = logging.getLogger(__name__)


class SecretStoreLike(Protocol):
    def put(self, payload: str) -> str: ...

    def take_once(self, key: str) -> str: ...


class LimiterLike(Protocol):
    def allow(self) -> bool: ...


class AuthenticatorLike(Protocol):
    def authenticate(self, authorization: str | None) -> AuthContext: ...


class VaultService:
    def __init__(
        self,
        store: SecretStoreLike,
        limiter: LimiterLike,
        gatekeeper: AuthenticatorLike,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.gatekeeper = gatekeeper

    def authenticate(self, authorization: str | None) -> AuthContext:
        return self.gatekeeper.authenticate(authorization)

    def admit(self) -> None:
        """Raise RateLimitedError when the shared bucket is empty."""
        if not self.limiter.allow():
            raise RateLimitedError("admission limiter rejected request")

    def store_secret(self, secret: str) -> str:
        if not secret:
            raise ValidationError("secret is required")
        key = self.store.put(secret)
        logger.info("Stored secret (key length %d)", len(key))
        return key

    def retrieve_secret(self, key: str) -> str:
        if not key:
            raise ValidationError("key is required")
        secret = self.store.take_once(key)
        logger.info("Secret retrieved and tombstoned")
        return secret

    def close(self) -> None:
        close = getattr(self.gatekeeper, "close", None)
        if close is not None:
            close()
