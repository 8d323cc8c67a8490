"""
Bearer-token gatekeeper backed by the identity provider's JWKS.

Flow for each request:
  Authorization header -> strip "Bearer " -> unverified header (alg, kid)
  -> signing key from https://<domain>/.well-known/jwks.json
  -> verify signature, audience, issuer -> AuthContext

The key set is cached for ``cache_ttl`` seconds and refetched once when a
token names an unknown kid (key rotation). ``cache_ttl=0`` fetches on every
request.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt

from disapyr.errors import AuthError

logger = logging.getLogger(__name__)

EXPECTED_ALGORITHMS = ("RS256",)
BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthContext:
    """Validated claims of the caller's token."""

    issuer: str
    audience: str
    key_id: str
    subject: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


class JWKSFetcher:
    """Fetches and caches the identity provider's signing keys."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        cache_ttl: float = 300.0,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.cache_ttl = cache_ttl
        self._client = http_client or httpx.Client(timeout=timeout)
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: dict[str, jwt.PyJWK] = {}
        self._fetched_at: float | None = None

    def close(self) -> None:
        self._client.close()

    def _fetch(self) -> dict[str, jwt.PyJWK]:
        try:
            resp = self._client.get(self.url)
            resp.raise_for_status()
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError("JWKS document is not an object")
            jwk_set = jwt.PyJWKSet.from_dict(data)
        except httpx.HTTPError as e:
            raise AuthError(f"Failed to fetch JWKS from {self.url}: {e}") from e
        except (ValueError, jwt.PyJWTError) as e:
            raise AuthError(f"Failed to decode JWKS from {self.url}: {e}") from e
        keys = {k.key_id: k for k in jwk_set.keys if k.key_id}
        logger.debug("Fetched %d signing keys from %s", len(keys), self.url)
        return keys

    def _is_fresh(self) -> bool:
        if self._fetched_at is None or self.cache_ttl <= 0:
            return False
        return self._clock() - self._fetched_at < self.cache_ttl

    def get_signing_key(self, kid: str) -> jwt.PyJWK:
        """Return the key for ``kid`` or raise AuthError."""
        with self._lock:
            fetched_now = False
            if not self._is_fresh():
                self._keys = self._fetch()
                self._fetched_at = self._clock()
                fetched_now = True
            key = self._keys.get(kid)
            if key is None and not fetched_now:
                # Unknown kid against a cached set: the provider may have rotated
                self._keys = self._fetch()
                self._fetched_at = self._clock()
                key = self._keys.get(kid)
        if key is None:
            raise AuthError(f"No matching key found for kid {kid!r}")
        return key


def strip_bearer(authorization: str) -> str:
    """Drop an optional, case-insensitive ``Bearer `` prefix."""
    value = authorization.strip()
    if value[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        value = value[len(BEARER_PREFIX):].strip()
    return value


class Gatekeeper:
    """Validates bearer tokens for one audience and one issuer domain."""

    def __init__(self, domain: str, audience: str, fetcher: JWKSFetcher | None = None) -> None:
        self.domain = domain
        self.audience = audience
        self.issuer = f"https://{domain}/"
        self.fetcher = fetcher or JWKSFetcher(f"https://{domain}/.well-known/jwks.json")

    def authenticate(self, authorization: str | None) -> AuthContext:
        """Verify the Authorization header value and return its claims."""
        if not authorization or not authorization.strip():
            raise AuthError("missing token")
        token = strip_bearer(authorization)
        if not token:
            raise AuthError("empty bearer token")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise AuthError(f"malformed token: {e}") from e

        alg = header.get("alg")
        if alg not in EXPECTED_ALGORITHMS:
            raise AuthError(f"unexpected signing method: {alg}")
        kid = header.get("kid")
        if not kid:
            raise AuthError("token header has no kid")

        signing_key = self.fetcher.get_signing_key(kid)

        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=list(EXPECTED_ALGORITHMS),
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["aud", "iss"]},
            )
        except jwt.PyJWTError as e:
            raise AuthError(f"invalid token: {e}") from e

        return AuthContext(
            issuer=claims["iss"],
            audience=self.audience,
            key_id=kid,
            subject=claims.get("sub"),
            claims=claims,
        )

    def close(self) -> None:
        self.fetcher.close()
