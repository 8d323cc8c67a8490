"""
Client for a Disapyr server.

Wraps httpx.Client for the two vault endpoints and obtains bearer tokens with
the OAuth client-credentials grant from the identity provider.
"""

from __future__ import annotations

import logging

import httpx

from disapyr.errors import AuthError

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Server answered with a non-200 status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def fetch_access_token(
    domain: str,
    client_id: str,
    client_secret: str,
    audience: str,
    grant_type: str = "client_credentials",
    *,
    http_client: httpx.Client | None = None,
) -> str:
    """POST https://<domain>/oauth/token and return the access token."""
    client = http_client or httpx.Client(timeout=10.0)
    try:
        resp = client.post(
            f"https://{domain}/oauth/token",
            json={
                "client_id": client_id,
                "client_secret": client_secret,
                "audience": audience,
                "grant_type": grant_type,
            },
        )
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as e:
        raise AuthError(f"Token request to {domain} failed: {e}") from e
    except ValueError as e:
        raise AuthError(f"Token response from {domain} is not JSON: {e}") from e
    finally:
        if http_client is None:
            client.close()

    token = data.get("access_token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise AuthError("access_token not found in response body")
    return token


class VaultClient:
    """Sync client for POST /secret and GET /secret/{key}."""

    def __init__(
        self,
        server_url: str = "https://localhost:3000",
        token: str = "",
        *,
        verify: bool | str = True,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=self.server_url,
            headers=headers,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> VaultClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _field(self, resp: httpx.Response, name: str) -> str:
        """Return a string field of a 200 JSON object; raise ClientError otherwise."""
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.status_code != 200:
            message = data.get("error") if isinstance(data, dict) else None
            raise ClientError(resp.status_code, message or resp.text)
        value = data.get(name) if isinstance(data, dict) else None
        if not isinstance(value, str):
            raise ClientError(resp.status_code, f"response has no '{name}' field")
        return value

    def store(self, secret: str) -> str:
        """Store a secret; returns its one-time key."""
        resp = self._client.post("/secret", json={"secret": secret})
        return self._field(resp, "key")

    def retrieve(self, key: str) -> str:
        """Read a secret. Works once per key."""
        resp = self._client.get(f"/secret/{key}")
        return self._field(resp, "secret")
