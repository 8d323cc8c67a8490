"""
Root-level shared test fixtures.

Inherited by every test suite in the repo: environment isolation, an RSA
signing key with its JWKS document, a token minter, and an in-memory secret
store that behaves like SecretStore without PostgreSQL.
"""

from __future__ import annotations

import json
import threading
import time
import uuid

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from disapyr.auth.gatekeeper import Gatekeeper, JWKSFetcher
from disapyr.config import reset_config
from disapyr.errors import AlreadyConsumedError, NotFoundError
from disapyr.vault.crypto import obfuscate, truncate_key

TEST_DOMAIN = "tenant.example.auth0.com"
TEST_AUDIENCE = "https://disapyr.example.com/api"
TEST_KID = "test-key-1"
TEST_ENC_KEY = b"example key 1234"  # 16 bytes, AES-128


@pytest.fixture(autouse=True)
def clean_env(request, monkeypatch):
    """Remove DISAPYR_* env vars that leak between tests and reset the config singleton.

    Integration tests keep the environment: it points them at the database.
    """
    import os

    if request.node.get_closest_marker("integration") is None:
        for key in list(os.environ):
            if key.startswith("DISAPYR_"):
                monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_private_key():
    """A second key that the identity provider never published."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks_document(rsa_private_key) -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_private_key.public_key()))
    jwk.update({"kid": TEST_KID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


@pytest.fixture
def mint_token(rsa_private_key):
    """Build a signed token; keyword overrides replace claims, ``kid``/``key`` the signing setup."""

    def _mint(*, kid: str = TEST_KID, key=None, algorithm: str = "RS256", **claims) -> str:
        now = int(time.time())
        payload = {
            "iss": f"https://{TEST_DOMAIN}/",
            "aud": TEST_AUDIENCE,
            "sub": "client-123@clients",
            "iat": now,
            "exp": now + 3600,
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(
            payload,
            key if key is not None else rsa_private_key,
            algorithm=algorithm,
            headers={"kid": kid},
        )

    return _mint


@pytest.fixture
def jwks_requests() -> list[httpx.Request]:
    """Every request the mocked identity provider received."""
    return []


@pytest.fixture
def jwks_client(jwks_document, jwks_requests) -> httpx.Client:
    """httpx client whose transport serves the test JWKS."""

    def handler(request: httpx.Request) -> httpx.Response:
        jwks_requests.append(request)
        if request.url.path == "/.well-known/jwks.json":
            return httpx.Response(200, json=jwks_document)
        return httpx.Response(404)

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def gatekeeper(jwks_client) -> Gatekeeper:
    fetcher = JWKSFetcher(
        f"https://{TEST_DOMAIN}/.well-known/jwks.json",
        cache_ttl=300,
        http_client=jwks_client,
    )
    return Gatekeeper(TEST_DOMAIN, TEST_AUDIENCE, fetcher)


class FakeSecretStore:
    """In-memory SecretStore: same keys, same read-once semantics, one lock for all rows."""

    def __init__(self, enc_key: bytes = TEST_ENC_KEY, key_len: int = 32) -> None:
        self._enc_key = enc_key
        self._key_len = key_len
        self._lock = threading.Lock()
        self.rows: dict[str, dict] = {}

    def put(self, payload: str) -> str:
        key = truncate_key(obfuscate(str(uuid.uuid4()), self._enc_key), self._key_len)
        with self._lock:
            self.rows[key] = {"secret": payload, "retrieved_at": None}
        return key

    def take_once(self, key: str) -> str:
        with self._lock:
            row = self.rows.get(key)
            if row is None:
                raise NotFoundError("secret not found")
            if row["retrieved_at"] is not None or not row["secret"]:
                raise AlreadyConsumedError("secret already retrieved")
            secret = row["secret"]
            row["secret"] = ""
            row["retrieved_at"] = time.time()
            return secret


@pytest.fixture
def fake_store() -> FakeSecretStore:
    return FakeSecretStore()
