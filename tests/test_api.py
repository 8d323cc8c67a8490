"""
Tests for the HTTP API.

The app is built around an injected VaultService: in-memory store, real
token bucket, and a real Gatekeeper whose JWKS endpoint is mocked.
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from disapyr.api.app import build_service, create_app
from disapyr.api.limiter import TokenBucket
from disapyr.api.service import VaultService
from disapyr.config import AuthConfig, Config, VaultConfig
from disapyr.errors import CryptoError, StorageError
from disapyr.vault.store import SecretStore


def frozen_bucket(rate: int) -> TokenBucket:
    return TokenBucket(rate, clock=lambda: 0.0)


@pytest.fixture
def service(fake_store, gatekeeper):
    return VaultService(fake_store, frozen_bucket(50), gatekeeper)


@pytest.fixture
def auth_headers(mint_token):
    return {"Authorization": f"Bearer {mint_token()}"}


@pytest_asyncio.fixture
async def test_client(service):
    """Async HTTP client wrapping the app via ASGITransport."""
    transport = ASGITransport(app=create_app(service=service))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ─── End to end ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_then_read_once(test_client, auth_headers):
    r = await test_client.post("/secret", json={"secret": "hello"}, headers=auth_headers)
    assert r.status_code == 200
    key = r.json()["key"]
    assert isinstance(key, str) and key

    r = await test_client.get(f"/secret/{key}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"secret": "hello"}

    r = await test_client.get(f"/secret/{key}", headers=auth_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "Resource not found"}


@pytest.mark.asyncio
async def test_missing_and_consumed_are_indistinguishable(test_client, auth_headers):
    r = await test_client.post("/secret", json={"secret": "hello"}, headers=auth_headers)
    key = r.json()["key"]
    await test_client.get(f"/secret/{key}", headers=auth_headers)

    consumed = await test_client.get(f"/secret/{key}", headers=auth_headers)
    missing = await test_client.get("/secret/NoSuchKey123", headers=auth_headers)
    assert consumed.status_code == missing.status_code == 404
    assert consumed.json() == missing.json()


@pytest.mark.asyncio
async def test_key_is_truncated(test_client, auth_headers):
    r = await test_client.post("/secret", json={"secret": "hello"}, headers=auth_headers)
    assert len(r.json()["key"]) == 32


# ─── Validation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"not json",
        b"{}",
        b'{"secret": ""}',
        b'{"secret": 42}',
        b'{"secret": null}',
        b'["hello"]',
    ],
)
async def test_invalid_body(test_client, auth_headers, body):
    r = await test_client.post(
        "/secret",
        content=body,
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request data"}


# ─── Authentication ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_no_authorization_header(test_client):
    r = await test_client.post("/secret", json={"secret": "hello"})
    assert r.status_code == 401
    assert r.json() == {"error": "Authentication failed"}

    r = await test_client.get("/secret/anything")
    assert r.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"kid": "unknown-kid"},
        {"aud": "https://wrong-audience.example.com"},
        {"iss": "https://wrong-issuer.example.com/"},
    ],
)
async def test_rejected_tokens(test_client, mint_token, overrides):
    headers = {"Authorization": f"Bearer {mint_token(**overrides)}"}
    r = await test_client.post("/secret", json={"secret": "hello"}, headers=headers)
    assert r.status_code == 401
    assert r.json() == {"error": "Authentication failed"}


@pytest.mark.asyncio
async def test_malformed_token(test_client):
    r = await test_client.get("/secret/abc", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_forged_token(test_client, mint_token, other_private_key):
    headers = {"Authorization": f"Bearer {mint_token(key=other_private_key)}"}
    r = await test_client.get("/secret/abc", headers=headers)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_auth_checked_before_body(test_client):
    r = await test_client.post(
        "/secret", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_lowercase_bearer(test_client, mint_token):
    r = await test_client.post(
        "/secret", json={"secret": "hello"}, headers={"Authorization": f"bearer {mint_token()}"}
    )
    assert r.status_code == 200


# ─── Admission limiter ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rate_limited(fake_store, gatekeeper, auth_headers):
    service = VaultService(fake_store, frozen_bucket(1), gatekeeper)
    transport = ASGITransport(app=create_app(service=service))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        r1 = await client.post("/secret", json={"secret": "a"}, headers=auth_headers)
        r2 = await client.get(f"/secret/{r1.json()['key']}", headers=auth_headers)
        r3 = await client.post("/secret", json={"secret": "b"}, headers=auth_headers)

    assert r1.status_code == 200
    assert r2.status_code == 200  # both endpoints share one bucket
    assert r3.status_code == 429
    assert r3.json() == {"error": "Too many requests"}


@pytest.mark.asyncio
async def test_unauthenticated_requests_do_not_spend_tokens(fake_store, gatekeeper, auth_headers):
    service = VaultService(fake_store, frozen_bucket(1), gatekeeper)
    transport = ASGITransport(app=create_app(service=service))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(5):
            assert (await client.get("/secret/x")).status_code == 401
        r = await client.post("/secret", json={"secret": "a"}, headers=auth_headers)
    assert r.status_code == 200


# ─── Storage failures ────────────────────────────────────────────────


class BrokenStore:
    def put(self, payload):
        raise StorageError("connection refused: host=db.internal password=hunter2")

    def take_once(self, key):
        raise StorageError("could not serialize access")


@pytest.mark.asyncio
async def test_storage_error_hides_detail(gatekeeper, auth_headers, caplog):
    service = VaultService(BrokenStore(), frozen_bucket(10), gatekeeper)
    transport = ASGITransport(app=create_app(service=service))
    with caplog.at_level(logging.ERROR, logger="disapyr.api.app"):
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            r = await client.post("/secret", json={"secret": "a"}, headers=auth_headers)
            g = await client.get("/secret/SomeKey", headers=auth_headers)

    assert r.status_code == 500
    assert r.json() == {"error": "Database operation failed"}
    assert "hunter2" not in r.text
    assert g.status_code == 500
    # Detail goes to the log, keyed by route template rather than the secret's URL
    assert "hunter2" in caplog.text
    assert "/secret/{key}" in caplog.text
    assert "SomeKey" not in caplog.text


@pytest.mark.asyncio
async def test_unexpected_error_is_generic(gatekeeper, auth_headers):
    class ExplodingStore:
        def put(self, payload):
            raise RuntimeError("disk on fire at /var/lib/secret-path")

        def take_once(self, key):
            raise RuntimeError("unreachable")

    service = VaultService(ExplodingStore(), frozen_bucket(10), gatekeeper)
    transport = ASGITransport(app=create_app(service=service), raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        r = await client.post("/secret", json={"secret": "a"}, headers=auth_headers)

    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert "disk on fire" not in r.text


# ─── Framework errors ────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [("PUT", "/secret"), ("DELETE", "/secret/abc"), ("GET", "/secret"), ("PATCH", "/secret/abc")],
)
async def test_wrong_method_uses_envelope(test_client, auth_headers, method, path):
    r = await test_client.request(method, path, headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request data"}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/secret/", "/nowhere", "/secret/a/b"])
async def test_unknown_path_uses_envelope(test_client, auth_headers, path):
    r = await test_client.get(path, headers=auth_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "Resource not found"}


# ─── Owned service lifecycle ─────────────────────────────────────────


def _config(enc_key: str = "example key 1234") -> Config:
    return Config(
        vault=VaultConfig(enc_key=enc_key, key_len=32),
        auth=AuthConfig(domain="tenant.example.auth0.com", audience="https://disapyr.example.com/api"),
    )


class TestOwnedService:
    @pytest.mark.asyncio
    async def test_lifespan_builds_and_closes(self):
        app = create_app(config=_config())
        with (
            patch("disapyr.vault.store.SecretStore.ensure_schema") as ensure,
            patch("disapyr.api.app.close_pool") as close,
        ):
            async with app.router.lifespan_context(app):
                service = app.state.service
                assert isinstance(service, VaultService)
                assert isinstance(service.store, SecretStore)
                assert isinstance(service.limiter, TokenBucket)
                assert service.limiter.burst == 20
                ensure.assert_called_once()
                close.assert_not_called()
            close.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("enc_key", ["", "too short", "x" * 33])
    async def test_bad_encryption_key_refuses_to_start(self, enc_key):
        app = create_app(config=_config(enc_key))
        with patch("disapyr.vault.store.SecretStore.ensure_schema") as ensure:
            with pytest.raises(CryptoError, match="16, 24 or 32 bytes"):
                async with app.router.lifespan_context(app):
                    pass
        ensure.assert_not_called()

    def test_build_service_validates_key(self):
        with pytest.raises(CryptoError):
            build_service(_config(""))
        assert isinstance(build_service(_config("k" * 32)), VaultService)
