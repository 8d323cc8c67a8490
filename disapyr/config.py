"""
Centralized configuration for Disapyr.

All configuration is loaded from environment variables with sensible defaults.
A ``.env`` file in the working directory is read first; variables already set
in the environment take precedence.

Usage:
    from disapyr.config import get_config
    cfg = get_config()
    print(cfg.db.name)          # "disapyr"
    print(cfg.limiter.rate)     # 10
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import find_dotenv, load_dotenv


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "disapyr"
    user: str = "disapyr"
    password: str = ""
    connect_timeout: int = 5
    statement_timeout_ms: int = 5000
    pool_max: int = 20
    pool_timeout: float = 30.0  # seconds to wait for a free pooled connection

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        parts.append(f"connect_timeout={self.connect_timeout}")
        return " ".join(parts)

    @property
    def options(self) -> str:
        """Server-side timeouts applied to every pooled session."""
        ms = self.statement_timeout_ms
        return f"-c statement_timeout={ms} -c lock_timeout={ms}"

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
            "options": self.options,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class VaultConfig:
    """Identifier obfuscation parameters."""

    enc_key: str = ""  # AES key; must be 16, 24 or 32 bytes once encoded
    key_len: int = 32  # public keys are truncated to this many characters

    @property
    def enc_key_bytes(self) -> bytes:
        return self.enc_key.encode("utf-8")


@dataclass(frozen=True)
class LimiterConfig:
    """Admission limiter: ``rate`` requests/second, burst of twice that."""

    rate: int = 10

    @property
    def burst(self) -> int:
        return 2 * self.rate


@dataclass(frozen=True)
class AuthConfig:
    """Identity provider used to validate bearer tokens."""

    domain: str = ""
    audience: str = ""
    jwks_cache_ttl: float = 300.0  # 0 = fetch the key set on every request
    jwks_timeout: float = 5.0

    @property
    def issuer(self) -> str:
        return f"https://{self.domain}/"

    @property
    def jwks_url(self) -> str:
        return f"https://{self.domain}/.well-known/jwks.json"

    @property
    def token_url(self) -> str:
        return f"https://{self.domain}/oauth/token"


@dataclass(frozen=True)
class ServerConfig:
    """HTTP listener settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    https_enabled: bool = True
    cert_file: str = "cert.pem"
    key_file: str = "key.pem"


@dataclass(frozen=True)
class ClientConfig:
    """Settings for the ``disapyr store`` / ``disapyr retrieve`` commands."""

    server_url: str = "https://localhost:3000"
    client_id: str = ""
    client_secret: str = ""
    grant_type: str = "client_credentials"
    ca_cert: str = ""  # custom CA bundle for self-signed development servers


@dataclass(frozen=True)
class Config:
    """Top-level Disapyr configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    limiter: LimiterConfig = field(default_factory=LimiterConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name} value: {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name} value: {raw!r}") from None


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    load_dotenv(find_dotenv(usecwd=True), override=False)

    db = DatabaseConfig(
        host=os.environ.get("DISAPYR_DB_HOST", ""),
        port=_int_env("DISAPYR_DB_PORT", 5432),
        name=os.environ.get("DISAPYR_DB_NAME", "disapyr"),
        user=os.environ.get("DISAPYR_DB_USER", os.environ.get("USER", "disapyr")),
        password=os.environ.get("DISAPYR_DB_PASSWORD", ""),
        connect_timeout=_int_env("DISAPYR_DB_CONNECT_TIMEOUT", 5),
        statement_timeout_ms=_int_env("DISAPYR_DB_STATEMENT_TIMEOUT_MS", 5000),
        pool_max=_int_env("DISAPYR_DB_POOL_MAX", 20),
        pool_timeout=_float_env("DISAPYR_DB_POOL_TIMEOUT", 30.0),
    )

    vault = VaultConfig(
        enc_key=os.environ.get("DISAPYR_ENC_KEY", ""),
        key_len=_int_env("DISAPYR_KEY_LEN", 32),
    )

    auth = AuthConfig(
        domain=os.environ.get("DISAPYR_AUTH_DOMAIN", ""),
        audience=os.environ.get("DISAPYR_AUTH_AUDIENCE", ""),
        jwks_cache_ttl=_float_env("DISAPYR_JWKS_CACHE_TTL", 300.0),
        jwks_timeout=_float_env("DISAPYR_JWKS_TIMEOUT", 5.0),
    )

    server = ServerConfig(
        host=os.environ.get("DISAPYR_HOST", "0.0.0.0"),
        port=_int_env("DISAPYR_PORT", 3000),
        # Only an explicit "false" turns TLS off
        https_enabled=os.environ.get("DISAPYR_HTTPS_ENABLED", "true").lower() != "false",
        cert_file=os.environ.get("DISAPYR_TLS_CERT", "cert.pem"),
        key_file=os.environ.get("DISAPYR_TLS_KEY", "key.pem"),
    )

    client = ClientConfig(
        server_url=os.environ.get("DISAPYR_SERVER_URL", "https://localhost:3000"),
        client_id=os.environ.get("DISAPYR_CLIENT_ID", ""),
        client_secret=os.environ.get("DISAPYR_CLIENT_SECRET", ""),
        grant_type=os.environ.get("DISAPYR_GRANT_TYPE", "client_credentials"),
        ca_cert=os.environ.get("DISAPYR_CA_CERT", ""),
    )

    return Config(
        db=db,
        vault=vault,
        limiter=LimiterConfig(rate=_int_env("DISAPYR_RATE_LIMIT", 10)),
        auth=auth,
        server=server,
        client=client,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
