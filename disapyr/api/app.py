"""
Disapyr HTTP API — FastAPI app exposing the read-once vault.

Endpoints:
  POST /secret         {"secret": "..."} -> {"key": "..."}
  GET  /secret/{key}   -> {"secret": "..."} the first time, 404 afterwards

Both require a bearer token and draw from one shared admission limiter.
Errors always come back as {"error": "<category message>"}.

Start:
  disapyr serve
  # or
  uvicorn disapyr.api.app:create_app --factory --port 3000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from disapyr import __version__
from disapyr.api.limiter import TokenBucket
from disapyr.api.service import VaultService
from disapyr.auth.gatekeeper import AuthContext, Gatekeeper, JWKSFetcher
from disapyr.config import Config, get_config
from disapyr.db.connection import close_pool
from disapyr.errors import DisapyrError, ErrorCategory, ValidationError, error_response
from disapyr.vault.crypto import check_key
from disapyr.vault.store import SecretStore

logger = logging.getLogger(__name__)


# ─── Pydantic Models ─────────────────────────────────────────────────


class StoreRequest(BaseModel):
    secret: str


class StoreResponse(BaseModel):
    key: str


class RetrieveResponse(BaseModel):
    secret: str


class ErrorBody(BaseModel):
    error: str


# ─── Wiring ──────────────────────────────────────────────────────────


def build_service(cfg: Config) -> VaultService:
    """Assemble the production service from configuration.

    Raises CryptoError at startup when DISAPYR_ENC_KEY is not an AES key.
    """
    check_key(cfg.vault.enc_key_bytes)
    store = SecretStore(cfg.vault.enc_key_bytes, cfg.vault.key_len)
    limiter = TokenBucket(cfg.limiter.rate, cfg.limiter.burst)
    fetcher = JWKSFetcher(
        cfg.auth.jwks_url,
        timeout=cfg.auth.jwks_timeout,
        cache_ttl=cfg.auth.jwks_cache_ttl,
    )
    gatekeeper = Gatekeeper(cfg.auth.domain, cfg.auth.audience, fetcher)
    return VaultService(store, limiter, gatekeeper)


def get_service(request: Request) -> VaultService:
    return request.app.state.service


def require_auth(request: Request, service: VaultService = Depends(get_service)) -> AuthContext:
    """Sync dependency: FastAPI runs it in the threadpool, so the JWKS fetch never blocks the loop."""
    return service.authenticate(request.headers.get("authorization"))


def _route_path(request: Request) -> str:
    # Route template rather than the URL: the URL of a GET carries the secret's key
    route = request.scope.get("route")
    return getattr(route, "path", "<unmatched>")


HTTP_STATUS_CATEGORY = {
    400: ErrorCategory.VALIDATION,
    404: ErrorCategory.NOT_FOUND,
    405: ErrorCategory.VALIDATION,
    422: ErrorCategory.VALIDATION,
}


def _error(category: ErrorCategory) -> JSONResponse:
    return JSONResponse(error_response(category), status_code=category.status_code)


# ─── App Factory ─────────────────────────────────────────────────────


def create_app(service: VaultService | None = None, config: Config | None = None) -> FastAPI:
    """Build the app. A supplied service is used as-is; otherwise one is built from config."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = service is None
        if owned:
            cfg = config or get_config()
            svc = build_service(cfg)
            await run_in_threadpool(svc.store.ensure_schema)
            app.state.service = svc
            logger.info("Disapyr vault ready (rate=%s/s, key_len=%d)", cfg.limiter.rate, cfg.vault.key_len)
        yield
        if owned:
            app.state.service.close()
            close_pool()

    app = FastAPI(
        title="Disapyr",
        description="One-time secret sharing: every secret can be read exactly once.",
        version=__version__,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    if service is not None:
        app.state.service = service

    @app.exception_handler(DisapyrError)
    async def handle_disapyr_error(request: Request, exc: DisapyrError) -> JSONResponse:
        category = exc.category
        log = logger.error if category.status_code >= 500 else logger.warning
        log(
            "%s %s failed [%s]: %s",
            request.method,
            _route_path(request),
            category.value,
            exc,
        )
        return _error(category)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Routing failures raised by the framework: unknown path, wrong method
        category = HTTP_STATUS_CATEGORY.get(exc.status_code, ErrorCategory.SERVER)
        logger.warning(
            "%s %s failed [%s]: HTTP %d",
            request.method,
            _route_path(request),
            category.value,
            exc.status_code,
        )
        return _error(category)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(
            "%s %s failed [validation]: %d errors", request.method, _route_path(request), len(exc.errors())
        )
        return _error(ErrorCategory.VALIDATION)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s failed [server]", request.method, _route_path(request))
        return _error(ErrorCategory.SERVER)

    error_responses = {
        status: {"model": ErrorBody} for status in (400, 401, 404, 429, 500)
    }

    @app.post("/secret", response_model=StoreResponse, responses=error_responses)
    async def store_secret(
        request: Request,
        auth: AuthContext = Depends(require_auth),
        service: VaultService = Depends(get_service),
    ):
        """Store a secret and return its one-time key."""
        service.admit()
        # Parsed here rather than as a body parameter so auth is checked before the body is read
        raw = await request.body()
        try:
            body = StoreRequest.model_validate_json(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"cannot parse JSON: {e.error_count()} errors") from e
        key = await run_in_threadpool(service.store_secret, body.secret)
        return StoreResponse(key=key)

    @app.get("/secret/{key}", response_model=RetrieveResponse, responses=error_responses)
    def retrieve_secret(
        key: str,
        auth: AuthContext = Depends(require_auth),
        service: VaultService = Depends(get_service),
    ):
        """Return a secret once; every later call gets 404."""
        service.admit()
        return RetrieveResponse(secret=service.retrieve_secret(key))

    return app
