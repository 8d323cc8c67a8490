"""HTTP surface: FastAPI app, vault service and admission limiter."""

from disapyr.api.limiter import TokenBucket
from disapyr.api.service import VaultService

__all__ = ["TokenBucket", "VaultService"]
