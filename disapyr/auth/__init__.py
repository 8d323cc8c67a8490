"""Bearer-token authentication against a remote JWKS."""

from disapyr.auth.gatekeeper import AuthContext, Gatekeeper, JWKSFetcher, strip_bearer

__all__ = ["AuthContext", "Gatekeeper", "JWKSFetcher", "strip_bearer"]
