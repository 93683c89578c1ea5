import os
from typing import Any, Dict, Iterable, Optional, Set

import jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

JWT_ALGORITHM = "HS256"


class TokenRejected(Exception):
    def __init__(self, detail: str, status_code: int = 401):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def bearer_token(request: Request) -> str:
    scheme, _, token = (request.headers.get("Authorization") or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise TokenRejected("Missing bearer token")
    return token.strip()


def decode_token(token: str, secret: str, audience: Optional[str] = None) -> Dict[str, Any]:
    """Verify ``token`` and return its claims; the caller id is ``sub`` or ``user_id``."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            audience=audience,
            options={"verify_aud": audience is not None},
        )
    except jwt.PyJWTError as exc:
        raise TokenRejected("Invalid token") from exc
    if not (claims.get("sub") or claims.get("user_id")):
        raise TokenRejected("Token missing user identifier")
    return claims


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Guards the robot endpoints with HS256 bearer tokens.

    Set ``ROBOTOPS_JWT_AUDIENCE`` to also require a matching ``aud`` claim.
    """

    def __init__(
        self,
        app,
        exempt_paths: Optional[Iterable[str]] = None,
        exempt_prefixes: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.exempt_paths: Set[str] = set(exempt_paths or [])
        self.exempt_prefixes: Set[str] = set(exempt_prefixes or [])
        self.jwt_secret = os.getenv("ROBOTOPS_JWT_SECRET")
        self.audience = os.getenv("ROBOTOPS_JWT_AUDIENCE") or None

    def _is_exempt(self, request: Request) -> bool:
        path = request.url.path
        if request.method == "OPTIONS" or path in self.exempt_paths:
            return True
        return any(path.startswith(prefix) for prefix in self.exempt_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._is_exempt(request):
            return await call_next(request)

        try:
            if not self.jwt_secret:
                raise TokenRejected("Auth secret not configured", status_code=500)
            claims = decode_token(bearer_token(request), self.jwt_secret, self.audience)
        except TokenRejected as exc:
            return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)

        request.state.user_id = claims.get("sub") or claims.get("user_id")
        request.state.jwt_payload = claims
        return await call_next(request)
