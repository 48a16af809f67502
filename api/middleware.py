"""
API Security Middleware

Bearer-token auth gate, login throttling and request logging.
All security checks happen server-side.
"""

import time
import logging
from typing import Callable, Iterable, Optional
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .auth import TokenService
from .exceptions import AuthError, MalformedToken, MissingAuthorization

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"
PRINCIPAL = "admin"


def unauthorized_response() -> JSONResponse:
    """Uniform 401 for every auth failure. Never says why."""
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": "Unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an Authorization header value.

    Raises:
        MissingAuthorization: Header absent or empty.
        MalformedToken: Wrong scheme or empty token.
    """
    if not authorization or not authorization.strip():
        raise MissingAuthorization("No Authorization header")

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise MalformedToken("Authorization scheme is not Bearer")

    token = token.strip()
    if not token:
        raise MalformedToken("Empty bearer token")
    return token


class AuthGateMiddleware(BaseHTTPMiddleware):
    """
    Per-request authorization gate.

    Exempt paths pass straight through. Everything under /api/ needs a
    valid bearer token and gets a 401 before reaching any handler
    otherwise. Non-API paths fall through to static serving unless
    protect_static is set.
    """

    def __init__(
        self,
        app,
        token_service: TokenService,
        exempt_paths: Iterable[str] = ("/api/login", "/api/verify"),
        exempt_prefixes: Iterable[str] = (),
        protect_static: bool = False,
    ):
        super().__init__(app)
        self.token_service = token_service
        self.exempt_paths = frozenset(p.rstrip("/") or "/" for p in exempt_paths)
        self.exempt_prefixes = tuple(exempt_prefixes)
        self.protect_static = protect_static

    def is_exempt(self, request: Request) -> bool:
        path = request.url.path.rstrip("/") or "/"
        if path in self.exempt_paths:
            return True
        return any(request.url.path.startswith(prefix) for prefix in self.exempt_prefixes)

    def is_protected(self, request: Request) -> bool:
        if request.url.path.startswith(API_PREFIX) or request.url.path == "/api":
            return True
        return self.protect_static

    async def dispatch(self, request: Request, call_next: Callable):
        request.state.authenticated = False

        if self.is_exempt(request):
            return await call_next(request)

        try:
            token = extract_bearer_token(request.headers.get("Authorization"))
            self.token_service.decode_token(token)
        except AuthError as e:
            logger.debug(f"Auth rejected {request.method} {request.url.path}: {type(e).__name__}")
            if self.is_protected(request):
                return unauthorized_response()
            return await call_next(request)
        except Exception as e:
            # Anything unexpected during verification is a rejection
            logger.warning(f"Auth check failed unexpectedly: {type(e).__name__}")
            if self.is_protected(request):
                return unauthorized_response()
            return await call_next(request)

        request.state.authenticated = True
        request.state.principal = PRINCIPAL
        return await call_next(request)


class LoginRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window throttle on login attempts per client host.

    A limit of 0 disables throttling.
    """

    def __init__(
        self,
        app,
        limit: int = 10,
        window_seconds: int = 60,
        login_path: str = "/api/login",
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds
        self.login_path = login_path
        self._clock = clock
        # Track attempts: {client_host: [timestamp, ...]}
        self._attempts: dict[str, list[float]] = {}

    def _prune(self, now: float) -> None:
        """Drop attempts outside the window, and hosts left with none."""
        for client in list(self._attempts):
            recent = [ts for ts in self._attempts[client] if now - ts < self.window_seconds]
            if recent:
                self._attempts[client] = recent
            else:
                del self._attempts[client]

    async def dispatch(self, request: Request, call_next: Callable):
        if (
            self.limit <= 0
            or request.method != "POST"
            or request.url.path.rstrip("/") != self.login_path
        ):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = self._clock()

        self._prune(now)
        attempts = self._attempts.get(client, [])

        if len(attempts) >= self.limit:
            retry_after = max(1, int(self.window_seconds - (now - attempts[0])))
            logger.warning(f"Login rate limit exceeded for {client}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too many login attempts",
                    "code": "RATE_LIMIT_EXCEEDED",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        self._attempts[client] = attempts + [now]
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests for monitoring and debugging.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} "
            f"from {request.client.host if request.client else 'unknown'} "
            f"-> {response.status_code} in {duration:.3f}s"
        )

        return response


async def require_auth(request: Request) -> str:
    """
    Dependency that re-checks the auth gate's marker inside a handler.

    Usage:
        @app.get("/api/notes")
        async def list_notes(principal: str = Depends(require_auth)):
            ...
    """
    if not getattr(request.state, "authenticated", False):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return request.state.principal
