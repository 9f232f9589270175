"""aiohttp middlewares: JSON error mapping, CORS and per-client rate limiting."""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Awaitable, Callable

from aiohttp import web

from noface_bootstrap.errors import PeerNotFoundError, ValidationError

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

RATE_LIMIT_EXEMPT = frozenset({"/health"})
PRUNE_EVERY = 1000


def error_response(error: str, status: int, **extra: object) -> web.Response:
    return web.json_response({"success": False, "error": error, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn registry errors and unexpected exceptions into JSON responses."""
    try:
        return await handler(request)
    except ValidationError as e:
        return error_response("Validation failed", 400, details=e.errors)
    except PeerNotFoundError:
        return error_response("Peer not found", 404)
    except web.HTTPNotFound:
        return error_response("Endpoint not found", 404)
    except web.HTTPMethodNotAllowed as e:
        return error_response(f"Method {e.method} not allowed", 405)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response("Internal server error", 500)


def make_cors_middleware(origin: str = "*"):
    """Allow cross-origin browser clients; answers preflight requests directly."""

    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return web.Response(status=204, headers=headers)
        response = await handler(request)
        if not response.prepared:
            response.headers.update(headers)
        return response

    return cors_middleware


class RateLimiter:
    """Sliding-window request counter per client address."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self.rejected = 0
        self._calls = 0

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def allow(self, client: str) -> bool:
        """Record a request from *client*; False if it is over the limit."""
        if not self.enabled:
            return True
        now = self._clock()
        self._calls += 1
        if self._calls % PRUNE_EVERY == 0:
            self.prune()
        hits = self._hits[client]
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self.max_requests:
            self.rejected += 1
            return False
        hits.append(now)
        return True

    def prune(self) -> None:
        """Forget clients with no requests inside the window."""
        cutoff = self._clock() - self.window_seconds
        for client in [c for c, h in self._hits.items() if not h or h[-1] <= cutoff]:
            del self._hits[client]


def make_rate_limit_middleware(limiter: RateLimiter):

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.path in RATE_LIMIT_EXEMPT:
            return await handler(request)
        client = request.remote or "unknown"
        if not limiter.allow(client):
            logger.warning("Rate limit exceeded for %s on %s", client, request.path)
            return error_response("Too many requests", 429)
        return await handler(request)

    return rate_limit_middleware
