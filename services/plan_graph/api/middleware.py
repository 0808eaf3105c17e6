"""
API Middleware Module
Rate limiting, CORS and request logging
"""
import time
from typing import Callable, Dict, List

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    http_request_summary,
)
from plan_config import ALLOWED_ORIGINS, USER_ID_HEADER

logger = get_logger(__name__)


def is_export_request(request: Request) -> bool:
    return request.method == "POST" and request.url.path.endswith("/export")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window rate limit, per client, for requests matching
    ``applies_to``. Single process only.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        applies_to: Callable[[Request], bool] = is_export_request
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.applies_to = applies_to
        self.requests: Dict[str, List[float]] = {}

    async def dispatch(self, request: Request, call_next):
        if not self.applies_to(request):
            return await call_next(request)

        client_id = request.headers.get(USER_ID_HEADER) or (
            request.client.host if request.client else "anonymous"
        )
        current_time = time.time()
        self.evict_expired(current_time)
        window = self.requests.setdefault(client_id, [])

        if len(window) >= self.requests_per_minute:
            logger.warning("rate_limit_exceeded", client_id=client_id, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": "RATE_LIMIT_EXCEEDED",
                        "message": f"Rate limit exceeded: {self.requests_per_minute} requests per minute",
                        "details": {"limit": self.requests_per_minute},
                    }
                },
                headers={"Retry-After": "60"},
            )

        window.append(current_time)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(
            max(0, self.requests_per_minute - len(window))
        )
        return response

    def evict_expired(self, current_time: float) -> None:
        """Drop timestamps older than the window, and clients left with none."""
        for client_id in list(self.requests):
            recent = [
                req_time for req_time in self.requests[client_id]
                if current_time - req_time < 60
            ]
            if recent:
                self.requests[client_id] = recent
            else:
                del self.requests[client_id]


def cors_options() -> dict:
    """Keyword arguments for ``app.add_middleware(CORSMiddleware, ...)``"""
    return {
        "allow_origins": ALLOWED_ORIGINS,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", USER_ID_HEADER],
        "expose_headers": ["X-RateLimit-Limit", "X-RateLimit-Remaining", "Content-Disposition"],
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request context for structlog and logs one summary per request"""

    async def dispatch(self, request: Request, call_next):
        clear_request_context()
        bind_request_context(
            method=request.method,
            path=request.url.path,
            acting_user=request.headers.get(USER_ID_HEADER),
        )
        start_time = time.perf_counter()

        response = await call_next(request)
        elapsed = time.perf_counter() - start_time

        http_request_summary(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )
        clear_request_context()

        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response
