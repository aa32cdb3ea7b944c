"""
Request logging middleware with request-id propagation.
"""

import contextvars
import logging
import time
from typing import Dict, Iterable, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Read by RequestIDFilter so every record written while serving a request carries its id.
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

SLOW_REQUEST_SECONDS = 2.0
QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})
DEFAULT_SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key", "x-auth-token")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and its outcome and tags the response with X-Request-ID.

    A caller-supplied ``X-Request-ID`` is reused so ids can be followed across
    services. Health and docs requests are logged at DEBUG.
    """

    def __init__(self, app, log_requests: bool = True, sensitive_headers: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.log_requests = log_requests
        self.sensitive_headers = frozenset(
            header.lower() for header in (sensitive_headers or DEFAULT_SENSITIVE_HEADERS)
        )

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()

        try:
            if self.log_requests:
                self._log_request(request)

            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    "Unhandled %s on %s %s",
                    type(exc).__name__, request.method, request.url.path,
                    extra={"elapsed": time.perf_counter() - started},
                    exc_info=True,
                )
                raise

            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{elapsed:.4f}"

            if self.log_requests:
                self._log_response(request, response, elapsed)
            return response
        finally:
            request_id_var.reset(token)

    def _level_for(self, request: Request) -> int:
        return logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO

    def _log_request(self, request: Request) -> None:
        logger.log(
            self._level_for(request),
            "--> %s %s",
            request.method,
            request.url.path,
            extra={
                "http": {
                    "query": dict(request.query_params),
                    "client_ip": self.client_ip(request),
                    "user_agent": request.headers.get("user-agent"),
                    "headers": self.mask_headers(request.headers),
                }
            },
        )

    def _log_response(self, request: Request, response: Response, elapsed: float) -> None:
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = self._level_for(request)

        logger.log(
            level,
            "<-- %s %s %d (%.4fs)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            extra={"http": {"status_code": response.status_code, "size": response.headers.get("content-length")}},
        )

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning("Slow request: %s %s took %.2fs", request.method, request.url.path, elapsed)

    @staticmethod
    def client_ip(request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")

    def mask_headers(self, headers) -> Dict[str, str]:
        masked = {}
        for key, value in headers.items():
            if key.lower() not in self.sensitive_headers:
                masked[key] = value
            elif key.lower() == "authorization" and value.startswith("Bearer "):
                masked[key] = f"Bearer ***{value[-4:]}"
            else:
                masked[key] = "***MASKED***"
        return masked
