"""Middleware — CORS, API key authentication, request logging, error handling."""

from __future__ import annotations

import time
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from garden_watch.config import get_settings
from garden_watch.errors import ConfigurationError

logger = structlog.get_logger(__name__)

_PLACEHOLDER_KEYS = ("change-me-to-a-random-secret", "")

# The garden-watch client polls the data views without credentials.
_PUBLIC_PATHS: set[str] = {"/health", "/docs", "/openapi.json", "/redoc", "/system/info"}
_PUBLIC_PREFIXES: tuple[str, ...] = ("/api/data/",)


def add_cors(app: FastAPI) -> None:
    """Configure CORS from ``settings.cors_origins`` (comma-separated or ``"*"``)."""
    raw = get_settings().cors_origins.strip()
    origins = ["*"] if raw == "*" else [o.strip() for o in raw.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require ``X-API-Key`` or ``Authorization: Bearer <key>`` on write routes.

    Disabled while ``api_secret_key`` is the default placeholder.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        secret = get_settings().api_secret_key
        path = request.url.path
        if secret in _PLACEHOLDER_KEYS or path in _PUBLIC_PATHS or path.startswith(_PUBLIC_PREFIXES):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or _extract_bearer(request.headers.get("Authorization", ""))
        if api_key != secret:
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key."})
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request method, path, status, and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        if request.url.path != "/health":
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.monotonic() - start) * 1000, 1),
            )
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions and return a clean 500 response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("http.unhandled_error", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"detail": "Internal server error."})


async def _rejected_input(request: Request, exc: Exception) -> JSONResponse:
    logger.info("http.rejected_input", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def setup_middleware(app: FastAPI) -> None:
    """Wire middleware and error mapping into the FastAPI application.

    Added innermost first: CORS, API key, request logging, error handler.
    :class:`ConfigurationError` and other ``ValueError`` instances map to 422.
    """
    add_cors(app)
    app.add_middleware(APIKeyMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(ConfigurationError, _rejected_input)
    app.add_exception_handler(ValueError, _rejected_input)


def _extract_bearer(auth_header: str) -> str:
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""
