"""
HTTP control surface application factory.

Every response body is JSON; every error is ``{"error": "<message>"}``.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wabridge import __version__
from wabridge.bus.queue import EventQueue
from wabridge.channels.adapter import TransportAdapter
from wabridge.monitors.registry import MonitorRegistry


@dataclass(slots=True)
class BridgeContext:
    """What route handlers reach through ``request.app.state.bridge``."""

    adapter: TransportAdapter
    queue: EventQueue
    monitors: MonitorRegistry


# =============================
# Auth
# =============================

class BearerAuthMiddleware:
    """
    Static bearer-token gate for every HTTP request.

    With an empty token the middleware is a pass-through.
    """

    def __init__(self, app, token: str = ""):
        self.app = app
        self.token = token
        self._expected = f"Bearer {token}".encode("utf-8")

    def _extract_header(self, scope) -> Optional[bytes]:
        for key, value in scope.get("headers") or []:
            if key.lower() == b"authorization":
                return value
        return None

    def is_authorized(self, scope) -> bool:
        if not self.token:
            return True
        header = self._extract_header(scope)
        if header is None:
            return False
        return hmac.compare_digest(header, self._expected)

    async def __call__(self, scope, receive, send):
        if scope.get("type") != "http" or self.is_authorized(scope):
            return await self.app(scope, receive, send)

        response = JSONResponse(
            {"error": "Unauthorized"},
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )
        await response(scope, receive, send)


# =============================
# Error envelope
# =============================

def error_response(status_code: int, message: Any) -> JSONResponse:
    return JSONResponse({"error": str(message)}, status_code=status_code)


async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, exc.detail)


async def _validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {where} {first.get('msg', '')}".strip()
    else:
        message = "Invalid request"
    return error_response(400, message)


# =============================
# Factory
# =============================

def create_app(
    adapter: TransportAdapter,
    queue: EventQueue,
    monitors: MonitorRegistry,
    api_token: str = "",
) -> FastAPI:
    from wabridge.api.routes import router

    app = FastAPI(
        title="WhatsApp Bridge API",
        description="Local control surface for the WhatsApp bridge",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.bridge = BridgeContext(adapter=adapter, queue=queue, monitors=monitors)

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_middleware(BearerAuthMiddleware, token=api_token)

    app.include_router(router)
    return app
