from __future__ import annotations

"""FastAPI application factory for the Vonix chat relay.

Every module under :mod:`vonix.http.routes` exposes an ``APIRouter`` named
``router``; ``create_app`` imports each one and registers it, so new route
modules are picked up without touching this file.
"""

from importlib import import_module
import pkgutil
import time

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

import structlog

from ..config import AppConfig
from ..relay import ChatRelay
from .discord_client import is_discord_client_ready
from .errors import http_error_handler, validation_error_handler
from . import ws


logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured line per request with its status and duration."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        log = logger.bind(method=request.method, path=request.url.path)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:  # pragma: no cover - logged then re-raised
            log.exception("request.failure", error=str(exc))
            raise
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        log.info("request.done", status_code=response.status_code, elapsed_ms=elapsed_ms)
        return response


def create_app(cfg: AppConfig | None = None, relay: ChatRelay | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    cfg = cfg or AppConfig()
    app = FastAPI(title="Vonix Chat")
    app.state.config = cfg
    app.state.relay = relay or ChatRelay(cfg.discord.webhook_url)
    ws.manager.welcome_message = cfg.chat.welcome_message

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_api_websocket_route("/ws/chat", ws.websocket_endpoint_chat)

    @app.get("/health")
    async def health() -> dict[str, object]:
        """Liveness check including the Discord bridge state."""
        return {"status": "ok", "discord": is_discord_client_ready()}

    _include_routers(app)
    return app


def _include_routers(app: FastAPI) -> None:
    from . import routes

    for info in pkgutil.iter_modules(routes.__path__):
        module = import_module(f"{routes.__name__}.{info.name}")
        if hasattr(module, "router"):
            app.include_router(module.router)
            logger.debug("routes.registered", module=info.name)
