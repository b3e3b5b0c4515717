"""Starlette application setup for the PalmInsight auth service."""

from __future__ import annotations

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from palm_insight.auth.errors import ConfigurationError
from palm_insight.utils.environment import AppSettings, log_level_from_env
from palm_insight.utils.logging import setup_logging

from .auth import register_auth_routes
from .context import AppContext
from .correlation import CorrelationIdMiddleware
from .dependencies import BrowserIdMiddleware

logger = logging.getLogger("palm-insight.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_app_context() -> AppContext:
    """Load settings from the environment; a bad config yields an unconfigured context."""
    try:
        settings = AppSettings.from_env()
    except ConfigurationError as e:
        logger.error(f"Authentication is not configured: {e}")
        return AppContext(settings=None, config_error=str(e))
    logger.info("Auth configuration loaded.")
    return AppContext.from_settings(settings)


@asynccontextmanager
async def main_lifespan(app: Starlette) -> AsyncIterator[None]:
    logger.info("PalmInsight server lifespan starting...")
    if getattr(app.state, "app_context", None) is None:
        app.state.app_context = build_app_context()
    try:
        yield
    except Exception as e:
        logger.error(f"Error during lifespan: {e}", exc_info=True)
        raise
    finally:
        logger.info("PalmInsight server lifespan shutdown complete.")


def create_app(context: AppContext | None = None) -> Starlette:
    """Build the ASGI app; *context* is injected by tests, else loaded at start-up."""
    app = Starlette(
        lifespan=main_lifespan,
        middleware=[
            Middleware(CorrelationIdMiddleware),
            Middleware(BrowserIdMiddleware),
        ],
    )
    app.state.app_context = context
    app.add_route("/healthz", health_check, methods=["GET"])
    register_auth_routes(app)
    logger.debug("Added /healthz endpoint and auth routes")
    return app


# --------------------------------------------------------------------------- #
# Main
# --------------------------------------------------------------------------- #
def main() -> None:
    parser = argparse.ArgumentParser(description="Run the PalmInsight auth server.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override PALM_INSIGHT_LOG_LEVEL (DEBUG, INFO, ...)",
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Render log records as JSON"
    )
    args = parser.parse_args()

    level = (args.log_level or log_level_from_env()).upper()
    setup_logging(level, json_logs=args.json_logs)
    context = build_app_context()

    uvicorn.run(
        create_app(context),
        host=args.host,
        port=args.port,
        log_level=level.lower(),
        log_config=None,
    )
