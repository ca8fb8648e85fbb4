"""
MCP Relay Application

FastAPI application exposing both legs of the relay:

- GET  /sse            streaming leg (one MCP session per request)
- POST /message        submission leg (deposits into the relay substrate)
- POST /rpc            request-scoped leg (reply and acknowledgement inline)
- /registrations       procedure registration CRUD
- GET  /health         liveness and live session count

Backends are configured via environment variables (see mcp_relay.config):
- RELAY_STRATEGY: "queue" or "record"
- RELAY_BACKEND: "memory", "redis", "aws"
- REGISTRY_BACKEND: "memory", "sql", "aws"
- MESSAGE_FUNCTION_URL: Base URL announced in the endpoint event

Environment variables can be loaded from a .env file in the project root.

Run with:
    uvicorn mcp_relay.app:app
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load environment variables from .env file
load_dotenv()

from mcp_relay.factory import RelayBundle, create_bundle_from_env
from mcp_relay.routes import registrations_router, sessions_router
from mcp_relay.session import RequestScopedHandler, SessionController
from mcp_relay.submission import SubmissionEndpoint

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Seconds to wait for relay loops to finish on shutdown
SHUTDOWN_GRACE = 5.0

_HTTP_ERRORS = {
    404: "Not found",
    405: "Method not allowed",
}


def create_app(bundle: RelayBundle | None = None) -> FastAPI:
    """
    Create the relay application.

    Args:
        bundle: Pre-built collaborators (default: built from the environment
            at startup). A supplied bundle is closed on shutdown as well.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting MCP Relay...")
        relay_bundle = bundle or await create_bundle_from_env()
        settings = relay_bundle.settings

        controller = SessionController(
            registry=relay_bundle.registry,
            invoker=relay_bundle.invoker,
            strategy=relay_bundle.strategy,
            message_endpoint=settings.message_endpoint,
        )
        app.state.bundle = relay_bundle
        app.state.controller = controller
        app.state.submission = SubmissionEndpoint(
            relay_bundle.strategy,
            settings.submission_format,
        )
        app.state.request_handler = RequestScopedHandler(controller.build_server)
        app.state.relay_tasks = set()
        logger.info(f"MCP Relay started (strategy={settings.strategy.value})")

        yield

        logger.info("Shutting down MCP Relay...")
        await controller.close_all()
        tasks = list(app.state.relay_tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} relay loops on shutdown")
                await asyncio.gather(*pending, return_exceptions=True)
        await relay_bundle.close()
        logger.info("MCP Relay stopped")

    app = FastAPI(
        title="MCP Relay",
        description="Serverless-style MCP server relaying messages between two HTTP legs",
        version="0.1.0",
        lifespan=lifespan
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = _HTTP_ERRORS.get(exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    app.include_router(sessions_router)
    app.include_router(registrations_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        controller = getattr(request.app.state, "controller", None)
        relay_bundle = getattr(request.app.state, "bundle", None)
        return {
            "status": "healthy",
            "strategy": relay_bundle.settings.strategy.value if relay_bundle else None,
            "sessions": len(controller.active_sessions) if controller else 0,
        }

    return app


app = create_app()
