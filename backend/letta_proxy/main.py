"""
letta-proxy API Server
"""

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI

from letta_proxy.api import router
from letta_proxy.config import Settings, get_settings
from letta_proxy.middleware import install_memory_injection
from letta_proxy.services.memory import LettaClient, MemoryConfig

logger = logging.getLogger(__name__)

# Seconds to wait for in-flight memory updates at shutdown
SHUTDOWN_DRAIN_TIMEOUT = 5.0


def configure_logging(level: str = "INFO") -> None:
    """Configure logging for application modules."""
    logging.basicConfig(
        level=level.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info(f"Starting letta-proxy, upstream={app.state.settings.upstream_base_url}")
    yield
    # Shutdown
    dispatcher = getattr(app.state, "memory_dispatcher", None)
    if dispatcher is not None:
        await dispatcher.aclose(timeout=SHUTDOWN_DRAIN_TIMEOUT)
    await app.state.upstream_client.aclose()
    logger.info("Shutting down letta-proxy")


def create_app(
    settings: Settings | None = None, memory_client: LettaClient | None = None
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        memory_client: Optional memory client, e.g. a substitute in tests

    Returns:
        Configured FastAPI app with memory injection installed when enabled
    """
    settings = settings or get_settings()
    memory_config = MemoryConfig.from_settings(settings)

    app = FastAPI(
        title="letta-proxy",
        description="Chat completion proxy with Letta agent memory injection",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.memory_config = memory_config
    app.state.upstream_api_key = settings.upstream_api_key
    app.state.upstream_client = httpx.AsyncClient(
        base_url=settings.upstream_base_url,
        timeout=httpx.Timeout(settings.upstream_timeout_s, connect=10.0),
    )

    install_memory_injection(
        app,
        memory_config,
        client=memory_client,
        update_timeout_s=settings.letta_update_timeout_s,
        max_pending_updates=settings.letta_max_pending_updates,
    )

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Welcome to letta-proxy", "docs": "/docs"}

    @app.get("/health")
    async def health_check() -> dict[str, str | bool]:
        """Basic liveness check."""
        return {
            "status": "healthy",
            "service": "letta-proxy",
            "memory_injection": memory_config.active,
        }

    app.include_router(router)
    return app


def run() -> None:
    """Command line entry point."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the letta-proxy server.")
    parser.add_argument(
        "--host",
        type=str,
        default=settings.host,
        help=f"Host to bind the server to (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to bind the server to (default: {settings.port})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )
    args = parser.parse_args()

    configure_logging(args.log_level)
    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    run()
