# x402test/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from x402test.api.endpoints.paid import build_router, register_fallback
from x402test.api.models.routes import ServerConfig
from x402test.core.config import settings
from x402test.core.context import X402Context
from x402test.x402.parser import X_PAYMENT_HEADER
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def log_server_info(server_config: ServerConfig) -> None:
    """Log the payment terms of every configured route."""
    logger.info("x402test mock server started")
    logger.info(f"  Port: {server_config.port}")
    logger.info(f"  Network: {server_config.network}")
    logger.info(f"  Recipient: {server_config.recipient}")
    logger.info(f"  Asset: {server_config.asset}")
    logger.info("Configured routes:")
    for path, route in server_config.routes.items():
        logger.info(f"  {path}")
        logger.info(f"    Price: {route.price} USDC")
        logger.info(f"    Description: {route.description or 'N/A'}")


def create_app(server_config: ServerConfig, context: Optional[X402Context] = None) -> FastAPI:
    """
    Build the mock x402 server.

    Args:
        server_config: Routes, recipient, asset and network to serve
        context: Shared x402 context. If None, the app creates one and owns
            its lifecycle.

    Raises:
        ConfigurationError: If the recipient or asset is missing or invalid
    """
    server_config.validate()
    x402_context = context or X402Context()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        opened_here = not x402_context.is_open
        if opened_here:
            await x402_context.open()
        log_server_info(server_config)
        try:
            yield
        finally:
            if opened_here:
                await x402_context.close()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.x402 = x402_context
    app.state.server_config = server_config

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        if request.headers.get(X_PAYMENT_HEADER):
            logger.info("  X-PAYMENT header present")
        return await call_next(request)

    app.include_router(build_router(server_config))
    register_fallback(app)
    return app
