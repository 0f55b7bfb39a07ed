# x402test/__init__.py
"""
x402test: test harness for the x402 pay-per-request protocol on Solana.

Client side:
    async with X402Context(wallet_provider=provider) as ctx:
        response = await x402(url, ctx).with_payment("0.01").expect_status(200).execute()

Server side:
    app = create_app(ServerConfig(routes={"/api/premium": RouteConfig(price="0.10", response={...})}))
"""
from x402test.api.models.routes import DynamicBody, RouteConfig, ServerConfig, StaticBody
from x402test.core.context import X402Context
from x402test.core.errors import (
    AssertionFailure,
    BudgetError,
    ConfigurationError,
    PaymentConstructionError,
    ReplayLedgerError,
    SchemaError,
    TransportError,
    X402Error,
)
from x402test.main import create_app
from x402test.x402.client import X402Request, X402Response, request, x402

__version__ = "0.1.0"

__all__ = [
    "AssertionFailure",
    "BudgetError",
    "ConfigurationError",
    "DynamicBody",
    "PaymentConstructionError",
    "ReplayLedgerError",
    "RouteConfig",
    "SchemaError",
    "ServerConfig",
    "StaticBody",
    "TransportError",
    "X402Context",
    "X402Error",
    "X402Request",
    "X402Response",
    "create_app",
    "request",
    "x402",
]
