# x402test/api/models/routes.py
"""
Configuration of paid routes served by the mock x402 server.

A route's response is either a fixed value (StaticBody) or a function of the
incoming request (DynamicBody), evaluated when the request is dispatched.
"""
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from fastapi import Request

from x402test.api.models.x402 import validate_address
from x402test.core.config import settings
from x402test.core.errors import ConfigurationError
from x402test.x402.units import to_atomic_units

DEFAULT_METHODS = ["GET", "POST", "PUT", "DELETE"]


@dataclass
class RequestContext:
    """What a dynamic response producer gets to see of the request."""
    method: str
    path: str
    query: Dict[str, str]
    headers: Dict[str, str]
    body: Any = None

    @classmethod
    async def from_request(cls, request: Request) -> "RequestContext":
        raw = await request.body()
        body: Any = None
        if raw:
            try:
                body = await request.json()
            except ValueError:
                body = raw.decode("utf-8", errors="replace")
        return cls(
            method=request.method,
            path=request.url.path,
            query=dict(request.query_params),
            headers=dict(request.headers),
            body=body,
        )


@dataclass
class StaticBody:
    """Response body that is the same for every request."""
    value: Any

    async def render(self, context: RequestContext) -> Any:
        return self.value


@dataclass
class DynamicBody:
    """Response body computed from the request; the producer may be async."""
    producer: Callable[[RequestContext], Union[Any, Awaitable[Any]]]

    async def render(self, context: RequestContext) -> Any:
        result = self.producer(context)
        if inspect.isawaitable(result):
            result = await result
        return result


ResponseBody = Union[StaticBody, DynamicBody]


def as_response_body(response: Any) -> ResponseBody:
    """Wrap a plain value or a callable into the matching body variant."""
    if isinstance(response, (StaticBody, DynamicBody)):
        return response
    if callable(response):
        return DynamicBody(response)
    return StaticBody(response)


@dataclass
class RouteConfig:
    """
    A paid route.

    price is in whole tokens as a decimal string ("0.01" USDC = 10000 units).
    """
    price: str
    response: Any
    description: Optional[str] = None
    status: int = 200
    methods: List[str] = field(default_factory=lambda: list(DEFAULT_METHODS))

    def __post_init__(self):
        self.response = as_response_body(self.response)
        try:
            self.amount_atomic(settings.X402_TOKEN_DECIMALS)
        except ValueError as e:
            raise ConfigurationError(f"Invalid route price {self.price!r}: {e}") from e

    def amount_atomic(self, decimals: int) -> int:
        """Route price in smallest units."""
        return to_atomic_units(self.price, decimals)


@dataclass
class ServerConfig:
    """Mock server configuration: who gets paid, in which token, for what."""
    routes: Dict[str, RouteConfig]
    recipient: Optional[str] = None
    asset: Optional[str] = None
    network: str = field(default_factory=lambda: settings.X402_NETWORK)
    port: int = field(default_factory=lambda: settings.SERVER_PORT)
    scheme: str = field(default_factory=lambda: settings.X402_SCHEME)
    decimals: int = field(default_factory=lambda: settings.X402_TOKEN_DECIMALS)
    max_timeout_seconds: int = field(default_factory=lambda: settings.X402_MAX_TIMEOUT_SECONDS)

    def __post_init__(self):
        if self.recipient is None:
            self.recipient = settings.X402_PAY_TO_ADDRESS
        if self.asset is None:
            self.asset = settings.X402_USDC_MINT

    def validate(self) -> None:
        """
        Check that the server can issue challenges.

        Raises:
            ConfigurationError: If the recipient or asset is missing or invalid, or a
                route price does not fit the token decimals
        """
        if not self.recipient:
            raise ConfigurationError("No recipient configured (X402_PAY_TO_ADDRESS)")
        if not self.asset:
            raise ConfigurationError("No asset mint configured (X402_USDC_MINT)")

        for name, value in (("recipient", self.recipient), ("asset", self.asset)):
            try:
                validate_address(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid {name} address {value!r}: {e}") from e

        for path, route in self.routes.items():
            try:
                route.amount_atomic(self.decimals)
            except ValueError as e:
                raise ConfigurationError(f"Invalid price {route.price!r} for route {path}: {e}") from e
