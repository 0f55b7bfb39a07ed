# x402test/api/endpoints/paid.py
"""
Request handling for paid routes.

For every configured route:
1. No X-PAYMENT header -> 402 with payment requirements
2. Unparsable X-PAYMENT header -> 400
3. Proof present -> verify on chain (with replay protection)
4. Invalid payment -> fresh 402 carrying the verification failure reason
5. Valid payment -> route response plus X-PAYMENT-RESPONSE receipt
"""
import logging
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from starlette.responses import JSONResponse

from x402test.api.models.routes import RequestContext, RouteConfig, ServerConfig
from x402test.api.models.x402 import X402_VERSION, PaymentRequirements
from x402test.core.context import X402Context
from x402test.core.errors import ReplayLedgerError, SchemaError, TransportError
from x402test.x402 import audit
from x402test.x402.parser import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    encode_settlement_receipt,
    parse_payment_header,
)

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "Route not configured in x402test"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirements(
    request: Request,
    route: RouteConfig,
    server_config: ServerConfig,
) -> PaymentRequirements:
    """
    Create PaymentRequirements for a route's 402 response.

    Args:
        request: The incoming request
        route: The route being paid for
        server_config: Recipient, asset and network of the server

    Returns:
        PaymentRequirements object for the x402 response
    """
    return PaymentRequirements(
        scheme=server_config.scheme,
        network=server_config.network,
        max_amount_required=str(route.amount_atomic(server_config.decimals)),
        resource=str(request.url),
        description=route.description,
        mime_type="application/json",
        pay_to=server_config.recipient,
        max_timeout_seconds=server_config.max_timeout_seconds,
        asset=server_config.asset,
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: Optional[str] = None,
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Why a previous payment was rejected, if any

    Returns:
        JSONResponse with 402 status and payment details
    """
    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True, exclude_none=True)],
    }
    return JSONResponse(status_code=402, content=response_body)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


def create_route_handler(
    path: str,
    route: RouteConfig,
    server_config: ServerConfig,
) -> Callable[[Request], Awaitable[Response]]:
    """Build the request handler of one paid route."""

    async def handle_paid_request(request: Request) -> Response:
        context: X402Context = request.app.state.x402
        client_ip = get_client_ip(request)
        requirements = create_payment_requirements(request, route, server_config)

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for {requirements.max_amount_required} units")
            audit.log_payment_required_sent(
                client_ip=client_ip,
                amount=requirements.max_amount_required,
                asset=requirements.asset,
                network=requirements.network,
                pay_to=requirements.pay_to,
                resource=requirements.resource,
            )
            return create_402_response(requirements)

        try:
            payment = parse_payment_header(payment_header)
        except SchemaError as e:
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}: {e}")
            audit.log_payment_failed(client_ip=client_ip, reason=str(e), stage="parse")
            return _error_response(400, "Invalid X-PAYMENT header format", str(e))

        proof = payment.payload
        if payment.network != server_config.network:
            logger.warning(
                f"x402: Payment declares network {payment.network}, server uses {server_config.network}"
            )
        audit.log_payment_received(
            client_ip=client_ip,
            payer=proof.from_address,
            signature=proof.signature,
            amount=proof.amount,
            network=payment.network,
        )

        try:
            verification = await context.verifier.verify(
                proof.signature,
                expected_recipient=server_config.recipient,
                expected_min_amount=requirements.amount,
                expected_asset=server_config.asset,
                replay_check=True,
                endpoint=path,
            )
        except TransportError as e:
            logger.error(f"x402: Ledger unavailable while verifying {proof.signature}: {e}")
            audit.log_payment_failed(
                client_ip=client_ip, reason=str(e), stage="verify", wallet_address=proof.from_address
            )
            return _error_response(502, "Payment verification unavailable", str(e))
        except ReplayLedgerError as e:
            logger.error(f"x402: Could not record payment {proof.signature}: {e}")
            audit.log_error(
                client_ip=client_ip,
                error_type="replay_ledger",
                error_message=str(e),
                context={"signature": proof.signature},
                wallet_address=proof.from_address,
            )
            return _error_response(500, "Payment could not be recorded", str(e))

        audit.log_payment_verified(
            client_ip=client_ip,
            payer=verification.sender or proof.from_address,
            is_valid=verification.is_valid,
            invalid_reason=verification.invalid_reason,
            transaction_hash=verification.tx_hash,
            amount=verification.amount,
        )

        if not verification.is_valid:
            logger.warning(f"x402: Payment verification failed: {verification.invalid_reason}")
            return create_402_response(requirements, verification.invalid_reason)

        logger.info(f"x402: Payment verified for payer {verification.sender} ({verification.tx_hash})")

        body = await route.response.render(await RequestContext.from_request(request))
        response = JSONResponse(status_code=route.status, content=body)
        response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_settlement_receipt(
            verification, server_config.network
        )
        return response

    return handle_paid_request


def build_router(server_config: ServerConfig) -> APIRouter:
    """Create a router with one handler per configured paid route."""
    router = APIRouter()
    for path, route in server_config.routes.items():
        router.add_api_route(
            path,
            create_route_handler(path, route, server_config),
            methods=route.methods,
            summary=route.description,
            tags=["paid"],
        )
    return router


def register_fallback(app: FastAPI) -> None:
    """Answer any unconfigured path with a 404 JSON error."""

    @app.api_route(
        "/{unmatched_path:path}",
        methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        include_in_schema=False,
    )
    async def route_not_configured(unmatched_path: str) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": NOT_CONFIGURED_ERROR})
