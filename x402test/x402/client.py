# x402test/x402/client.py
"""
Client protocol driver for x402 endpoints.

X402Request is a fluent request builder. execute() sends the request, pays
when the server answers 402 and the caller declared a payment ceiling,
resubmits with the X-PAYMENT proof and finally checks the declared
expectations against the final response:

    response = await (
        x402("http://localhost:4402/api/premium", context)
        .get()
        .with_payment("0.10")
        .expect_status(200)
        .expect_payment_settled()
        .execute()
    )

Each failure cause raises its own error type: TransportError, SchemaError,
BudgetError, PaymentConstructionError or AssertionFailure.
"""
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from x402test.api.models.x402 import SettlementReceipt
from x402test.core.config import settings
from x402test.core.context import X402Context
from x402test.core.errors import (
    AssertionFailure,
    BudgetError,
    PaymentConstructionError,
    SchemaError,
    TransportError,
    X402Error,
)
from x402test.x402.explorers import Cluster, cluster_from_network, log_explorer_link
from x402test.x402.parser import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    parse_challenge,
    parse_settlement_receipt,
    select_requirements,
)
from x402test.x402.payment import create_payment, create_payment_header
from x402test.x402.units import to_atomic_units

logger = logging.getLogger(__name__)


@dataclass
class PaymentInfo:
    """The payment made while executing a request."""
    signature: str
    amount: str
    from_address: str
    to: str
    asset: str
    header: str


@dataclass
class X402Response:
    """Final response of an executed request."""
    status: int
    status_text: str
    headers: httpx.Headers
    body: Any
    payment: Optional[PaymentInfo] = None
    receipt: Optional[SettlementReceipt] = None


class ExpectationType(Enum):
    """Kinds of post-conditions a caller can declare."""
    STATUS = "status"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_AMOUNT = "payment_amount"
    BODY = "body"
    HEADER = "header"


@dataclass
class Expectation:
    type: ExpectationType
    value: Any = None
    name: Optional[str] = None


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


class X402Request:
    """Fluent builder and executor for one logical x402 request."""

    def __init__(self, url: str, context: Optional[X402Context] = None):
        self.url = url
        self._context = context
        self._method = "GET"
        self._headers: Dict[str, str] = {}
        self._body: Any = None
        self._payment_amount: Optional[str] = None
        self._expectations: List[Expectation] = []
        self._cluster: Cluster = "localnet"

    # --- Request building ---

    def get(self) -> "X402Request":
        self._method = "GET"
        return self

    def post(self, body: Any = None) -> "X402Request":
        self._method = "POST"
        self._body = body
        return self

    def put(self, body: Any = None) -> "X402Request":
        self._method = "PUT"
        self._body = body
        return self

    def delete(self) -> "X402Request":
        self._method = "DELETE"
        return self

    def header(self, name: str, value: str) -> "X402Request":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "X402Request":
        self._headers = {**self._headers, **headers}
        return self

    def body(self, body: Any) -> "X402Request":
        self._body = body
        return self

    def with_payment(self, config: Union[str, Dict[str, str]]) -> "X402Request":
        """
        Declare the most the caller is willing to pay, in whole tokens.

        Args:
            config: "0.10" or {"amount": "0.10"}

        Raises:
            ValueError: If the amount is not a valid token amount
        """
        amount = config["amount"] if isinstance(config, dict) else config
        to_atomic_units(amount, settings.X402_TOKEN_DECIMALS)
        self._payment_amount = str(amount)
        return self

    # --- Expectations ---

    def expect_status(self, status: int) -> "X402Request":
        self._expectations.append(Expectation(ExpectationType.STATUS, status))
        return self

    def expect_payment_settled(self) -> "X402Request":
        self._expectations.append(Expectation(ExpectationType.PAYMENT_SETTLED))
        return self

    def expect_payment_amount(self, amount: Union[str, int]) -> "X402Request":
        """Expect the exact amount paid, in smallest units."""
        self._expectations.append(Expectation(ExpectationType.PAYMENT_AMOUNT, str(amount)))
        return self

    def expect_body(self, matcher: Union[Any, Callable[[Any], bool]]) -> "X402Request":
        """Expect a body equal to matcher, or for which matcher(body) is true."""
        self._expectations.append(Expectation(ExpectationType.BODY, matcher))
        return self

    def expect_header(self, name: str, value: Union[str, re.Pattern]) -> "X402Request":
        """Expect a header equal to value, or matching a compiled pattern."""
        self._expectations.append(Expectation(ExpectationType.HEADER, value, name))
        return self

    # --- Execution ---

    def __await__(self):
        return self.execute().__await__()

    async def execute(self) -> X402Response:
        """
        Send the request, pay if required, and check expectations.

        Returns:
            The final response

        Raises:
            TransportError: Connectivity problem or timeout
            SchemaError: Malformed 402 challenge or response body
            BudgetError: The challenge asks for more than the declared ceiling
            PaymentConstructionError: The payment could not be made
            AssertionFailure: An expectation did not hold
        """
        if self._context is not None:
            return await self._run(self._context)

        async with X402Context() as context:
            return await self._run(context)

    async def _run(self, context: X402Context) -> X402Response:
        try:
            response = await self._send(context)

            if response.status == 402 and self._payment_amount is not None:
                response = await self._handle_payment_required(context, response)

            await self._check_expectations(context, response)
            return response

        except X402Error as e:
            logger.error(f"Error executing request {self._method} {self.url}: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error executing request {self._method} {self.url}: {e}")
            raise X402Error(f"Request to {self.url} failed: {e}") from e

    async def _send(self, context: X402Context, payment_header: Optional[str] = None) -> X402Response:
        headers = {"Content-Type": "application/json", **self._headers}
        if payment_header:
            headers[X_PAYMENT_HEADER] = payment_header

        content = None
        if self._body is not None and self._method != "GET":
            content = json.dumps(self._body)

        try:
            resp = await context.http_client.request(
                self._method, self.url, headers=headers, content=content
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {self.url} timed out", e) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self.url} failed: {e}", e) from e

        if "application/json" in resp.headers.get("content-type", ""):
            try:
                body = resp.json()
            except ValueError as e:
                raise SchemaError(f"Response from {self.url} is not valid JSON: {e}") from e
        else:
            body = resp.text

        receipt = None
        receipt_header = resp.headers.get(X_PAYMENT_RESPONSE_HEADER)
        if receipt_header:
            try:
                receipt = parse_settlement_receipt(receipt_header)
            except SchemaError as e:
                logger.warning(f"Ignoring malformed {X_PAYMENT_RESPONSE_HEADER} header: {e}")

        return X402Response(
            status=resp.status_code,
            status_text=resp.reason_phrase,
            headers=resp.headers,
            body=body,
            receipt=receipt,
        )

    async def _handle_payment_required(self, context: X402Context, response: X402Response) -> X402Response:
        requirements = select_requirements(parse_challenge(response.body))
        self._cluster = cluster_from_network(requirements.network)

        ceiling = to_atomic_units(self._payment_amount, settings.X402_TOKEN_DECIMALS)
        required = requirements.amount
        if ceiling < required:
            raise BudgetError(required=required, ceiling=ceiling)

        try:
            identity = await context.wallet_provider.get_signing_identity()
        except (PaymentConstructionError, TransportError):
            raise
        except Exception as e:
            raise PaymentConstructionError("Could not obtain a signing identity", e) from e

        signature = await create_payment(identity, requirements)
        try:
            log_explorer_link(signature, settings.X402_EXPLORER, self._cluster)
        except ValueError as e:
            logger.warning(f"No explorer link for {signature}: {e}")

        try:
            payment_header = create_payment_header(signature, requirements, identity.address)
        except ValidationError as e:
            raise PaymentConstructionError("Could not build payment proof", e) from e
        paid_response = await self._send(context, payment_header)
        paid_response.payment = PaymentInfo(
            signature=signature,
            amount=requirements.max_amount_required,
            from_address=identity.address,
            to=requirements.pay_to,
            asset=requirements.asset,
            header=payment_header,
        )
        return paid_response

    async def _check_expectations(self, context: X402Context, response: X402Response) -> None:
        for expectation in self._expectations:
            await self._check_expectation(context, expectation, response)

    async def _check_expectation(
        self,
        context: X402Context,
        expectation: Expectation,
        response: X402Response,
    ) -> None:
        if expectation.type is ExpectationType.STATUS:
            if response.status != expectation.value:
                raise AssertionFailure(
                    f"Expected status {expectation.value} but got {response.status}"
                    f"\nBody: {_dump(response.body)}"
                )
            logger.info("Status check passed")

        elif expectation.type is ExpectationType.PAYMENT_SETTLED:
            if response.payment is None:
                raise AssertionFailure("Payment was not settled")

            verification = await context.verifier.verify(
                response.payment.signature,
                expected_recipient=response.payment.to,
                expected_min_amount=int(response.payment.amount),
                expected_asset=response.payment.asset,
                replay_check=False,
            )
            if not verification.is_valid:
                raise AssertionFailure(verification.invalid_reason)
            logger.info("Payment settled on chain")

        elif expectation.type is ExpectationType.PAYMENT_AMOUNT:
            if response.payment is None:
                raise AssertionFailure("Payment was not settled")

            expected_amount = int(expectation.value)
            actual_amount = int(response.payment.amount)
            if actual_amount != expected_amount:
                raise AssertionFailure(
                    f"Expected payment amount {expected_amount} but got {actual_amount}"
                )
            logger.info("Payment amount check passed")

        elif expectation.type is ExpectationType.BODY:
            if callable(expectation.value):
                if not expectation.value(response.body):
                    raise AssertionFailure(f"Body validation failed\nGot: {_dump(response.body)}")
            elif response.body != expectation.value:
                raise AssertionFailure(
                    f"Expected body {_dump(expectation.value)} but \nGot: {_dump(response.body)}"
                )
            logger.info("Body check passed")

        elif expectation.type is ExpectationType.HEADER:
            header_value = response.headers.get(expectation.name or "")
            if isinstance(expectation.value, re.Pattern):
                if not expectation.value.search(header_value or ""):
                    raise AssertionFailure(
                        f"Expected header {expectation.name} to match "
                        f"{expectation.value.pattern} but got {header_value}"
                    )
            elif header_value != expectation.value:
                raise AssertionFailure(
                    f"Expected header {expectation.name} to be {expectation.value} but got {header_value}"
                )
            logger.info("Header check passed")


# aliases
def x402(url: str, context: Optional[X402Context] = None) -> X402Request:
    return X402Request(url, context)


def request(url: str, context: Optional[X402Context] = None) -> X402Request:
    return X402Request(url, context)
