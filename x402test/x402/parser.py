# x402test/x402/parser.py
"""
Encoding and decoding of x402 wire messages.

Headers are canonical JSON wrapped in base64 using the x402 SDK encoding
helpers, so decode(encode(x)) == x for every valid message.
"""
import json
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError
from x402.encoding import safe_base64_decode, safe_base64_encode

from x402test.api.models.x402 import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequiredResponse,
    PaymentRequirements,
    SettlementReceipt,
    VerificationResult,
)
from x402test.core.errors import SchemaError

logger = logging.getLogger(__name__)

# x402 protocol headers
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def _warn_on_version(version: int, source: str) -> None:
    if version != X402_VERSION:
        logger.warning(f"{source} uses x402 v{version}, we support v{X402_VERSION}")


def _decode_header_json(header_value: str, header_name: str) -> Any:
    try:
        decoded_str = safe_base64_decode(header_value)
    except ValueError as e:
        raise SchemaError(f"{header_name} header is not valid base64: {e}") from e
    if decoded_str is None:
        raise SchemaError(f"{header_name} header is not valid base64")

    try:
        return json.loads(decoded_str)
    except json.JSONDecodeError as e:
        raise SchemaError(f"{header_name} header is not valid JSON: {e}") from e


def _encode_header_json(data: dict) -> str:
    return safe_base64_encode(json.dumps(data, separators=(",", ":")))


def parse_challenge(raw: Union[dict, str, bytes]) -> PaymentRequiredResponse:
    """
    Parse and validate the body of a 402 response.

    Args:
        raw: The response body, either already decoded JSON or raw text

    Returns:
        The validated PaymentRequiredResponse

    Raises:
        SchemaError: If the body is not a well-formed x402 challenge
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SchemaError(f"402 response body is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise SchemaError(
            f"Invalid 402 response format. Expected a JSON object, got {type(raw).__name__}"
        )

    try:
        challenge = PaymentRequiredResponse.model_validate(raw)
    except ValidationError as e:
        raise SchemaError("Invalid 402 response format. Expected standard x402 structure.", e) from e

    _warn_on_version(challenge.x402_version, "Server")
    return challenge


def select_requirements(challenge: PaymentRequiredResponse) -> PaymentRequirements:
    """Pick the payment option the client will honour (the first one offered)."""
    if challenge.error:
        raise SchemaError(f"Server returned error: {challenge.error}")
    return challenge.accepts[0]


def parse_payment_header(header_value: str) -> PaymentPayload:
    """
    Decode an X-PAYMENT header into a PaymentPayload.

    Raises:
        SchemaError: If the header is not base64 JSON matching the payload schema
    """
    data = _decode_header_json(header_value, X_PAYMENT_HEADER)
    try:
        payment = PaymentPayload.model_validate(data)
    except ValidationError as e:
        raise SchemaError(f"Invalid {X_PAYMENT_HEADER} header format", e) from e

    _warn_on_version(payment.x402_version, "Client")
    return payment


def encode_payment_header(payment: PaymentPayload) -> str:
    """Encode a PaymentPayload for the X-PAYMENT header."""
    return _encode_header_json(payment.model_dump(by_alias=True))


def encode_settlement_receipt(verdict: VerificationResult, network_id: Optional[str]) -> str:
    """
    Encode a verification verdict for the X-PAYMENT-RESPONSE header.

    Args:
        verdict: The verdict produced by the verification engine
        network_id: Network the payment was settled on

    Returns:
        Base64-encoded JSON string
    """
    receipt = SettlementReceipt(
        success=verdict.is_valid,
        error=verdict.invalid_reason,
        tx_hash=verdict.tx_hash,
        network_id=network_id,
    )
    return _encode_header_json(receipt.model_dump(by_alias=True))


def parse_settlement_receipt(header_value: str) -> SettlementReceipt:
    """Decode an X-PAYMENT-RESPONSE header."""
    data = _decode_header_json(header_value, X_PAYMENT_RESPONSE_HEADER)
    try:
        return SettlementReceipt.model_validate(data)
    except ValidationError as e:
        raise SchemaError(f"Invalid {X_PAYMENT_RESPONSE_HEADER} header", e) from e
