# x402test/api/models/x402.py
"""
Pydantic models for the x402 wire format on Solana.

These models are the single source of truth for the structure of the 402
challenge body, the X-PAYMENT proof header, the verification verdict and the
X-PAYMENT-RESPONSE settlement receipt.
"""
from typing import Any, Dict, List, Optional

import base58
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

X402_VERSION = 1

# Solana public keys are 32 bytes, transaction signatures 64 bytes, both base58
ADDRESS_BYTES = 32
SIGNATURE_BYTES = 64
BASE58_PATTERN = r"^[1-9A-HJ-NP-Za-km-z]+$"
UINT_PATTERN = r"^\d+$"


def _check_base58(value: str, expected_bytes: int, kind: str) -> str:
    try:
        decoded = base58.b58decode(value)
    except ValueError as e:
        raise ValueError(f"Invalid {kind} format: {e}") from e
    if len(decoded) != expected_bytes:
        raise ValueError(
            f"Invalid {kind}: expected {expected_bytes} bytes, got {len(decoded)}"
        )
    return value


def validate_address(value: str) -> str:
    """Check that a string is a base58 Solana address (32 bytes)."""
    return _check_base58(value, ADDRESS_BYTES, "Solana address")


def validate_signature(value: str) -> str:
    """Check that a string is a base58 transaction signature (64 bytes)."""
    return _check_base58(value, SIGNATURE_BYTES, "transaction signature")


class PaymentRequirements(BaseModel):
    """One payment option of a 402 challenge (an entry of ``accepts``)."""
    scheme: str = Field(..., description="Payment scheme, e.g. 'exact'.")
    network: str = Field(..., description="Network identifier, e.g. 'solana-devnet'.")
    max_amount_required: str = Field(
        ...,
        alias="maxAmountRequired",
        pattern=UINT_PATTERN,
        description="Amount to pay in the token's smallest unit, as a decimal string.",
    )
    resource: str = Field(..., description="URL of the resource being paid for.")
    description: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")
    output_schema: Optional[Dict[str, Any]] = Field(None, alias="outputSchema")
    pay_to: str = Field(..., alias="payTo", pattern=BASE58_PATTERN)
    max_timeout_seconds: Optional[int] = Field(None, alias="maxTimeoutSeconds", gt=0)
    asset: str = Field(..., pattern=BASE58_PATTERN, description="SPL token mint address.")
    extra: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @field_validator("pay_to", "asset")
    @classmethod
    def _address(cls, value: str) -> str:
        return validate_address(value)

    @field_validator("resource")
    @classmethod
    def _resource_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("resource must be an http(s) URL")
        return value

    @property
    def amount(self) -> int:
        """Required amount as an integer in smallest units."""
        return int(self.max_amount_required)


class PaymentRequiredResponse(BaseModel):
    """Body of an HTTP 402 response."""
    x402_version: int = Field(..., alias="x402Version", gt=0)
    accepts: List[PaymentRequirements] = Field(..., min_length=1)
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class SolanaPaymentPayload(BaseModel):
    """Locator of the on-chain transfer backing a payment."""
    signature: str = Field(..., pattern=BASE58_PATTERN)
    from_address: str = Field(..., alias="from", pattern=BASE58_PATTERN)
    amount: str = Field(..., pattern=UINT_PATTERN)
    mint: str = Field(..., pattern=BASE58_PATTERN)
    timestamp: int = Field(..., gt=0, description="Creation time in epoch milliseconds.")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @field_validator("signature")
    @classmethod
    def _signature(cls, value: str) -> str:
        return validate_signature(value)

    @field_validator("from_address", "mint")
    @classmethod
    def _address(cls, value: str) -> str:
        return validate_address(value)


class PaymentPayload(BaseModel):
    """Decoded X-PAYMENT header."""
    x402_version: int = Field(..., alias="x402Version", gt=0)
    scheme: str
    network: str
    payload: SolanaPaymentPayload

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class VerificationResult(BaseModel):
    """
    Verdict of the verification engine.

    A valid verdict never carries a reason and always names the transaction;
    an invalid verdict always carries a reason.
    """
    is_valid: bool = Field(..., alias="isValid")
    invalid_reason: Optional[str] = Field(None, alias="invalidReason")
    tx_hash: Optional[str] = Field(None, alias="txHash")
    amount: Optional[str] = None
    sender: Optional[str] = Field(None, description="Owner of the source token account.")
    recipient: Optional[str] = Field(None, description="Owner of the destination token account.")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _check_consistency(self) -> "VerificationResult":
        if self.is_valid:
            if self.invalid_reason is not None:
                raise ValueError("a valid verdict cannot carry an invalid reason")
            if not self.tx_hash:
                raise ValueError("a valid verdict must carry the transaction hash")
        elif not self.invalid_reason:
            raise ValueError("an invalid verdict must carry a reason")
        return self

    @classmethod
    def invalid(cls, reason: str) -> "VerificationResult":
        return cls(is_valid=False, invalid_reason=reason)

    @classmethod
    def valid(cls, tx_hash: str, amount: int, sender: str, recipient: str) -> "VerificationResult":
        return cls(
            is_valid=True,
            tx_hash=tx_hash,
            amount=str(amount),
            sender=sender,
            recipient=recipient,
        )


class SettlementReceipt(BaseModel):
    """Decoded X-PAYMENT-RESPONSE header."""
    success: bool
    error: Optional[str] = None
    tx_hash: Optional[str] = Field(None, alias="txHash")
    network_id: Optional[str] = Field(None, alias="networkId")

    model_config = ConfigDict(populate_by_name=True)
