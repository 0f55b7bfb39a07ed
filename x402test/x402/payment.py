# x402test/x402/payment.py
"""
Client-side payment construction.

Turns the payment requirements of a 402 challenge into a confirmed SPL
transfer and the X-PAYMENT header that proves it.
"""
import asyncio
import logging
import time
from typing import Optional

from x402test.api.models.x402 import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
    SolanaPaymentPayload,
)
from x402test.core.config import settings
from x402test.core.errors import PaymentConstructionError, TransportError
from x402test.services.wallet import SigningIdentity, TransferIntent
from x402test.x402.parser import encode_payment_header

logger = logging.getLogger(__name__)


async def create_payment(
    identity: SigningIdentity,
    requirements: PaymentRequirements,
    decimals: Optional[int] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Pay the amount required by a challenge.

    Args:
        identity: Funded signer that will pay
        requirements: The payment option selected from the challenge
        decimals: Token decimals. Uses X402_TOKEN_DECIMALS if not provided.
        timeout: Seconds to wait for signing and confirmation.
            Uses X402_CONFIRM_TIMEOUT_SECONDS if not provided.

    Returns:
        The confirmed transaction signature

    Raises:
        PaymentConstructionError: If the balance is too low or signing fails
        TransportError: If confirmation does not happen within the timeout
    """
    required_amount = requirements.amount
    wait_seconds = timeout if timeout is not None else settings.X402_CONFIRM_TIMEOUT_SECONDS

    try:
        balance = await identity.holding_balance(requirements.asset)
    except TransportError:
        raise
    except Exception as e:
        raise PaymentConstructionError("Could not read token balance", e) from e

    if balance < required_amount:
        raise PaymentConstructionError(
            f"Insufficient balance: have {balance}, need {required_amount}"
        )

    intent = TransferIntent(
        recipient=requirements.pay_to,
        mint=requirements.asset,
        amount=required_amount,
        decimals=decimals if decimals is not None else settings.X402_TOKEN_DECIMALS,
    )

    try:
        signature = await asyncio.wait_for(identity.sign(intent), timeout=wait_seconds)
    except asyncio.TimeoutError as e:
        raise TransportError(f"Payment not confirmed within {wait_seconds}s", e) from e
    except (TransportError, PaymentConstructionError):
        raise
    except Exception as e:
        raise PaymentConstructionError(f"Failed to send payment: {e}", e) from e

    logger.info(f"Payment sent: {required_amount} of {requirements.asset} to {requirements.pay_to} ({signature})")
    return signature


def create_payment_payload(
    signature: str,
    requirements: PaymentRequirements,
    sender: str,
) -> PaymentPayload:
    """Build the proof of payment for a confirmed transfer."""
    return PaymentPayload(
        x402_version=X402_VERSION,
        scheme=requirements.scheme,
        network=requirements.network,
        payload=SolanaPaymentPayload(
            signature=signature,
            from_address=sender,
            amount=requirements.max_amount_required,
            mint=requirements.asset,
            timestamp=int(time.time() * 1000),
        ),
    )


def create_payment_header(
    signature: str,
    requirements: PaymentRequirements,
    sender: str,
) -> str:
    """Build and encode the X-PAYMENT header for a confirmed transfer."""
    return encode_payment_header(create_payment_payload(signature, requirements, sender))
