# x402test/x402/verify.py
"""
On-chain verification of x402 payments.

Given the signature from an X-PAYMENT header and the terms of the challenge,
the verifier looks the transaction up on the ledger and decides whether it
really paid the expected recipient at least the expected amount of the
expected token. Nothing in the X-PAYMENT payload besides the signature is
trusted.

Flow:
1. Reject signatures already recorded in the replay ledger (no network call)
2. Fetch the transaction; reject if missing or failed
3. Decode the first SPL token transfer instruction
4. Resolve owner and mint of the source and destination token accounts
5. Compare recipient, amount (>=) and mint. The mint comes from the
   destination account, so plain Transfer instructions are checked too
6. Record the signature as used
"""
import json
import logging
from typing import Optional

from x402test.api.models.x402 import VerificationResult
from x402test.core.errors import ReplayLedgerError, TransportError
from x402test.services.solana_rpc import LedgerClient
from x402test.x402.instructions import find_token_transfer
from x402test.x402.replay import ReplayLedger

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """Stateless verification engine over a ledger client and a replay ledger."""

    def __init__(self, ledger: LedgerClient, replay_ledger: Optional[ReplayLedger] = None):
        self.ledger = ledger
        self.replay_ledger = replay_ledger

    async def verify(
        self,
        signature: str,
        expected_recipient: str,
        expected_min_amount: int,
        expected_asset: str,
        replay_check: bool = True,
        endpoint: str = "unknown",
    ) -> VerificationResult:
        """
        Verify that a transaction satisfies a payment challenge.

        Args:
            signature: Transaction signature from the payment proof
            expected_recipient: Owner address that must receive the tokens
            expected_min_amount: Minimum amount in smallest units
            expected_asset: Mint address of the expected token
            replay_check: Reject and record reused signatures
            endpoint: Resource path, stored with the replay record

        Returns:
            The verdict. Invalid payments are reported through the verdict,
            never raised.

        Raises:
            TransportError: If the ledger network is unreachable or times out
            ReplayLedgerError: If a valid payment cannot be persisted
        """
        if not replay_check:
            return await self._verify_on_chain(
                signature, expected_recipient, expected_min_amount, expected_asset
            )

        if self.replay_ledger is None:
            raise ReplayLedgerError("Replay check requested but no replay ledger is configured")

        async with self.replay_ledger.guard(signature):
            if self.replay_ledger.has(signature):
                logger.warning(f"Replay attempt with already processed signature {signature}")
                return VerificationResult.invalid(
                    f"Transaction already processed: {signature} was already used for payment"
                )

            result = await self._verify_on_chain(
                signature, expected_recipient, expected_min_amount, expected_asset
            )
            if result.is_valid:
                await self.replay_ledger.mark_used(signature, endpoint, result.amount)
            return result

    async def _verify_on_chain(
        self,
        signature: str,
        expected_recipient: str,
        expected_min_amount: int,
        expected_asset: str,
    ) -> VerificationResult:
        try:
            tx = await self.ledger.get_transaction(signature)
            if tx is None:
                return VerificationResult.invalid("Transaction not found")

            if not tx.success:
                return VerificationResult.invalid(f"Transaction failed: {json.dumps(tx.error)}")

            transfer = find_token_transfer(tx.instructions, tx.account_keys)
            if transfer is None:
                return VerificationResult.invalid("No token transfer instruction found in transaction")

            destination = await self.ledger.get_token_account(transfer.destination)
            if destination is None:
                return VerificationResult.invalid(
                    f"Destination token account owner not found: {transfer.destination}"
                )

            source = await self.ledger.get_token_account(transfer.source)
            if source is None:
                return VerificationResult.invalid(
                    f"Source token account owner not found: {transfer.source}"
                )

            source_owner = source.owner
            destination_owner = destination.owner

            if destination_owner != expected_recipient:
                return VerificationResult.invalid(
                    f"Wrong recipient: expected {expected_recipient}, got {destination_owner}"
                )

            if transfer.amount < expected_min_amount:
                return VerificationResult.invalid(
                    f"Insufficient amount: expected {expected_min_amount}, got {transfer.amount}"
                )

            for mint in (transfer.mint, destination.mint):
                if mint is not None and mint != expected_asset:
                    return VerificationResult.invalid(
                        f"Wrong token: expected {expected_asset}, got {mint}"
                    )

        except TransportError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error verifying {signature}: {e}")
            return VerificationResult.invalid(f"Verification error: {e}")

        logger.info(
            f"Payment verified: {signature} {transfer.amount} from {source_owner} to {destination_owner}"
        )
        return VerificationResult.valid(
            tx_hash=signature,
            amount=transfer.amount,
            sender=source_owner,
            recipient=destination_owner,
        )
