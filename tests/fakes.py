# tests/fakes.py
"""
In-memory ledger and wallet used by the test suite.

FakeLedger stores transactions built from real SPL instruction bytes, so the
verification engine decodes them exactly as it would decode a node's answer.
"""
import asyncio
import hashlib
from typing import Dict, Optional

import base58

from x402test.services.solana_rpc import LedgerClient, LedgerTransaction, TokenAccountInfo
from x402test.services.wallet import SigningIdentity, TransferIntent, WalletProvider
from x402test.x402.instructions import (
    TOKEN_PROGRAM_ID,
    CompiledInstruction,
    TokenInstructionKind,
    encode_transfer_data,
)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


def make_address(seed: str) -> str:
    """Deterministic 32-byte base58 address."""
    return base58.b58encode(hashlib.sha256(seed.encode()).digest()).decode()


def make_signature(seed: str) -> str:
    """Deterministic 64-byte base58 transaction signature."""
    return base58.b58encode(hashlib.sha512(seed.encode()).digest()).decode()


RECIPIENT = make_address("recipient")
PAYER = make_address("payer")
USDC_MINT = make_address("usdc-mint")
OTHER_MINT = make_address("other-mint")


class FakeLedger(LedgerClient):
    """Ledger holding hand-built transactions and token accounts."""

    def __init__(self):
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.accounts: Dict[str, TokenAccountInfo] = {}
        self.transaction_lookups = 0
        self.broadcasts = []
        self.error: Optional[Exception] = None
        self._counter = 0

    def token_account_for(self, owner: str, mint: str) -> str:
        return make_address(f"token-account:{owner}:{mint}")

    def next_signature(self) -> str:
        self._counter += 1
        return make_signature(f"tx-{self._counter}")

    def add_transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        mint: str = USDC_MINT,
        kind: TokenInstructionKind = TokenInstructionKind.TRANSFER_CHECKED,
        signature: Optional[str] = None,
        success: bool = True,
        error: Optional[dict] = None,
        register_accounts: bool = True,
    ) -> str:
        """Record a confirmed token transfer and return its signature."""
        signature = signature or self.next_signature()
        source = self.token_account_for(sender, mint)
        destination = self.token_account_for(recipient, mint)

        account_keys = [sender, source, mint, destination, TOKEN_PROGRAM_ID]
        if kind is TokenInstructionKind.TRANSFER_CHECKED:
            accounts = [1, 2, 3, 0]
        else:
            accounts = [1, 3, 0]

        self.transactions[signature] = LedgerTransaction(
            signature=signature,
            instructions=[
                CompiledInstruction(
                    program_id_index=4,
                    accounts=accounts,
                    data=encode_transfer_data(kind, amount),
                )
            ],
            account_keys=account_keys,
            success=success,
            error=error if not success else None,
        )
        if register_accounts:
            self.accounts[source] = TokenAccountInfo(owner=sender, mint=mint)
            self.accounts[destination] = TokenAccountInfo(owner=recipient, mint=mint)
        return signature

    def add_transaction(self, transaction: LedgerTransaction) -> None:
        self.transactions[transaction.signature] = transaction

    async def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        self.transaction_lookups += 1
        # Yield so concurrent verifications interleave
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.transactions.get(signature)

    async def get_token_account(self, address: str) -> Optional[TokenAccountInfo]:
        return self.accounts.get(address)

    async def broadcast_transfer(self, signed_tx_base64: str) -> str:
        self.broadcasts.append(signed_tx_base64)
        return self.next_signature()


class FakeIdentity(SigningIdentity):
    """Funded signer that settles transfers straight into a FakeLedger."""

    def __init__(self, ledger: FakeLedger, address: str = PAYER, balance: int = 1_000_000_000):
        self.ledger = ledger
        self._address = address
        self.balance = balance
        self.sign_calls = 0
        self.sign_error: Optional[Exception] = None

    @property
    def address(self) -> str:
        return self._address

    async def sign(self, intent: TransferIntent) -> str:
        self.sign_calls += 1
        if self.sign_error is not None:
            raise self.sign_error
        self.balance -= intent.amount
        return self.ledger.add_transfer(
            sender=self._address,
            recipient=intent.recipient,
            amount=intent.amount,
            mint=intent.mint,
        )

    async def holding_balance(self, mint: str) -> int:
        return self.balance


class FakeWalletProvider(WalletProvider):
    """Hands out one FakeIdentity and counts the requests for it."""

    def __init__(self, identity: FakeIdentity):
        self.identity = identity
        self.calls = 0

    async def get_signing_identity(self) -> SigningIdentity:
        self.calls += 1
        return self.identity
