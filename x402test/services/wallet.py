# x402test/services/wallet.py
"""
Interface to wallet provisioning.

Key custody and funding live outside x402test. A WalletProvider hands back
a SigningIdentity that already holds tokens; the identity builds, signs and
broadcasts SPL transfers on request.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class TransferIntent:
    """What the client wants to pay: amount of an SPL token to an owner address."""
    recipient: str
    mint: str
    amount: int
    decimals: int = 6


class SigningIdentity(ABC):
    """A funded signer on the ledger."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Base58 public key of the signer."""

    @abstractmethod
    async def sign(self, intent: TransferIntent) -> str:
        """Build, sign and broadcast the transfer; return the confirmed signature."""

    @abstractmethod
    async def holding_balance(self, mint: str) -> int:
        """Token balance of the signer for a mint, in smallest units."""


class WalletProvider(ABC):
    """Source of signing identities."""

    @abstractmethod
    async def get_signing_identity(self) -> SigningIdentity:
        """Return a funded identity ready to pay."""

    async def close(self) -> None:
        """Dispose of any provisioned wallets."""
