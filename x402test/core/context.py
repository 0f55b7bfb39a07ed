# x402test/core/context.py
"""
Explicit runtime context shared by the server handler and the client driver.

The context owns the ledger connection, the replay ledger, the HTTP client
used by the client driver, and the wallet provider. It has an explicit
lifecycle: open() before use, close() afterwards (or use it as an async
context manager). Collaborators passed in by the caller are used as-is and
are not closed by the context.
"""
import logging
from typing import Optional

import httpx

from x402test.core.config import settings
from x402test.core.errors import PaymentConstructionError, X402Error
from x402test.services.solana_rpc import LedgerClient, SolanaClient
from x402test.services.wallet import WalletProvider
from x402test.x402.replay import ReplayLedger
from x402test.x402.verify import PaymentVerifier

logger = logging.getLogger(__name__)


class X402Context:
    """Ledger connection, replay ledger, wallet provider and HTTP client."""

    def __init__(
        self,
        ledger: Optional[LedgerClient] = None,
        wallet_provider: Optional[WalletProvider] = None,
        replay_ledger: Optional[ReplayLedger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._ledger = ledger
        self._wallet_provider = wallet_provider
        self._replay_ledger = replay_ledger
        self._http_client = http_client
        self._verifier: Optional[PaymentVerifier] = None

        self._owns_ledger = ledger is None
        self._owns_http_client = http_client is None
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def _require_open(self) -> None:
        if not self._is_open:
            raise X402Error("X402Context is not open; call open() or use 'async with'")

    @property
    def ledger(self) -> LedgerClient:
        self._require_open()
        return self._ledger

    @property
    def replay_ledger(self) -> ReplayLedger:
        self._require_open()
        return self._replay_ledger

    @property
    def verifier(self) -> PaymentVerifier:
        self._require_open()
        return self._verifier

    @property
    def http_client(self) -> httpx.AsyncClient:
        self._require_open()
        return self._http_client

    @property
    def wallet_provider(self) -> WalletProvider:
        if self._wallet_provider is None:
            raise PaymentConstructionError("No wallet provider configured")
        return self._wallet_provider

    async def open(self) -> "X402Context":
        """Create missing collaborators and load the replay ledger."""
        if self._is_open:
            return self

        if self._ledger is None:
            self._ledger = SolanaClient()
        if self._replay_ledger is None:
            self._replay_ledger = ReplayLedger()
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.X402_HTTP_TIMEOUT_SECONDS)

        await self._replay_ledger.load()
        self._verifier = PaymentVerifier(self._ledger, self._replay_ledger)
        self._is_open = True
        logger.debug("x402 context opened")
        return self

    async def close(self) -> None:
        """Close the resources this context created."""
        if not self._is_open:
            return

        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._owns_ledger and self._ledger is not None:
            await self._ledger.close()
            self._ledger = None

        self._verifier = None
        self._is_open = False
        logger.debug("x402 context closed")

    async def __aenter__(self) -> "X402Context":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
