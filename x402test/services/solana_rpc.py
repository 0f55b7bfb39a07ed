# x402test/services/solana_rpc.py
"""
Read/broadcast access to the Solana ledger.

LedgerClient is the interface the verification engine and payment code
depend on. SolanaClient implements it with raw JSON-RPC 2.0 calls over an
httpx AsyncClient.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import base58
import httpx

from x402test.core.config import settings
from x402test.core.errors import TransportError, X402Error
from x402test.x402.instructions import CompiledInstruction

logger = logging.getLogger(__name__)


@dataclass
class LedgerTransaction:
    """The parts of a confirmed transaction that verification needs."""
    signature: str
    instructions: List[CompiledInstruction]
    account_keys: List[str]
    success: bool
    error: Optional[Any] = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class TokenAccountInfo:
    """Owner and mint of an SPL token account."""
    owner: str
    mint: str


class LedgerClient(ABC):
    """Interface to the ledger network."""

    @abstractmethod
    async def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        """Return the transaction, or None if the ledger does not know it."""

    @abstractmethod
    async def get_token_account(self, address: str) -> Optional[TokenAccountInfo]:
        """Return owner and mint of a token account, or None if it cannot be resolved."""

    @abstractmethod
    async def broadcast_transfer(self, signed_tx_base64: str) -> str:
        """Submit a signed transaction, wait for confirmation, return its signature."""

    async def close(self) -> None:
        """Release network resources."""


class SolanaRPCError(X402Error):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, message: str, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error_data = error_data or {}


class SolanaTransactionError(X402Error):
    """A broadcast transaction was rejected by the ledger."""

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


@dataclass
class SolanaConfig:
    """Solana connection configuration."""
    rpc_url: str
    commitment: str = "confirmed"
    timeout: float = 30.0
    confirm_timeout: float = 60.0
    poll_interval: float = 0.5
    extra_headers: Dict[str, str] = field(default_factory=dict)


def get_solana_config() -> SolanaConfig:
    """Build Solana config from application settings."""
    return SolanaConfig(
        rpc_url=str(settings.X402_RPC_URL),
        commitment=settings.X402_COMMITMENT,
        timeout=settings.X402_HTTP_TIMEOUT_SECONDS,
        confirm_timeout=settings.X402_CONFIRM_TIMEOUT_SECONDS,
    )


def parse_transaction(signature: str, result: Dict[str, Any]) -> LedgerTransaction:
    """
    Convert a getTransaction result (json encoding) into a LedgerTransaction.

    Addresses loaded from lookup tables (v0 transactions) are appended to the
    static account keys, writable first, matching the runtime's indexing.
    """
    message = result["transaction"]["message"]
    meta = result.get("meta") or {}

    account_keys = list(message.get("accountKeys", []))
    loaded = meta.get("loadedAddresses") or {}
    account_keys.extend(loaded.get("writable", []))
    account_keys.extend(loaded.get("readonly", []))

    instructions = [
        CompiledInstruction(
            program_id_index=ix["programIdIndex"],
            accounts=list(ix.get("accounts", [])),
            data=base58.b58decode(ix.get("data", "")),
        )
        for ix in message.get("instructions", [])
    ]

    error = meta.get("err")
    return LedgerTransaction(
        signature=signature,
        instructions=instructions,
        account_keys=account_keys,
        success=error is None,
        error=error,
        slot=result.get("slot"),
    )


class SolanaClient(LedgerClient):
    """
    Async Solana JSON-RPC client.

    Connectivity failures and timeouts are raised as TransportError so callers
    can tell them apart from ledger answers.
    """

    def __init__(
        self,
        config: Optional[SolanaConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or get_solana_config()
        self._client = http_client or httpx.AsyncClient(
            timeout=self.config.timeout, headers=self.config.extra_headers
        )
        self._request_id = 0

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make a JSON-RPC call to Solana."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self.config.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            logger.error(f"Solana RPC {method} timed out ({self.config.rpc_url}): {e}")
            raise TransportError(f"Solana RPC {method} timed out", e) from e
        except httpx.HTTPError as e:
            logger.error(f"Error calling Solana RPC {method} ({self.config.rpc_url}): {e}")
            raise TransportError(f"Solana RPC {method} failed: {e}", e) from e
        except json.JSONDecodeError as e:
            raise SolanaRPCError(f"Solana RPC {method} returned invalid JSON: {e}") from e

        if "error" in data:
            error = data["error"] or {}
            raise SolanaRPCError(error.get("message", "Unknown RPC error"), error)
        return data.get("result")

    async def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        result = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.config.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        return parse_transaction(signature, result)

    async def get_token_account(self, address: str) -> Optional[TokenAccountInfo]:
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": self.config.commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None

        data = value.get("data")
        if not isinstance(data, dict):
            # Not a parsed token account (raw base64 data)
            return None
        info = (data.get("parsed") or {}).get("info") or {}
        if not info.get("owner") or not info.get("mint"):
            return None
        return TokenAccountInfo(owner=info["owner"], mint=info["mint"])

    async def send_raw_transaction(self, signed_tx_base64: str) -> str:
        """Send a signed transaction. Returns transaction signature."""
        result = await self._rpc(
            "sendTransaction",
            [signed_tx_base64, {"encoding": "base64", "skipPreflight": False}],
        )
        logger.info(f"Solana tx sent: {result}")
        return result

    async def confirm_transaction(self, signature: str) -> bool:
        """Check whether a transaction reached the configured commitment level."""
        result = await self._rpc("getSignatureStatuses", [[signature]])
        statuses = (result or {}).get("value", [])
        if not statuses or statuses[0] is None:
            return False

        status = statuses[0]
        if status.get("err"):
            raise SolanaTransactionError(f"Transaction failed: {json.dumps(status['err'])}", signature)

        confirmation = status.get("confirmationStatus", "")
        if self.config.commitment == "finalized":
            return confirmation == "finalized"
        return confirmation in ("confirmed", "finalized")

    async def _wait_for_confirmation(self, signature: str) -> None:
        while not await self.confirm_transaction(signature):
            await asyncio.sleep(self.config.poll_interval)

    async def broadcast_transfer(self, signed_tx_base64: str) -> str:
        signature = await self.send_raw_transaction(signed_tx_base64)

        try:
            await asyncio.wait_for(
                self._wait_for_confirmation(signature), timeout=self.config.confirm_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Transaction {signature} not confirmed within {self.config.confirm_timeout}s", e
            ) from e

        logger.info(f"Solana tx confirmed: {signature}")
        return signature

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
