# x402test/x402/replay.py
"""
Replay protection for x402 payments.

The replay ledger is the durable set of transaction signatures that have
already paid for a request. A signature moves from "unseen" to "seen" at most
once and stays seen across restarts: every mark rewrites the JSON file
atomically (temp file + rename).

Concurrency: callers hold guard(signature) around check -> verify -> mark so
that two requests presenting the same signature cannot both observe it as
unseen. Locks are per signature, so unrelated payments never wait on each
other.
"""
import asyncio
import json
import logging
import os
import tempfile
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

from x402test.core.config import settings
from x402test.core.errors import ReplayLedgerError

logger = logging.getLogger(__name__)


@dataclass
class ReplayRecord:
    """A signature that has already been accepted as payment."""
    signature: str
    usedAt: int
    endpoint: str
    amount: str


class ReplayLedger:
    """
    Persisted set of used payment signatures.

    Thread model: one event loop. Per-signature asyncio locks serialize
    check-and-mark; a separate write lock serializes file rewrites.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the ledger.

        Args:
            path: JSON file holding the records. If None, uses X402_REPLAY_FILE.
        """
        self._path = Path(path if path is not None else settings.X402_REPLAY_FILE)
        self._records: Dict[str, ReplayRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._write_lock = asyncio.Lock()
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> None:
        """
        Load persisted records. Safe to call more than once.

        Raises:
            ReplayLedgerError: If the file exists but cannot be parsed
        """
        if self._loaded:
            return

        records = await asyncio.to_thread(self._read_file)
        for record in records:
            self._records[record.signature] = record

        self._loaded = True
        logger.debug(f"Loaded {len(self._records)} used signatures from {self._path}")

    def _read_file(self) -> List[ReplayRecord]:
        if not self._path.exists():
            return []

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return [
                ReplayRecord(
                    signature=str(item["signature"]),
                    usedAt=int(item["usedAt"]),
                    endpoint=str(item.get("endpoint", "unknown")),
                    amount=str(item.get("amount", "0")),
                )
                for item in data
            ]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading signatures from {self._path}: {e}")
            raise ReplayLedgerError(f"Cannot read replay ledger {self._path}: {e}") from e

    def _write_file(self, records: List[ReplayRecord]) -> None:
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([asdict(r) for r in records], f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def _save(self, pending: Optional[ReplayRecord] = None) -> None:
        async with self._write_lock:
            snapshot = list(self._records.values())
            if pending is not None and pending.signature not in self._records:
                snapshot.append(pending)
            try:
                await asyncio.to_thread(self._write_file, snapshot)
            except OSError as e:
                logger.error(f"Error saving signatures to {self._path}: {e}")
                raise ReplayLedgerError(f"Cannot write replay ledger {self._path}: {e}") from e

    @asynccontextmanager
    async def guard(self, signature: str) -> AsyncIterator[None]:
        """
        Hold the lock for one signature.

        Everything done inside the block is serialized against every other
        guard on the same signature.
        """
        lock = self._locks.get(signature)
        if lock is None:
            lock = self._locks[signature] = asyncio.Lock()
        self._lock_users[signature] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[signature] -= 1
            if self._lock_users[signature] == 0:
                del self._lock_users[signature]
                del self._locks[signature]

    def has(self, signature: str) -> bool:
        """Return True if the signature was already used."""
        return signature in self._records

    def get(self, signature: str) -> Optional[ReplayRecord]:
        """Return the record of a used signature, if any."""
        return self._records.get(signature)

    async def mark_used(self, signature: str, endpoint: str = "unknown", amount: Union[str, int] = "0") -> None:
        """
        Record a signature as used and persist the ledger.

        A signature that is already present keeps its original record. The
        signature only counts as used once the file write has succeeded.

        Raises:
            ReplayLedgerError: If the ledger file cannot be written
        """
        if signature in self._records:
            logger.debug(f"Signature already marked used: {signature}")
            return

        record = ReplayRecord(
            signature=signature,
            usedAt=int(time.time() * 1000),
            endpoint=endpoint,
            amount=str(amount),
        )
        await self._save(record)
        self._records.setdefault(signature, record)
        logger.debug(f"Marked signature used: {signature} for {endpoint} with amount {amount}")

    async def check_and_mark(self, signature: str, endpoint: str = "unknown", amount: Union[str, int] = "0") -> bool:
        """
        Atomically insert a signature if absent.

        Returns:
            True if this call recorded the signature, False if it was already used
        """
        async with self.guard(signature):
            if self.has(signature):
                return False
            await self.mark_used(signature, endpoint, amount)
            return True

    async def reset(self) -> None:
        """Forget every signature, in memory and on disk."""
        async with self._write_lock:
            self._records.clear()
            if self._path.exists():
                await asyncio.to_thread(self._path.unlink)
        logger.info("All signatures cleared")

    def stats(self) -> Dict[str, object]:
        """Summary of the ledger contents."""
        return {
            "total": len(self._records),
            "signatures": [asdict(r) for r in self._records.values()],
            "path": str(self._path),
        }
