# x402test/x402/instructions.py
"""
Decoding of SPL Token transfer instructions.

Only two instruction layouts move tokens between accounts:

- Transfer (tag 3): accounts [source, destination, authority]
- TransferChecked (tag 12): accounts [source, mint, destination, authority],
  which also names the mint and carries the token decimals

Both encode the amount as an unsigned 64-bit little-endian integer at byte
offset 1 of the instruction data.
"""
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Sequence

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

_AMOUNT = struct.Struct("<Q")


class TokenInstructionKind(IntEnum):
    """SPL Token instruction tags that transfer tokens."""
    TRANSFER = 3
    TRANSFER_CHECKED = 12


@dataclass(frozen=True)
class CompiledInstruction:
    """An instruction as stored in a transaction message."""
    program_id_index: int
    accounts: List[int]
    data: bytes


@dataclass(frozen=True)
class TokenTransfer:
    """A decoded token transfer. Addresses are token accounts, not owners."""
    kind: TokenInstructionKind
    amount: int
    source: str
    destination: str
    mint: Optional[str] = None


def _decode_transfer(ix: CompiledInstruction, account_keys: Sequence[str]) -> Optional[TokenTransfer]:
    if len(ix.accounts) < 2 or len(ix.data) < 1 + _AMOUNT.size:
        return None
    (amount,) = _AMOUNT.unpack_from(ix.data, 1)
    return TokenTransfer(
        kind=TokenInstructionKind.TRANSFER,
        amount=amount,
        source=account_keys[ix.accounts[0]],
        destination=account_keys[ix.accounts[1]],
    )


def _decode_transfer_checked(ix: CompiledInstruction, account_keys: Sequence[str]) -> Optional[TokenTransfer]:
    if len(ix.accounts) < 3 or len(ix.data) < 1 + _AMOUNT.size:
        return None
    (amount,) = _AMOUNT.unpack_from(ix.data, 1)
    return TokenTransfer(
        kind=TokenInstructionKind.TRANSFER_CHECKED,
        amount=amount,
        source=account_keys[ix.accounts[0]],
        mint=account_keys[ix.accounts[1]],
        destination=account_keys[ix.accounts[2]],
    )


DECODERS: Dict[TokenInstructionKind, Callable[[CompiledInstruction, Sequence[str]], Optional[TokenTransfer]]] = {
    TokenInstructionKind.TRANSFER: _decode_transfer,
    TokenInstructionKind.TRANSFER_CHECKED: _decode_transfer_checked,
}


def find_token_transfer(
    instructions: Sequence[CompiledInstruction],
    account_keys: Sequence[str],
) -> Optional[TokenTransfer]:
    """
    Return the first token transfer in a transaction message.

    Instructions of other programs, other token instruction kinds, and
    malformed transfer instructions are skipped.
    """
    for ix in instructions:
        if ix.program_id_index >= len(account_keys):
            continue
        if account_keys[ix.program_id_index] != TOKEN_PROGRAM_ID or not ix.data:
            continue

        try:
            kind = TokenInstructionKind(ix.data[0])
        except ValueError:
            continue

        transfer = DECODERS[kind](ix, account_keys)
        if transfer is not None:
            return transfer

    return None


def encode_transfer_data(kind: TokenInstructionKind, amount: int, decimals: int = 6) -> bytes:
    """Build the instruction data for a transfer of the given kind."""
    data = bytes([kind]) + _AMOUNT.pack(amount)
    if kind is TokenInstructionKind.TRANSFER_CHECKED:
        data += bytes([decimals])
    return data
