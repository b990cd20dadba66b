"""Plain data carriers returned by the ledger reader."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class RawInstruction:
    """
    One top-level instruction as it appeared in a transaction.

    Attributes:
        program_id: Base58 address of the program the instruction targets.
        data: Raw instruction bytes (base58-decoded from the RPC payload).
        accounts: Ordered base58 account addresses passed to the program.
    """

    program_id: str
    data: bytes
    accounts: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class Transaction:
    """
    A confirmed transaction fetched by signature.

    Attributes:
        signature: Transaction signature (base58).
        slot: Slot the transaction landed in.
        block_time: Unix seconds, or None when the node has no block time.
        failed: True when the transaction executed with an error.
        instructions: Top-level instructions in program order.
    """

    signature: str
    slot: int
    block_time: int | None
    failed: bool = False
    instructions: tuple[RawInstruction, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class SignatureInfo:
    """Entry returned when listing recent signatures for an address."""

    signature: str
    slot: int
    failed: bool = False
    block_time: int | None = None


@dataclass(slots=True, frozen=True)
class SignatureNotice:
    """Push notification that a signature touching the program landed."""

    signature: str
    slot: int
