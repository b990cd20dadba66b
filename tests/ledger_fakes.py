"""
In-memory ledger used across the test suite.

``FakeLedgerReader`` implements the same coroutine surface as
``LedgerReader`` but answers from dicts the test fills in, so ingestion and
settlement can be exercised without a network. The encoders build real
Anchor account bytes so the account decoders are exercised too.
"""

from __future__ import annotations

import asyncio
import struct

import base58

from solplay_sync.ledger.accounts import SessionAccount, VideoAccount, account_discriminator
from solplay_sync.ledger.errors import LedgerUnavailable
from solplay_sync.ledger.types import RawInstruction, SignatureInfo, SignatureNotice, Transaction

PROGRAM_ID = "8esALmEtCkKPCkG3GHuSeXUhuwfwrmW3G8vep8GgpHQE"
OTHER_PROGRAM = "11111111111111111111111111111111"


def pubkey(seed: int) -> str:
    """Deterministic base58 address for a one-byte seed."""
    return base58.b58encode(bytes([seed]) * 32).decode()


VIEWER = pubkey(1)
CREATOR = pubkey(2)
SESSION = pubkey(3)
VIDEO = pubkey(4)
PAYER = pubkey(5)


# =============================================================================
# ACCOUNT ENCODERS
# =============================================================================


def _string(value: str) -> bytes:
    raw = value.encode()
    return struct.pack("<I", len(raw)) + raw


def encode_session_account(
    *,
    viewer: str = VIEWER,
    video: str = VIDEO,
    max_approved_chunks: int = 100,
    chunks_consumed: int = 0,
    total_spent: int = 0,
    approved_price_per_chunk: int = 1000,
    last_paid_chunk_index: int | None = None,
    session_start: int = 1_700_000_000,
    last_activity: int = 1_700_000_000,
    bump: int = 254,
) -> bytes:
    option = b"\x00" if last_paid_chunk_index is None else b"\x01" + struct.pack("<I", last_paid_chunk_index)
    return (
        account_discriminator("ViewerSession")
        + base58.b58decode(viewer)
        + base58.b58decode(video)
        + struct.pack("<IIQQ", max_approved_chunks, chunks_consumed, total_spent, approved_price_per_chunk)
        + option
        + struct.pack("<qqB", session_start, last_activity, bump)
    )


def encode_video_account(
    *,
    creator: str = CREATOR,
    video_id: str = "vid-1",
    ipfs_hash: str = "QmHash",
    total_chunks: int = 300,
    price_per_chunk: int = 1000,
    title: str = "Test Video",
    description: str = "",
    is_active: bool = True,
    total_sessions: int = 0,
    total_chunks_served: int = 0,
    created_at: int = 1_700_000_000,
    bump: int = 253,
) -> bytes:
    return (
        account_discriminator("Video")
        + base58.b58decode(creator)
        + _string(video_id)
        + _string(ipfs_hash)
        + struct.pack("<IQ", total_chunks, price_per_chunk)
        + _string(title)
        + _string(description)
        + struct.pack("<?QQqB", is_active, total_sessions, total_chunks_served, created_at, bump)
    )


def session_account(**fields) -> SessionAccount:
    return SessionAccount.from_bytes(encode_session_account(**fields))


def video_account(**fields) -> VideoAccount:
    return VideoAccount.from_bytes(encode_video_account(**fields))


# =============================================================================
# INSTRUCTIONS AND TRANSACTIONS
# =============================================================================

# Account lists long enough for every operation's positional layout.
_ACCOUNT_LISTS = {
    0: [pubkey(40), PAYER, CREATOR],
    1: [VIDEO, pubkey(41), pubkey(42), CREATOR],
    2: [VIDEO, pubkey(41), CREATOR],
    3: [SESSION, VIDEO] + [pubkey(50 + i) for i in range(5)] + [VIEWER],
    4: [SESSION, VIDEO] + [pubkey(60 + i) for i in range(5)] + [VIEWER],
    5: [SESSION, VIDEO] + [pubkey(70 + i) for i in range(5)] + [VIEWER],
    6: [SESSION, VIDEO, pubkey(80), pubkey(81), VIEWER],
    7: [SESSION, VIDEO, VIEWER],
}


def instruction(opcode: int, accounts: list[str] | None = None, program_id: str = PROGRAM_ID) -> RawInstruction:
    if accounts is None:
        accounts = _ACCOUNT_LISTS.get(opcode, [])
    return RawInstruction(program_id=program_id, data=bytes([opcode]) + b"\x00" * 8, accounts=tuple(accounts))


def transaction(
    signature: str,
    slot: int,
    *instructions: RawInstruction,
    failed: bool = False,
    block_time: int | None = 1_700_000_100,
) -> Transaction:
    return Transaction(
        signature=signature,
        slot=slot,
        block_time=block_time,
        failed=failed,
        instructions=tuple(instructions),
    )


# =============================================================================
# FAKE READER
# =============================================================================


class FakeLedgerReader:
    """
    Dict-backed stand-in for ``LedgerReader``.

    Attributes:
        transactions: signature -> Transaction
        accounts: address -> decoded account object
        signatures: listing returned by ``list_recent_signatures`` (newest first)
        unavailable: signatures whose fetch raises ``LedgerUnavailable``
        notices: pushed through ``subscribe``
    """

    def __init__(self) -> None:
        self.transactions: dict[str, Transaction] = {}
        self.accounts: dict[str, object] = {}
        self.signatures: list[SignatureInfo] = []
        self.unavailable: set[str] = set()
        self.listing_unavailable = False
        self.subscribe_error: Exception | None = None
        self.notices: asyncio.Queue[SignatureNotice] = asyncio.Queue()
        self.fetches: list[str] = []
        self.closed = False

    def add_transaction(self, tx: Transaction, *, listed: bool = True) -> None:
        self.transactions[tx.signature] = tx
        if listed:
            self.signatures.insert(0, SignatureInfo(tx.signature, tx.slot, tx.failed, tx.block_time))

    def set_session(self, address: str = SESSION, **fields) -> None:
        """Replace the ledger's session account with one built from ``fields``."""
        self.accounts[address] = session_account(**fields)

    async def get_transaction(self, signature: str) -> Transaction | None:
        self.fetches.append(signature)
        if signature in self.unavailable:
            raise LedgerUnavailable(f"rpc timeout fetching {signature}")
        return self.transactions.get(signature)

    async def get_account(self, address: str, schema: type):
        account = self.accounts.get(address)
        if account is None or not isinstance(account, schema):
            return None
        return account

    async def list_recent_signatures(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        if self.listing_unavailable:
            raise LedgerUnavailable("getSignaturesForAddress failed")
        return self.signatures[:limit]

    async def subscribe(self, program_id: str, on_subscribed=None):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        if on_subscribed is not None:
            on_subscribed()
        while True:
            yield await self.notices.get()

    async def close(self) -> None:
        self.closed = True
