"""On-chain account layouts for the SolPlay program.

Accounts are Anchor-serialized: an 8-byte discriminator
(``sha256("account:<Name>")[:8]``) followed by Borsh-encoded fields in
declaration order, little-endian. Public keys are rendered as base58 strings
so they compare directly against addresses seen in transactions.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import ClassVar

import base58

from solplay_sync.ledger.errors import AccountDecodeError

DISCRIMINATOR_SIZE = 8


def account_discriminator(name: str) -> bytes:
    """Anchor account discriminator for the account type ``name``."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


class _Cursor:
    """Sequential little-endian reader over account bytes."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    def _unpack(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self.offset + size > len(self.data):
            raise AccountDecodeError(
                f"account data truncated at offset {self.offset} (need {size} bytes)"
            )
        (value,) = struct.unpack_from(fmt, self.data, self.offset)
        self.offset += size
        return value

    def u8(self) -> int:
        return self._unpack("<B")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def i64(self) -> int:
        return self._unpack("<q")

    def boolean(self) -> bool:
        return self.u8() != 0

    def pubkey(self) -> str:
        end = self.offset + 32
        if end > len(self.data):
            raise AccountDecodeError(f"account data truncated reading pubkey at {self.offset}")
        key = base58.b58encode(self.data[self.offset : end]).decode()
        self.offset = end
        return key

    def string(self) -> str:
        length = self.u32()
        end = self.offset + length
        if end > len(self.data):
            raise AccountDecodeError(f"string of length {length} overruns account data")
        raw = self.data[self.offset : end]
        self.offset = end
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AccountDecodeError("invalid utf-8 in string field") from exc

    def option_u32(self) -> int | None:
        tag = self.u8()
        if tag == 0:
            return None
        if tag != 1:
            raise AccountDecodeError(f"invalid Option tag {tag}")
        return self.u32()


def _open(data: bytes, name: str) -> _Cursor:
    expected = account_discriminator(name)
    if data[:DISCRIMINATOR_SIZE] != expected:
        raise AccountDecodeError(f"account is not a {name} (discriminator mismatch)")
    return _Cursor(data, DISCRIMINATOR_SIZE)


@dataclass(slots=True, frozen=True)
class SessionAccount:
    """Decoded ``ViewerSession`` account (viewer delegation state)."""

    ACCOUNT_NAME: ClassVar[str] = "ViewerSession"

    viewer: str
    video: str
    max_approved_chunks: int
    chunks_consumed: int
    total_spent: int
    approved_price_per_chunk: int
    last_paid_chunk_index: int | None
    session_start: int
    last_activity: int
    bump: int

    @property
    def chunks_remaining(self) -> int:
        return max(self.max_approved_chunks - self.chunks_consumed, 0)

    @classmethod
    def from_bytes(cls, data: bytes) -> SessionAccount:
        c = _open(data, cls.ACCOUNT_NAME)
        return cls(
            viewer=c.pubkey(),
            video=c.pubkey(),
            max_approved_chunks=c.u32(),
            chunks_consumed=c.u32(),
            total_spent=c.u64(),
            approved_price_per_chunk=c.u64(),
            last_paid_chunk_index=c.option_u32(),
            session_start=c.i64(),
            last_activity=c.i64(),
            bump=c.u8(),
        )


@dataclass(slots=True, frozen=True)
class VideoAccount:
    """Decoded ``Video`` account (content metadata and pricing)."""

    ACCOUNT_NAME: ClassVar[str] = "Video"

    creator: str
    video_id: str
    ipfs_hash: str
    total_chunks: int
    price_per_chunk: int
    title: str
    description: str
    is_active: bool
    total_sessions: int
    total_chunks_served: int
    created_at: int
    bump: int

    @classmethod
    def from_bytes(cls, data: bytes) -> VideoAccount:
        c = _open(data, cls.ACCOUNT_NAME)
        return cls(
            creator=c.pubkey(),
            video_id=c.string(),
            ipfs_hash=c.string(),
            total_chunks=c.u32(),
            price_per_chunk=c.u64(),
            title=c.string(),
            description=c.string(),
            is_active=c.boolean(),
            total_sessions=c.u64(),
            total_chunks_served=c.u64(),
            created_at=c.i64(),
            bump=c.u8(),
        )
