"""Row dataclasses returned by the mirror-store repositories."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass


@dataclass(slots=True)
class Content:
    """
    Local content (video) record.

    Attributes:
        id: Local primary key; this is the ``content_id`` clients send.
        external_id: The on-chain ``video_id`` string.
        title: Display title.
        creator_pubkey: Creator wallet, once known.
        price_per_chunk: Current price in token base units.
        total_chunks: Number of HLS chunks.
        video_pda: Address of the on-chain Video account, once created.
        is_on_chain: True after a createVideo instruction was mirrored.
    """

    id: int
    external_id: str
    title: str
    creator_pubkey: str | None
    price_per_chunk: int
    total_chunks: int
    video_pda: str | None
    is_on_chain: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Content:
        return cls(
            id=row["id"],
            external_id=row["blockchain_video_id"],
            title=row["title"],
            creator_pubkey=row["creator_pubkey"],
            price_per_chunk=row["price_per_chunk"],
            total_chunks=row["total_chunks"],
            video_pda=row["video_pda"],
            is_on_chain=bool(row["is_on_chain"]),
        )


@dataclass(slots=True)
class MirroredSession:
    """Local mirror of an on-chain viewer session."""

    id: int
    video_id: int
    session_pda: str
    viewer_pubkey: str
    max_approved_chunks: int
    chunks_consumed: int
    total_spent: int
    approved_price_per_chunk: int
    last_paid_chunk_index: int | None
    session_start: int | None
    last_activity: int | None
    is_active: bool

    @property
    def chunks_remaining(self) -> int:
        return self.max_approved_chunks - self.chunks_consumed

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MirroredSession:
        return cls(
            id=row["id"],
            video_id=row["video_id"],
            session_pda=row["session_pda"],
            viewer_pubkey=row["viewer_pubkey"],
            max_approved_chunks=row["max_approved_chunks"],
            chunks_consumed=row["chunks_consumed"],
            total_spent=row["total_spent"],
            approved_price_per_chunk=row["approved_price_per_chunk"],
            last_paid_chunk_index=row["last_paid_chunk_index"],
            session_start=row["session_start"],
            last_activity=row["last_activity"],
            is_active=bool(row["is_active"]),
        )


@dataclass(slots=True)
class SettlementRecord:
    """
    One batch settlement.

    ``platform_fee + creator_amount == total_payment`` and
    ``total_payment == chunk_count * approved price`` hold for every row.
    """

    id: int
    session_id: int
    video_id: int
    chunk_count: int
    total_payment: int
    platform_fee: int
    creator_amount: int
    transaction_signature: str
    block_time: int | None
    slot: int | None
    viewer_pubkey: str
    creator_pubkey: str | None
    chunks_consumed_after: int
    chunks_remaining: int
    settlement_timestamp: str
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SettlementRecord:
        return cls(**{name: row[name] for name in cls.__slots__})  # type: ignore[arg-type]

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass(slots=True)
class ChunkPaymentRecord:
    """One per-chunk payment (legacy path)."""

    id: int
    session_id: int
    video_id: int
    chunk_index: int
    payment_sequence: int
    amount_paid: int
    platform_fee: int
    creator_amount: int
    transaction_signature: str
    viewer_pubkey: str
    creator_pubkey: str | None
    paid_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ChunkPaymentRecord:
        return cls(**{name: row[name] for name in cls.__slots__})  # type: ignore[arg-type]
