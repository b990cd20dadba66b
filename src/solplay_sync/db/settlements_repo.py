"""Settlement records and settlement history queries.

Settlements are append-only. The transaction signature is unique, and a
second insert for the same signature is reported as "already recorded"
(``None``) rather than an error.
"""

from __future__ import annotations

from typing import Any

from solplay_sync.db.connection import connection_scope
from solplay_sync.db.errors import SessionCountersChanged, raise_read_error, raise_write_error
from solplay_sync.db.sessions_repo import apply_ledger_counters
from solplay_sync.db.types import SettlementRecord

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def record_settlement(
    *,
    session_id: int,
    video_id: int,
    chunk_count: int,
    total_payment: int,
    platform_fee: int,
    creator_amount: int,
    transaction_signature: str,
    block_time: int | None,
    slot: int | None,
    viewer_pubkey: str,
    creator_pubkey: str | None,
    chunks_consumed_before: int,
    chunks_consumed_after: int,
    chunks_remaining: int,
    settlement_timestamp: str,
    total_spent: int,
    last_paid_chunk_index: int | None,
    last_activity: int | None,
    max_approved_chunks: int | None = None,
) -> int | None:
    """Insert a settlement and advance the session counters atomically.

    ``chunk_count`` was computed against ``chunks_consumed_before``; the
    session row is only advanced if it still holds that value.

    Returns:
        The new row id, or ``None`` when ``transaction_signature`` was
        already recorded (nothing is written in that case).

    Raises:
        SessionCountersChanged: The session moved since it was read. The
            insert is rolled back.
    """
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO settlements (
                    session_id,
                    video_id,
                    chunk_count,
                    total_payment,
                    platform_fee,
                    creator_amount,
                    transaction_signature,
                    block_time,
                    slot,
                    viewer_pubkey,
                    creator_pubkey,
                    chunks_consumed_after,
                    chunks_remaining,
                    settlement_timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (transaction_signature) DO NOTHING
                """,
                (
                    session_id,
                    video_id,
                    chunk_count,
                    total_payment,
                    platform_fee,
                    creator_amount,
                    transaction_signature,
                    block_time,
                    slot,
                    viewer_pubkey,
                    creator_pubkey,
                    chunks_consumed_after,
                    chunks_remaining,
                    settlement_timestamp,
                ),
            )
            if cursor.rowcount == 0:
                return None
            settlement_id = int(cursor.lastrowid)
            advanced = apply_ledger_counters(
                cursor,
                session_id,
                chunks_consumed=chunks_consumed_after,
                total_spent=total_spent,
                last_paid_chunk_index=last_paid_chunk_index,
                last_activity=last_activity,
                max_approved_chunks=max_approved_chunks,
                expected_chunks_consumed=chunks_consumed_before,
            )
            if not advanced:
                raise SessionCountersChanged(session_id, chunks_consumed_before)
            return settlement_id
    except Exception as exc:
        raise_write_error(
            "settlements.record_settlement",
            exc,
            details=f"signature={transaction_signature!r}",
        )


def get_settlement_by_signature(signature: str) -> SettlementRecord | None:
    try:
        with connection_scope() as conn:
            row = conn.execute(
                "SELECT * FROM settlements WHERE transaction_signature = ?", (signature,)
            ).fetchone()
        return SettlementRecord.from_row(row) if row else None
    except Exception as exc:
        raise_read_error(
            "settlements.get_settlement_by_signature", exc, details=f"signature={signature!r}"
        )


def _clamp_page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def _list_where(column: str, value: Any, limit: int, offset: int) -> list[SettlementRecord]:
    # ``column`` always comes from the fixed call sites below, never user input.
    limit, offset = _clamp_page(limit, offset)
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM settlements
                WHERE {column} = ?
                ORDER BY settlement_timestamp DESC, id DESC
                LIMIT ? OFFSET ?
                """,  # nosec B608
                (value, limit, offset),
            ).fetchall()
        return [SettlementRecord.from_row(row) for row in rows]
    except Exception as exc:
        raise_read_error(f"settlements.list_by_{column}", exc, details=f"{column}={value!r}")


def list_settlements_for_viewer(
    viewer_pubkey: str, *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> list[SettlementRecord]:
    return _list_where("viewer_pubkey", viewer_pubkey, limit, offset)


def list_settlements_for_creator(
    creator_pubkey: str, *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> list[SettlementRecord]:
    return _list_where("creator_pubkey", creator_pubkey, limit, offset)


def list_settlements_for_video(
    video_id: int, *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> list[SettlementRecord]:
    return _list_where("video_id", video_id, limit, offset)


def list_settlements_for_session(
    session_id: int, *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> list[SettlementRecord]:
    return _list_where("session_id", session_id, limit, offset)


def get_creator_totals(creator_pubkey: str) -> dict[str, int]:
    """Lifetime earnings for a creator across all settlements."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS settlement_count,
                       COALESCE(SUM(creator_amount), 0) AS total_earnings,
                       COALESCE(SUM(chunk_count), 0) AS total_chunks
                FROM settlements
                WHERE creator_pubkey = ?
                """,
                (creator_pubkey,),
            ).fetchone()
        return dict(row)
    except Exception as exc:
        raise_read_error(
            "settlements.get_creator_totals", exc, details=f"creator={creator_pubkey!r}"
        )


def get_video_totals(video_id: int) -> dict[str, int]:
    """Revenue and chunk totals for one content item."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS settlement_count,
                       COALESCE(SUM(total_payment), 0) AS total_revenue,
                       COALESCE(SUM(platform_fee), 0) AS total_platform_fees,
                       COALESCE(SUM(creator_amount), 0) AS total_creator_earnings,
                       COALESCE(SUM(chunk_count), 0) AS total_chunks
                FROM settlements
                WHERE video_id = ?
                """,
                (video_id,),
            ).fetchone()
        return dict(row)
    except Exception as exc:
        raise_read_error("settlements.get_video_totals", exc, details=f"video_id={video_id}")


def get_viewer_totals(viewer_pubkey: str) -> dict[str, int]:
    try:
        with connection_scope() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS settlement_count,
                       COALESCE(SUM(total_payment), 0) AS total_spent,
                       COALESCE(SUM(chunk_count), 0) AS total_chunks
                FROM settlements
                WHERE viewer_pubkey = ?
                """,
                (viewer_pubkey,),
            ).fetchone()
        return dict(row)
    except Exception as exc:
        raise_read_error("settlements.get_viewer_totals", exc, details=f"viewer={viewer_pubkey!r}")
