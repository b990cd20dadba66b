"""Per-chunk payment records (legacy pay-per-chunk path)."""

from __future__ import annotations

from solplay_sync.db.connection import connection_scope
from solplay_sync.db.errors import SessionCountersChanged, raise_read_error, raise_write_error
from solplay_sync.db.sessions_repo import apply_ledger_counters
from solplay_sync.db.types import ChunkPaymentRecord


def record_chunk_payment(
    *,
    session_id: int,
    video_id: int,
    chunk_index: int,
    payment_sequence: int,
    amount_paid: int,
    platform_fee: int,
    creator_amount: int,
    transaction_signature: str,
    viewer_pubkey: str,
    creator_pubkey: str | None,
    chunks_consumed_before: int,
    chunks_consumed: int,
    total_spent: int,
    last_activity: int | None,
    max_approved_chunks: int | None = None,
) -> int | None:
    """Insert a chunk payment and copy the ledger counters onto the session.

    Both writes share one transaction. A second observation of the same
    (session, chunk index) inserts nothing and leaves the session alone.

    Returns:
        The new row id, or ``None`` if the chunk was already recorded.

    Raises:
        SessionCountersChanged: The session no longer holds
            ``chunks_consumed_before``. The insert is rolled back.
    """
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO chunk_payments (
                    session_id,
                    video_id,
                    chunk_index,
                    payment_sequence,
                    amount_paid,
                    platform_fee,
                    creator_amount,
                    transaction_signature,
                    viewer_pubkey,
                    creator_pubkey
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (session_id, chunk_index) DO NOTHING
                """,
                (
                    session_id,
                    video_id,
                    chunk_index,
                    payment_sequence,
                    amount_paid,
                    platform_fee,
                    creator_amount,
                    transaction_signature,
                    viewer_pubkey,
                    creator_pubkey,
                ),
            )
            if cursor.rowcount == 0:
                return None
            payment_id = int(cursor.lastrowid)
            advanced = apply_ledger_counters(
                cursor,
                session_id,
                chunks_consumed=chunks_consumed,
                total_spent=total_spent,
                last_paid_chunk_index=chunk_index,
                last_activity=last_activity,
                max_approved_chunks=max_approved_chunks,
                expected_chunks_consumed=chunks_consumed_before,
            )
            if not advanced:
                raise SessionCountersChanged(session_id, chunks_consumed_before)
            return payment_id
    except Exception as exc:
        raise_write_error(
            "payments.record_chunk_payment",
            exc,
            details=f"session_id={session_id} chunk_index={chunk_index}",
        )


def list_chunk_payments(session_id: int) -> list[ChunkPaymentRecord]:
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                "SELECT * FROM chunk_payments WHERE session_id = ? ORDER BY chunk_index",
                (session_id,),
            ).fetchall()
        return [ChunkPaymentRecord.from_row(row) for row in rows]
    except Exception as exc:
        raise_read_error("payments.list_chunk_payments", exc, details=f"session_id={session_id}")
