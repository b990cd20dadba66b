"""Mirrored viewer-session persistence.

Counters on a mirrored session are only ever copied from a freshly fetched
ledger account. The update statement refuses to move ``chunks_consumed``
backwards, so a stale read racing a fresh one cannot regress the mirror.
"""

from __future__ import annotations

import sqlite3

from solplay_sync.db.connection import connection_scope
from solplay_sync.db.errors import raise_read_error, raise_write_error
from solplay_sync.db.types import MirroredSession


def insert_session(
    *,
    video_id: int,
    session_pda: str,
    viewer_pubkey: str,
    max_approved_chunks: int,
    chunks_consumed: int,
    total_spent: int,
    approved_price_per_chunk: int,
    last_paid_chunk_index: int | None,
    session_start: int | None,
    last_activity: int | None,
) -> int | None:
    """Insert a mirrored session.

    Returns:
        The new row id, or ``None`` when a row for ``session_pda`` already
        exists (the session was mirrored by an earlier delivery).
    """
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO viewer_sessions (
                    video_id,
                    session_pda,
                    viewer_pubkey,
                    max_approved_chunks,
                    chunks_consumed,
                    total_spent,
                    approved_price_per_chunk,
                    last_paid_chunk_index,
                    session_start,
                    last_activity,
                    is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT (session_pda) DO NOTHING
                """,
                (
                    video_id,
                    session_pda,
                    viewer_pubkey,
                    max_approved_chunks,
                    chunks_consumed,
                    total_spent,
                    approved_price_per_chunk,
                    last_paid_chunk_index,
                    session_start,
                    last_activity,
                ),
            )
            if cursor.rowcount == 0:
                return None
            return int(cursor.lastrowid)
    except Exception as exc:
        raise_write_error("sessions.insert_session", exc, details=f"session_pda={session_pda!r}")


def get_session_by_pda(session_pda: str) -> MirroredSession | None:
    try:
        with connection_scope() as conn:
            row = conn.execute(
                "SELECT * FROM viewer_sessions WHERE session_pda = ?", (session_pda,)
            ).fetchone()
        return MirroredSession.from_row(row) if row else None
    except Exception as exc:
        raise_read_error("sessions.get_session_by_pda", exc, details=f"session_pda={session_pda!r}")


def find_active_session(video_id: int, viewer_pubkey: str) -> MirroredSession | None:
    """Most recent active session for a (content, viewer) pair."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                """
                SELECT * FROM viewer_sessions
                WHERE video_id = ? AND viewer_pubkey = ? AND is_active = 1
                ORDER BY id DESC
                LIMIT 1
                """,
                (video_id, viewer_pubkey),
            ).fetchone()
        return MirroredSession.from_row(row) if row else None
    except Exception as exc:
        raise_read_error(
            "sessions.find_active_session",
            exc,
            details=f"video_id={video_id} viewer={viewer_pubkey!r}",
        )


def apply_ledger_counters(
    cursor: sqlite3.Cursor,
    session_id: int,
    *,
    chunks_consumed: int,
    total_spent: int,
    last_paid_chunk_index: int | None,
    last_activity: int | None,
    max_approved_chunks: int | None = None,
    expected_chunks_consumed: int | None = None,
) -> bool:
    """Copy ledger counters onto a session row inside the caller's transaction.

    The approved ceiling only grows, so a re-approval this mirror missed
    cannot make the ledger's consumption look out of bounds.

    Args:
        expected_chunks_consumed: When given, the row is only updated if it
            still holds this value (compare-and-swap against the read the
            caller computed its delta from).

    Returns:
        False when the row is missing, the update would lower
        ``chunks_consumed``, or the row no longer matches
        ``expected_chunks_consumed``.
    """
    where = "id = ? AND chunks_consumed <= ?"
    params: list = [
        chunks_consumed,
        total_spent,
        last_paid_chunk_index,
        last_activity,
        max_approved_chunks,
        session_id,
        chunks_consumed,
    ]
    if expected_chunks_consumed is not None:
        where += " AND chunks_consumed = ?"
        params.append(expected_chunks_consumed)

    cursor.execute(
        f"""
        UPDATE viewer_sessions
        SET chunks_consumed = ?,
            total_spent = ?,
            last_paid_chunk_index = ?,
            last_activity = ?,
            max_approved_chunks = MAX(max_approved_chunks, COALESCE(?, max_approved_chunks)),
            updated_at = CURRENT_TIMESTAMP
        WHERE {where}
        """,  # nosec B608
        params,
    )
    return cursor.rowcount > 0


def refresh_approval(
    session_pda: str, *, max_approved_chunks: int, last_activity: int | None
) -> bool:
    """Apply a re-approval: the approved ceiling only ever grows."""
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE viewer_sessions
                SET max_approved_chunks = MAX(max_approved_chunks, ?),
                    last_activity = ?,
                    is_active = 1,
                    updated_at = CURRENT_TIMESTAMP
                WHERE session_pda = ?
                """,
                (max_approved_chunks, last_activity, session_pda),
            )
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("sessions.refresh_approval", exc, details=f"session_pda={session_pda!r}")


def deactivate_session(session_pda: str) -> bool:
    """Mark a session closed or revoked. Rows are never deleted."""
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE viewer_sessions
                SET is_active = 0, updated_at = CURRENT_TIMESTAMP
                WHERE session_pda = ? AND is_active = 1
                """,
                (session_pda,),
            )
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("sessions.deactivate_session", exc, details=f"session_pda={session_pda!r}")
