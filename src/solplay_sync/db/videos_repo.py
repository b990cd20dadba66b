"""Content lookups and on-chain flags for the ``videos`` table.

Content rows belong to the platform's CRUD side; the mirror only reads them
and flips the on-chain fields when it sees createVideo/updateVideo.
"""

from __future__ import annotations

from solplay_sync.db.connection import connection_scope
from solplay_sync.db.errors import raise_read_error, raise_write_error
from solplay_sync.db.types import Content


def create_content(
    external_id: str,
    *,
    title: str = "",
    creator_pubkey: str | None = None,
    price_per_chunk: int = 1000,
    total_chunks: int = 0,
) -> int:
    """Insert a content row and return its local id."""
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO videos (
                    blockchain_video_id, title, creator_pubkey, price_per_chunk, total_chunks
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (external_id, title, creator_pubkey, price_per_chunk, total_chunks),
            )
            return int(cursor.lastrowid)
    except Exception as exc:
        raise_write_error("videos.create_content", exc, details=f"external_id={external_id!r}")


def get_content(content_id: int) -> Content | None:
    """Fetch content by local id."""
    try:
        with connection_scope() as conn:
            row = conn.execute("SELECT * FROM videos WHERE id = ?", (content_id,)).fetchone()
        return Content.from_row(row) if row else None
    except Exception as exc:
        raise_read_error("videos.get_content", exc, details=f"content_id={content_id}")


def find_content_by_external_id(external_id: str) -> Content | None:
    """Fetch content by its on-chain ``video_id``."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                "SELECT * FROM videos WHERE blockchain_video_id = ?", (external_id,)
            ).fetchone()
        return Content.from_row(row) if row else None
    except Exception as exc:
        raise_read_error(
            "videos.find_content_by_external_id", exc, details=f"external_id={external_id!r}"
        )


def mark_content_on_chain(
    content_id: int,
    *,
    video_pda: str,
    creator_pubkey: str,
    price_per_chunk: int,
    total_chunks: int,
) -> bool:
    """Record that the content now has an on-chain Video account."""
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE videos
                SET is_on_chain = 1,
                    video_pda = ?,
                    creator_pubkey = ?,
                    price_per_chunk = ?,
                    total_chunks = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (video_pda, creator_pubkey, price_per_chunk, total_chunks, content_id),
            )
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("videos.mark_content_on_chain", exc, details=f"content_id={content_id}")


def update_content_price(content_id: int, price_per_chunk: int) -> bool:
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE videos
                SET price_per_chunk = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (price_per_chunk, content_id),
            )
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("videos.update_content_price", exc, details=f"content_id={content_id}")


def resolve_content(content_id: str | int) -> Content | None:
    """Clients address content by local id; fall back to the on-chain id."""
    content = None
    if str(content_id).isdigit():
        content = get_content(int(content_id))
    if content is None:
        content = find_content_by_external_id(str(content_id))
    return content
