"""Schema creation for the mirror store.

Four tables:

    videos          local content records (owned by the platform CRUD API;
                    created here too so the mirror can run standalone)
    viewer_sessions mirror of on-chain ViewerSession accounts
    chunk_payments  per-chunk payment history (legacy pay-per-chunk path)
    settlements     append-only record of batch settlements

Idempotency of every ingestion write rests on the UNIQUE constraints below,
not on in-process locking.
"""

from __future__ import annotations

import logging

from solplay_sync.db.connection import connection_scope

logger = logging.getLogger(__name__)

TABLE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS videos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        blockchain_video_id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL DEFAULT '',
        creator_pubkey TEXT,
        price_per_chunk INTEGER NOT NULL DEFAULT 1000,
        total_chunks INTEGER NOT NULL DEFAULT 0,
        video_pda TEXT,
        is_on_chain INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS viewer_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        video_id INTEGER NOT NULL REFERENCES videos(id),
        session_pda TEXT NOT NULL UNIQUE,
        viewer_pubkey TEXT NOT NULL,
        max_approved_chunks INTEGER NOT NULL,
        chunks_consumed INTEGER NOT NULL DEFAULT 0,
        total_spent INTEGER NOT NULL DEFAULT 0,
        approved_price_per_chunk INTEGER NOT NULL,
        last_paid_chunk_index INTEGER,
        session_start INTEGER,
        last_activity INTEGER,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK (chunks_consumed >= 0 AND chunks_consumed <= max_approved_chunks)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunk_payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL REFERENCES viewer_sessions(id),
        video_id INTEGER NOT NULL REFERENCES videos(id),
        chunk_index INTEGER NOT NULL,
        payment_sequence INTEGER NOT NULL,
        amount_paid INTEGER NOT NULL,
        platform_fee INTEGER NOT NULL,
        creator_amount INTEGER NOT NULL,
        transaction_signature TEXT NOT NULL,
        viewer_pubkey TEXT NOT NULL,
        creator_pubkey TEXT,
        paid_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (session_id, chunk_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settlements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL REFERENCES viewer_sessions(id),
        video_id INTEGER NOT NULL REFERENCES videos(id),
        chunk_count INTEGER NOT NULL,
        total_payment INTEGER NOT NULL,
        platform_fee INTEGER NOT NULL,
        creator_amount INTEGER NOT NULL,
        transaction_signature TEXT NOT NULL UNIQUE,
        block_time INTEGER,
        slot INTEGER,
        viewer_pubkey TEXT NOT NULL,
        creator_pubkey TEXT,
        chunks_consumed_after INTEGER NOT NULL,
        chunks_remaining INTEGER NOT NULL,
        settlement_timestamp TIMESTAMP NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK (platform_fee + creator_amount = total_payment)
    )
    """,
)

# History queries filter by participant and always order by time.
INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_sessions_video_viewer ON viewer_sessions(video_id, viewer_pubkey)",
    "CREATE INDEX IF NOT EXISTS idx_settlements_viewer ON settlements(viewer_pubkey, settlement_timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_settlements_creator ON settlements(creator_pubkey, settlement_timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_settlements_video ON settlements(video_id, settlement_timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_chunk_payments_session ON chunk_payments(session_id)",
)


def init_database() -> None:
    """Create all tables and indexes if they do not exist yet."""
    with connection_scope(write=True) as conn:
        cursor = conn.cursor()
        for statement in TABLE_STATEMENTS:
            cursor.execute(statement)
        for statement in INDEX_STATEMENTS:
            cursor.execute(statement)
    logger.info("Mirror store schema ready")
