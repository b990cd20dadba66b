"""
Shared pytest fixtures for the SolPlay Sync test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary mirror databases (via ``use_test_database``)
- A dict-backed fake ledger reader
- Dispatcher, tracker, reconciler, handlers and ingestion loop wired to it
- Seeded content and session rows for settlement scenarios
"""

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from solplay_sync.config import use_test_database
from solplay_sync.db import sessions_repo, videos_repo
from solplay_sync.db.schema import init_database
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.handlers import MirrorHandlers
from solplay_sync.ingest.listener import IngestionLoop
from solplay_sync.settlement.reconciler import SettlementReconciler
from solplay_sync.settlement.tracker import ChunkViewTracker
from tests.ledger_fakes import (
    CREATOR,
    PROGRAM_ID,
    SESSION,
    VIDEO,
    VIEWER,
    FakeLedgerReader,
    video_account,
)

FEE_BPS = 500

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """
    Point the config at a fresh temporary database file.

    Yields:
        Path to the temporary database file
    """
    temp_dir = tempfile.mkdtemp()
    temp_db = Path(temp_dir) / "test_solplay.db"

    with use_test_database(temp_db):
        yield temp_db

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="function")
def test_db(temp_db_path: Path) -> Generator[None, None, None]:
    """Initialize the mirror schema in the temporary database."""
    init_database()
    yield


@pytest.fixture
def content_id(test_db) -> int:
    """A registered content row whose on-chain id is ``vid-1``."""
    return videos_repo.create_content(
        "vid-1", title="Test Video", creator_pubkey=CREATOR, price_per_chunk=1000, total_chunks=300
    )


@pytest.fixture
def mirrored_session(content_id: int) -> int:
    """A mirrored session at ``SESSION`` with 10 of 100 chunks consumed."""
    session_id = sessions_repo.insert_session(
        video_id=content_id,
        session_pda=SESSION,
        viewer_pubkey=VIEWER,
        max_approved_chunks=100,
        chunks_consumed=10,
        total_spent=10_000,
        approved_price_per_chunk=1000,
        last_paid_chunk_index=9,
        session_start=1_700_000_000,
        last_activity=1_700_000_000,
    )
    assert session_id is not None
    return session_id


# ============================================================================
# LEDGER AND COMPONENT FIXTURES
# ============================================================================


@pytest.fixture
def ledger() -> FakeLedgerReader:
    """Fake ledger preloaded with the default video account."""
    reader = FakeLedgerReader()
    reader.accounts[VIDEO] = video_account()
    return reader


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def tracker(dispatcher: EventDispatcher) -> ChunkViewTracker:
    return ChunkViewTracker(threshold=5, dispatcher=dispatcher)


@pytest.fixture
def reconciler(ledger, dispatcher, tracker) -> SettlementReconciler:
    return SettlementReconciler(
        ledger, dispatcher, tracker, program_id=PROGRAM_ID, fee_bps=FEE_BPS, settle_timeout=2.0
    )


@pytest.fixture
def handlers(ledger, dispatcher, reconciler) -> MirrorHandlers:
    return MirrorHandlers(ledger, dispatcher, reconciler, fee_bps=FEE_BPS)


@pytest.fixture
def ingestion_loop(ledger, handlers, dispatcher) -> IngestionLoop:
    return IngestionLoop(
        ledger,
        handlers,
        dispatcher,
        program_id=PROGRAM_ID,
        poll_interval=0.01,
        poll_limit=10,
        subscribe_enabled=False,
    )

