"""
Fixtures for API route tests.

The application is built around a runtime wired to the in-memory ledger and
served with the ingestion loop left stopped, so routes see exactly the state
a test seeds.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from solplay_sync.api.server import create_app
from solplay_sync.config import config
from solplay_sync.runtime import SyncRuntime
from tests.ledger_fakes import VIDEO, FakeLedgerReader, video_account


@pytest.fixture
def api_ledger() -> FakeLedgerReader:
    reader = FakeLedgerReader()
    reader.accounts[VIDEO] = video_account()
    return reader


@pytest.fixture
def runtime(temp_db_path, api_ledger: FakeLedgerReader) -> SyncRuntime:
    return SyncRuntime.build(config, reader=api_ledger)


@pytest.fixture
def test_client(runtime: SyncRuntime) -> Generator[TestClient, None, None]:
    """
    TestClient whose lifespan has created the schema in the temp database.

    Yields:
        TestClient bound to the application
    """
    app = create_app(runtime=runtime, start_listener=False)
    with TestClient(app) as client:
        yield client
