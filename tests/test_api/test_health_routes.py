"""Tests for the root and health endpoints."""

import pytest
from fastapi.testclient import TestClient

from solplay_sync import __version__
from solplay_sync.api.server import create_app


@pytest.mark.api
def test_root_endpoint(test_client):
    response = test_client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "SolPlay Sync API", "version": __version__}


@pytest.mark.api
def test_health_reports_listener_status(test_client):
    response = test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["listener"] == {
        "is_listening": False,
        "last_processed_slot": 0,
        "subscription_active": False,
        "pending_retries": 0,
    }


@pytest.mark.api
def test_health_reflects_watermark(test_client, runtime):
    runtime.loop.last_processed_slot = 4242

    assert test_client.get("/health").json()["listener"]["last_processed_slot"] == 4242


@pytest.mark.api
def test_openapi_version_matches_package(test_client):
    assert test_client.get("/openapi.json").json()["info"]["version"] == __version__


@pytest.mark.api
def test_lifespan_closes_ledger_reader(runtime, api_ledger):
    with TestClient(create_app(runtime=runtime, start_listener=False)):
        assert api_ledger.closed is False

    assert api_ledger.closed is True
