"""
API tests for chunk-view tracking and client-triggered settlement.

Tests cover:
- Tracking chunk views per (content, viewer)
- Unsettled counts, stats and settlement previews
- Settling against the fake ledger, including the failure responses
"""

import pytest

from solplay_sync.db import sessions_repo, videos_repo
from tests.ledger_fakes import CREATOR, SESSION, VIEWER, instruction, transaction


def track(client, count: int, content_id: str = "vid-1", viewer: str | None = VIEWER) -> None:
    for i in range(count):
        body = {"content_id": content_id, "chunk_id": f"seg-{i}.ts", "payment_proof": f"proof-{i}"}
        if viewer is not None:
            body["viewer"] = viewer
        response = client.post("/x402/track-chunk", json=body)
        assert response.json()["success"] is True


@pytest.fixture
def seeded_session(test_client):
    """Content ``vid-1`` with a mirrored session at 10 of 100 chunks."""
    video_id = videos_repo.create_content("vid-1", creator_pubkey=CREATOR, price_per_chunk=1000)
    return sessions_repo.insert_session(
        video_id=video_id,
        session_pda=SESSION,
        viewer_pubkey=VIEWER,
        max_approved_chunks=100,
        chunks_consumed=10,
        total_spent=10_000,
        approved_price_per_chunk=1000,
        last_paid_chunk_index=9,
        session_start=None,
        last_activity=None,
    )


# ============================================================================
# TRACKING
# ============================================================================


@pytest.mark.api
class TestTrackChunk:
    def test_track_returns_running_stats(self, test_client):
        response = test_client.post(
            "/x402/track-chunk",
            json={"content_id": "vid-1", "chunk_id": "seg-0.ts", "payment_proof": "p", "viewer": VIEWER},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["stats"]["unsettled"] == 1
        assert data["stats"]["estimated_value"] == 1000

    def test_missing_fields_are_rejected(self, test_client):
        response = test_client.post("/x402/track-chunk", json={"content_id": "vid-1"})

        assert response.status_code == 422

    def test_tracking_failure_does_not_error(self, test_client, runtime, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("tracker exploded")

        monkeypatch.setattr(runtime.tracker, "record_view", broken)

        response = test_client.post(
            "/x402/track-chunk",
            json={"content_id": "vid-1", "chunk_id": "seg-0.ts", "payment_proof": "p"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_unsettled_count_per_viewer(self, test_client):
        track(test_client, 3)
        track(test_client, 2, viewer=None)

        mine = test_client.get("/x402/unsettled-count", params={"content_id": "vid-1", "viewer": VIEWER})
        anonymous = test_client.get("/x402/unsettled-count", params={"content_id": "vid-1"})

        assert mine.json() == {"success": True, "unsettled_chunks": 3}
        assert anonymous.json()["unsettled_chunks"] == 2

    def test_stats(self, test_client):
        track(test_client, 4, viewer=None)

        data = test_client.get("/x402/stats", params={"content_id": "vid-1"}).json()

        assert data == {
            "success": True,
            "content_id": "vid-1",
            "viewer": "anonymous",
            "unsettled": 4,
            "settled": 0,
            "total": 4,
            "estimated_value": 4000,
            "settlement_due": False,
        }

    def test_stats_use_content_price(self, test_client):
        videos_repo.create_content("cheap", price_per_chunk=10)
        track(test_client, 3, content_id="cheap")

        data = test_client.get("/x402/stats", params={"content_id": "cheap", "viewer": VIEWER}).json()

        assert data["estimated_value"] == 30

    def test_settlement_due_at_threshold(self, test_client, runtime):
        runtime.tracker.threshold = 3
        track(test_client, 3)

        data = test_client.get("/x402/stats", params={"content_id": "vid-1", "viewer": VIEWER}).json()

        assert data["settlement_due"] is True

    def test_settlement_preview(self, test_client):
        track(test_client, 15)

        data = test_client.get(
            "/x402/settlement-preview", params={"content_id": "vid-1", "viewer": VIEWER}
        ).json()

        assert data == {
            "success": True,
            "unsettled_chunks": 15,
            "price_per_chunk": 1000,
            "total_payment": 15_000,
            "platform_fee": 750,
            "creator_amount": 14_250,
            "fee_bps": 500,
        }


# ============================================================================
# SETTLE
# ============================================================================


@pytest.mark.api
class TestSettle:
    def test_nothing_to_settle(self, test_client):
        response = test_client.post("/x402/settle", json={"content_id": "vid-1", "viewer": VIEWER})

        assert response.status_code == 200
        assert response.json()["settled"] is False
        assert response.json()["success"] is True

    def test_settles_tracked_views(self, test_client, api_ledger, seeded_session):
        track(test_client, 15)
        api_ledger.set_session(chunks_consumed=25, total_spent=25_000)
        api_ledger.add_transaction(transaction("wallet-settle", 500, instruction(4)))

        response = test_client.post(
            "/x402/settle",
            json={"content_id": "vid-1", "viewer": VIEWER, "signature": "wallet-settle"},
        )

        assert response.json() == {
            "success": True,
            "settled": True,
            "chunk_count": 15,
            "signature": "wallet-settle",
            "message": "settled 15 chunks",
        }
        count = test_client.get("/x402/unsettled-count", params={"content_id": "vid-1", "viewer": VIEWER})
        assert count.json()["unsettled_chunks"] == 0

    def test_failure_is_reported_in_body(self, test_client, seeded_session):
        track(test_client, 2)

        response = test_client.post(
            "/x402/settle",
            json={"content_id": "vid-1", "viewer": VIEWER, "signature": "unknown"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "not found" in response.json()["message"]
