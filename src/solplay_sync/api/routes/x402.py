"""Chunk-view tracking and client-triggered settlement (``/x402``).

Tracking endpoints are plain ``def`` so FastAPI runs them in its threadpool;
the tracker takes a per-key lock. ``/settle`` is the only endpoint that waits
on the ledger and it is bounded by the reconciler's timeout.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from solplay_sync.api.models import (
    SettlementPreviewResponse,
    SettleRequest,
    SettleResponse,
    StatsResponse,
    TrackChunkRequest,
    TrackChunkResponse,
    UnsettledCountResponse,
)
from solplay_sync.runtime import SyncRuntime
from solplay_sync.settlement.fees import split_payment
from solplay_sync.settlement.tracker import view_key

logger = logging.getLogger(__name__)


def router(runtime: SyncRuntime) -> APIRouter:
    """Build the x402 router around the runtime's tracker and reconciler."""
    api = APIRouter(prefix="/x402")
    tracker = runtime.tracker

    @api.post("/track-chunk", response_model=TrackChunkResponse)
    def track_chunk(request: TrackChunkRequest):
        """
        Record one served chunk.

        Tracking is best effort: a failure here must never block playback,
        so errors are logged and reported as ``success: false`` with 200.
        """
        try:
            tracker.record_view(
                request.content_id, request.chunk_id, request.payment_proof, request.viewer
            )
            stats = tracker.settlement_stats(request.content_id, request.viewer)
        except Exception as exc:
            logger.error("Failed to track chunk %s: %s", request.chunk_id, exc, exc_info=True)
            return TrackChunkResponse(success=False, message="chunk view not tracked")
        return TrackChunkResponse(success=True, message="chunk view tracked", stats=stats)

    @api.get("/unsettled-count", response_model=UnsettledCountResponse)
    def unsettled_count(content_id: str, viewer: str | None = None):
        return UnsettledCountResponse(
            success=True, unsettled_chunks=tracker.unsettled_count(content_id, viewer)
        )

    @api.get("/stats", response_model=StatsResponse)
    def stats(content_id: str, viewer: str | None = None):
        key = view_key(content_id, viewer)
        return StatsResponse(
            success=True,
            content_id=key.content_id,
            viewer=key.viewer,
            settlement_due=tracker.is_settlement_due(content_id, viewer),
            **tracker.settlement_stats(content_id, viewer),
        )

    @api.get("/settlement-preview", response_model=SettlementPreviewResponse)
    def settlement_preview(content_id: str, viewer: str | None = None):
        """Estimated cost of settling now, using the content's current price."""
        fee_bps = runtime.config.settlement.platform_fee_bps
        unsettled = tracker.unsettled_count(content_id, viewer)
        price = tracker.price_per_chunk(content_id)
        split = split_payment(unsettled, price, fee_bps)
        return SettlementPreviewResponse(
            success=True,
            unsettled_chunks=unsettled,
            price_per_chunk=price,
            total_payment=split.total_payment,
            platform_fee=split.platform_fee,
            creator_amount=split.creator_amount,
            fee_bps=fee_bps,
        )

    @api.post("/settle", response_model=SettleResponse)
    async def settle(request: SettleRequest):
        """Reconcile with the ledger. Failures come back as ``success: false``."""
        result = await runtime.reconciler.settle(
            request.content_id, request.viewer, request.signature
        )
        return SettleResponse(**result.to_dict())

    return api
