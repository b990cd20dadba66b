"""
Pydantic models for API requests and responses.

Amounts are integers in the payment token's base units. ``content_id`` is
accepted as either the local content id or the on-chain video id.
"""

from typing import Any

from pydantic import BaseModel, Field

# ============================================================================
# REQUEST MODELS (Client → Server)
# ============================================================================


class TrackChunkRequest(BaseModel):
    """
    One chunk served to a viewer.

    Attributes:
        content_id: Content the chunk belongs to
        chunk_id: HLS segment identifier
        payment_proof: Opaque proof presented with the chunk request
        viewer: Viewer wallet; omitted for anonymous playback
    """

    content_id: str
    chunk_id: str
    payment_proof: str
    viewer: str | None = None


class SettleRequest(BaseModel):
    """
    Ask the backend to reconcile a viewer's tracked views.

    Attributes:
        content_id: Content being settled
        viewer: Viewer wallet owning the session
        signature: Settlement transaction the wallet sent, if known. Without
            it the session account's recent transactions are scanned.
    """

    content_id: str
    viewer: str | None = None
    signature: str | None = None


# ============================================================================
# RESPONSE MODELS (Server → Client)
# ============================================================================


class TrackChunkResponse(BaseModel):
    success: bool
    message: str
    stats: dict[str, int] | None = None


class UnsettledCountResponse(BaseModel):
    success: bool
    unsettled_chunks: int


class StatsResponse(BaseModel):
    """Tracker counts for one (content, viewer) pair."""

    success: bool
    content_id: str
    viewer: str
    unsettled: int
    settled: int
    total: int
    estimated_value: int
    settlement_due: bool


class SettlementPreviewResponse(BaseModel):
    """What settling the currently unsettled views would cost and pay out."""

    success: bool
    unsettled_chunks: int
    price_per_chunk: int
    total_payment: int
    platform_fee: int
    creator_amount: int
    fee_bps: int


class SettleResponse(BaseModel):
    success: bool
    settled: bool
    chunk_count: int = 0
    signature: str | None = None
    message: str = ""


class SettlementListResponse(BaseModel):
    """
    A page of settlement records.

    Attributes:
        settlements: Newest first
        totals: Aggregates for the filter key (earnings, revenue, ...)
    """

    success: bool = True
    settlements: list[dict[str, Any]] = Field(default_factory=list)
    totals: dict[str, int] | None = None


class SettlementResponse(BaseModel):
    success: bool = True
    settlement: dict[str, Any]


class HealthResponse(BaseModel):
    status: str
    listener: dict[str, Any]
