"""
Event channel names emitted by the ingestion loop and the settlement side.

Channel names are a stable contract with subscribers (logging, metrics,
orchestration), so they are defined once here. Each constant documents the
shape of the ``detail`` dict delivered with it.

    from solplay_sync.ingest.events import Events

    dispatcher.on(Events.SETTLEMENT_RECORDED, handle_settlement)
"""


class Events:
    """All channels a :class:`~solplay_sync.ingest.dispatcher.EventDispatcher` carries."""

    # =========================================================================
    # LISTENER LIFECYCLE
    # =========================================================================

    STARTED = "started"
    """
    The ingestion loop is running.

    Detail: {"program_id": str, "subscription": bool}
    """

    STOPPED = "stopped"
    """
    The ingestion loop shut down; poll and subscription tasks are gone.

    Detail: {"last_processed_slot": int}
    """

    ERROR = "error"
    """
    A ledger read, decode or invariant failure was caught and the offending
    event dropped. The loop keeps running.

    Detail: {"kind": str, "message": str, "signature": str | None}
    """

    # =========================================================================
    # CONTENT
    # =========================================================================

    VIDEO_CREATED = "videoCreated"
    """
    A createVideo instruction was mirrored onto local content.

    Detail: {"video_id": int, "video_pda": str, "creator": str,
             "price_per_chunk": int, "signature": str}
    """

    VIDEO_UPDATED = "videoUpdated"
    """
    An updateVideo instruction refreshed local pricing.

    Detail: {"video_id": int, "price_per_chunk": int, "is_active": bool,
             "signature": str}
    """

    # =========================================================================
    # SESSIONS AND PAYMENTS
    # =========================================================================

    SESSION_CREATED = "sessionCreated"
    """
    A viewer delegation was mirrored as a new session row.

    Detail: {"session_address": str, "viewer": str, "video_id": int}
    """

    SESSION_CLOSED = "sessionClosed"
    """
    A revokeDelegate or closeSession instruction deactivated a session.

    Detail: {"session_address": str, "viewer": str, "reason": str}
    """

    SETTLEMENT_RECORDED = "settlementRecorded"
    """
    A batch settlement was recorded and the session counters advanced.

    Detail: {"session_address": str, "chunk_count": int,
             "total_payment": int, "signature": str}
    """

    CHUNK_PAID = "chunkPaid"
    """
    A single-chunk payment was recorded (legacy path).

    Detail: {"video_id": int, "viewer": str, "chunk_index": int,
             "amount": int, "signature": str}
    """

    # =========================================================================
    # LOCAL SETTLEMENT TRACKING
    # =========================================================================

    SETTLEMENT_THRESHOLD_REACHED = "settlementThresholdReached"
    """
    Unsettled chunk views for a (content, viewer) pair crossed the
    configured threshold. Advisory only; nothing is written to the ledger.

    Detail: {"content_id": str, "viewer": str, "unsettled": int}
    """


def is_valid_event_type(event_type: str) -> bool:
    """True if ``event_type`` is one of the channels defined on :class:`Events`."""
    return event_type in get_all_event_types()


def get_all_event_types() -> list[str]:
    """Sorted list of every defined channel name."""
    return sorted(
        value
        for name, value in vars(Events).items()
        if isinstance(value, str) and not name.startswith("_")
    )
