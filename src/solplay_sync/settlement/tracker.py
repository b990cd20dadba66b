"""
In-memory chunk-view tracker.

Counts the chunks each (content, viewer) pair has fetched since its last
settlement so the service can tell a client when a batch settlement is due
and how large it would be.

This is bookkeeping, not a system of record. It is per process and lost on
restart. What has actually been paid is whatever the ledger and the mirrored
session say. Crossing the threshold or the interval only logs and emits
``settlementThresholdReached``; the ledger write needs a wallet signature and
is always initiated elsewhere.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.events import Events

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"

PriceLookup = Callable[[str], int | None]


class ViewKey(NamedTuple):
    content_id: str
    viewer: str


def view_key(content_id: str | int, viewer: str | None = None) -> ViewKey:
    return ViewKey(str(content_id), viewer or ANONYMOUS)


@dataclass(slots=True)
class ChunkView:
    content_id: str
    chunk_id: str
    viewer: str
    payment_proof: str
    observed_at: float
    settled: bool = False


class ChunkViewTracker:
    """
    Per-key accumulator of unsettled chunk views.

    Mutations for one key run under that key's lock; different keys never
    contend. Emission to the dispatcher happens after the lock is released.

    Args:
        threshold: Unsettled views that make a settlement due.
        interval_seconds: Age of the oldest unsettled view that makes a
            settlement due regardless of count.
        default_price_per_chunk: Price used when ``price_lookup`` has none.
        price_lookup: Returns the current per-chunk price for a content id.
        dispatcher: Receives threshold notifications.
        clock: Time source (seconds), injectable for tests.
    """

    def __init__(
        self,
        *,
        threshold: int = 100,
        interval_seconds: float = 3600.0,
        default_price_per_chunk: int = 1000,
        price_lookup: PriceLookup | None = None,
        dispatcher: EventDispatcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.threshold = threshold
        self.interval_seconds = interval_seconds
        self.default_price_per_chunk = default_price_per_chunk
        self._price_lookup = price_lookup
        self._dispatcher = dispatcher
        self._clock = clock
        self._views: dict[ViewKey, list[ChunkView]] = {}
        self._locks: dict[ViewKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: ViewKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def record_view(
        self,
        content_id: str | int,
        chunk_id: str,
        payment_proof: str,
        viewer: str | None = None,
    ) -> ChunkView:
        """Append an unsettled view for ``(content_id, viewer)``."""
        key = view_key(content_id, viewer)
        view = ChunkView(
            content_id=key.content_id,
            chunk_id=chunk_id,
            viewer=key.viewer,
            payment_proof=payment_proof,
            observed_at=self._clock(),
        )
        with self._lock_for(key):
            views = self._views.setdefault(key, [])
            views.append(view)
            unsettled = sum(1 for v in views if not v.settled)

        if unsettled == self.threshold:
            logger.info(
                "Settlement threshold reached for content %s viewer %s (%d unsettled)",
                key.content_id,
                key.viewer,
                unsettled,
            )
            if self._dispatcher is not None:
                self._dispatcher.emit(
                    Events.SETTLEMENT_THRESHOLD_REACHED,
                    {"content_id": key.content_id, "viewer": key.viewer, "unsettled": unsettled},
                    source="tracker",
                )
        return view

    def mark_settled(self, content_id: str | int, viewer: str | None = None) -> int:
        """Flag every current view for the key as settled; returns how many flipped."""
        key = view_key(content_id, viewer)
        with self._lock_for(key):
            flipped = 0
            for view in self._views.get(key, []):
                if not view.settled:
                    view.settled = True
                    flipped += 1
        logger.debug("Marked %d views settled for %s", flipped, key)
        return flipped

    def clear_settled(self, content_id: str | int, viewer: str | None = None) -> int:
        """Drop settled views for the key to bound memory; returns how many were removed.

        A key left with no views loses its lock as well.
        """
        key = view_key(content_id, viewer)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                return 0
            with lock:
                views = self._views.get(key, [])
                remaining = [v for v in views if not v.settled]
                removed = len(views) - len(remaining)
                if remaining:
                    self._views[key] = remaining
                else:
                    self._views.pop(key, None)
                    del self._locks[key]
        return removed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def unsettled_entries(self, content_id: str | int, viewer: str | None = None) -> list[ChunkView]:
        key = view_key(content_id, viewer)
        with self._lock_for(key):
            return [v for v in self._views.get(key, []) if not v.settled]

    def unsettled_count(self, content_id: str | int, viewer: str | None = None) -> int:
        return len(self.unsettled_entries(content_id, viewer))

    def price_per_chunk(self, content_id: str | int) -> int:
        if self._price_lookup is not None:
            price = self._price_lookup(str(content_id))
            if price is not None:
                return price
        return self.default_price_per_chunk

    def settlement_stats(self, content_id: str | int, viewer: str | None = None) -> dict[str, int]:
        """Counts for the key plus the value of what is still unsettled."""
        key = view_key(content_id, viewer)
        with self._lock_for(key):
            views = list(self._views.get(key, []))
        unsettled = sum(1 for v in views if not v.settled)
        return {
            "unsettled": unsettled,
            "settled": len(views) - unsettled,
            "total": len(views),
            "estimated_value": unsettled * self.price_per_chunk(content_id),
        }

    def is_settlement_due(self, content_id: str | int, viewer: str | None = None) -> bool:
        """True once the threshold is met or the oldest unsettled view is older than the interval."""
        entries = self.unsettled_entries(content_id, viewer)
        if not entries:
            return False
        if len(entries) >= self.threshold:
            return True
        oldest = min(v.observed_at for v in entries)
        return self._clock() - oldest >= self.interval_seconds

    def tracked_keys(self) -> list[ViewKey]:
        with self._locks_guard:
            return list(self._views)
