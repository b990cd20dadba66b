"""
Process-wide runtime handle.

Builds the reader, dispatcher, tracker, reconciler, handlers and ingestion
loop from a :class:`~solplay_sync.config.SyncConfig` and hands them out
explicitly. The FastAPI lifespan and the CLI each build exactly one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from solplay_sync.config import SyncConfig
from solplay_sync.db import videos_repo
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.handlers import MirrorHandlers
from solplay_sync.ingest.listener import IngestionLoop
from solplay_sync.ledger.reader import LedgerReader
from solplay_sync.settlement.reconciler import SettlementReconciler
from solplay_sync.settlement.tracker import ChunkViewTracker

logger = logging.getLogger(__name__)


def content_price(content_id: str) -> int | None:
    content = videos_repo.resolve_content(content_id)
    return content.price_per_chunk if content else None


@dataclass
class SyncRuntime:
    config: SyncConfig
    reader: LedgerReader
    dispatcher: EventDispatcher
    tracker: ChunkViewTracker
    reconciler: SettlementReconciler
    handlers: MirrorHandlers
    loop: IngestionLoop

    @classmethod
    def build(cls, cfg: SyncConfig, reader: LedgerReader | None = None) -> SyncRuntime:
        """Wire every component from ``cfg``; tests pass their own ``reader``."""
        ledger = cfg.ledger
        settlement = cfg.settlement

        if reader is None:
            reader = LedgerReader(
                ledger.rpc_url,
                ledger.effective_ws_url or None,
                commitment=ledger.commitment,
                timeout=ledger.request_timeout_seconds,
            )
        dispatcher = EventDispatcher()
        tracker = ChunkViewTracker(
            threshold=settlement.view_threshold,
            interval_seconds=settlement.interval_seconds,
            default_price_per_chunk=settlement.default_price_per_chunk,
            price_lookup=content_price,
            dispatcher=dispatcher,
        )
        reconciler = SettlementReconciler(
            reader,
            dispatcher,
            tracker,
            program_id=ledger.program_id,
            fee_bps=settlement.platform_fee_bps,
            settle_timeout=settlement.settle_timeout_seconds,
        )
        handlers = MirrorHandlers(
            reader, dispatcher, reconciler, fee_bps=settlement.platform_fee_bps
        )
        loop = IngestionLoop(
            reader,
            handlers,
            dispatcher,
            program_id=ledger.program_id,
            poll_interval=ledger.poll_interval_seconds,
            poll_limit=ledger.poll_limit,
            subscribe_enabled=ledger.subscription_allowed,
        )
        if ledger.subscribe_enabled and not ledger.subscription_allowed:
            logger.info("Push subscription disabled for local RPC %s", ledger.rpc_url)
        return cls(
            config=cfg,
            reader=reader,
            dispatcher=dispatcher,
            tracker=tracker,
            reconciler=reconciler,
            handlers=handlers,
            loop=loop,
        )

    async def start(self) -> None:
        await self.loop.start()

    async def shutdown(self) -> None:
        """Stop the loop if it runs; the reader is closed either way."""
        if self.loop.is_listening:
            await self.loop.stop()
        else:
            await self.reader.close()
