"""
Per-operation mirror writes.

Each handler takes one decoded program instruction plus its containing
transaction, fetches whatever ledger accounts it needs, and updates the
local mirror. Counters are always copied from the freshly fetched account;
nothing is incremented locally.

Handlers raise; they do not swallow. The ingestion loop decides what an
exception means for the watermark and the retry set.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from solplay_sync.db import payments_repo, sessions_repo, videos_repo
from solplay_sync.db.errors import SessionCountersChanged
from solplay_sync.ingest.decoder import DecodedInstruction, Operation
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.errors import MirrorNotFound
from solplay_sync.ingest.events import Events
from solplay_sync.ledger.accounts import SessionAccount, VideoAccount
from solplay_sync.ledger.reader import LedgerReader
from solplay_sync.ledger.types import Transaction
from solplay_sync.settlement.fees import split_payment
from solplay_sync.settlement.reconciler import MAX_RECORD_ATTEMPTS, SettlementReconciler

logger = logging.getLogger(__name__)

Handler = Callable[[DecodedInstruction, Transaction], Awaitable[None]]


class MirrorHandlers:
    """
    Routes decoded instructions to the mirror write for their operation.

    Args:
        reader: Ledger reader for account fetches.
        dispatcher: Receives the per-operation events.
        reconciler: Owns the settlement write path.
        fee_bps: Platform fee applied to legacy per-chunk payments.
    """

    def __init__(
        self,
        reader: LedgerReader,
        dispatcher: EventDispatcher,
        reconciler: SettlementReconciler,
        *,
        fee_bps: int,
    ) -> None:
        self.reader = reader
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.fee_bps = fee_bps
        self._routes: dict[Operation, Handler] = {
            Operation.INITIALIZE: self.on_initialize,
            Operation.CREATE_VIDEO: self.on_create_video,
            Operation.UPDATE_VIDEO: self.on_update_video,
            Operation.APPROVE_DELEGATE: self.on_approve_delegate,
            Operation.SETTLE_SESSION: self.on_settle_session,
            Operation.PAY_FOR_CHUNK: self.on_pay_for_chunk,
            Operation.REVOKE_DELEGATE: self.on_session_closed,
            Operation.CLOSE_SESSION: self.on_session_closed,
        }

    async def handle(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        route = self._routes.get(decoded.operation)
        if route is None:
            logger.debug("No handler for opcode %s in %s", decoded.opcode, tx.signature)
            return
        await route(decoded, tx)

    # =========================================================================
    # PLATFORM AND CONTENT
    # =========================================================================

    async def on_initialize(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        logger.info(
            "Platform %s initialized by %s (%s)",
            decoded.accounts["platform"],
            decoded.accounts["authority"],
            tx.signature,
        )

    async def on_create_video(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        """Link a locally registered content row to its new on-chain Video account."""
        video_address = decoded.accounts["video"]
        video = await self.reader.get_account(video_address, VideoAccount)
        if video is None:
            raise MirrorNotFound(f"video account {video_address} not found on ledger")

        content = await asyncio.to_thread(videos_repo.find_content_by_external_id, video.video_id)
        if content is None:
            raise MirrorNotFound(f"no local content for on-chain video_id {video.video_id!r}")

        await asyncio.to_thread(
            videos_repo.mark_content_on_chain,
            content.id,
            video_pda=video_address,
            creator_pubkey=video.creator,
            price_per_chunk=video.price_per_chunk,
            total_chunks=video.total_chunks,
        )
        logger.info("Content %s is on chain at %s", content.id, video_address)
        self.dispatcher.emit(
            Events.VIDEO_CREATED,
            {
                "video_id": content.id,
                "video_pda": video_address,
                "creator": video.creator,
                "price_per_chunk": video.price_per_chunk,
                "signature": tx.signature,
            },
        )

    async def on_update_video(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        video_address = decoded.accounts["video"]
        video = await self.reader.get_account(video_address, VideoAccount)
        if video is None:
            raise MirrorNotFound(f"video account {video_address} not found on ledger")

        content = await asyncio.to_thread(videos_repo.find_content_by_external_id, video.video_id)
        if content is None:
            raise MirrorNotFound(f"no local content for on-chain video_id {video.video_id!r}")

        await asyncio.to_thread(videos_repo.update_content_price, content.id, video.price_per_chunk)
        self.dispatcher.emit(
            Events.VIDEO_UPDATED,
            {
                "video_id": content.id,
                "price_per_chunk": video.price_per_chunk,
                "is_active": video.is_active,
                "signature": tx.signature,
            },
        )

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def on_approve_delegate(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        """
        Mirror a newly approved session, or grow the ceiling of a known one.

        The session is linked to local content through the Video account's
        ``video_id``. If that content is not registered locally the event is
        skipped; no placeholder content is created.
        """
        session_address = decoded.accounts["session"]
        video_address = decoded.accounts["video"]

        account = await self.reader.get_account(session_address, SessionAccount)
        if account is None:
            raise MirrorNotFound(f"session account {session_address} not found on ledger")
        video = await self.reader.get_account(video_address, VideoAccount)
        if video is None:
            raise MirrorNotFound(f"video account {video_address} not found on ledger")

        content = await asyncio.to_thread(videos_repo.find_content_by_external_id, video.video_id)
        if content is None:
            raise MirrorNotFound(f"no local content for on-chain video_id {video.video_id!r}")

        session_id = await asyncio.to_thread(
            sessions_repo.insert_session,
            video_id=content.id,
            session_pda=session_address,
            viewer_pubkey=account.viewer,
            max_approved_chunks=account.max_approved_chunks,
            chunks_consumed=account.chunks_consumed,
            total_spent=account.total_spent,
            approved_price_per_chunk=account.approved_price_per_chunk,
            last_paid_chunk_index=account.last_paid_chunk_index,
            session_start=account.session_start,
            last_activity=account.last_activity,
        )
        if session_id is None:
            await asyncio.to_thread(
                sessions_repo.refresh_approval,
                session_address,
                max_approved_chunks=account.max_approved_chunks,
                last_activity=account.last_activity,
            )
            logger.info("Session %s re-approved for %d chunks", session_address, account.max_approved_chunks)
            return

        logger.info(
            "Session %s created for viewer %s on content %s (%d chunks approved)",
            session_address,
            account.viewer,
            content.id,
            account.max_approved_chunks,
        )
        self.dispatcher.emit(
            Events.SESSION_CREATED,
            {"session_address": session_address, "viewer": account.viewer, "video_id": content.id},
        )

    async def on_settle_session(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        await self.reconciler.record_observed_settlement(
            decoded.accounts["session"],
            signature=tx.signature,
            slot=tx.slot,
            block_time=tx.block_time,
            video_address=decoded.accounts["video"],
        )

    async def on_pay_for_chunk(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        """Record one legacy per-chunk payment, recomputing if the session moves underneath it."""
        session_address = decoded.accounts["session"]
        for attempt in range(1, MAX_RECORD_ATTEMPTS + 1):
            try:
                await self._record_chunk_payment(session_address, tx)
                return
            except SessionCountersChanged:
                if attempt == MAX_RECORD_ATTEMPTS:
                    raise
                logger.info(
                    "Session %s advanced while recording payment %s; recomputing",
                    session_address,
                    tx.signature,
                )

    async def _record_chunk_payment(self, session_address: str, tx: Transaction) -> None:
        mirrored = await asyncio.to_thread(sessions_repo.get_session_by_pda, session_address)
        if mirrored is None:
            raise MirrorNotFound(f"session {session_address} is not mirrored")

        account = await self.reader.get_account(session_address, SessionAccount)
        if account is None:
            raise MirrorNotFound(f"session account {session_address} not found on ledger")

        if account.last_paid_chunk_index is not None:
            chunk_index = account.last_paid_chunk_index
        else:
            chunk_index = max(account.chunks_consumed - 1, 0)

        split = split_payment(1, account.approved_price_per_chunk, self.fee_bps)
        content = await asyncio.to_thread(videos_repo.get_content, mirrored.video_id)

        payment_id = await asyncio.to_thread(
            payments_repo.record_chunk_payment,
            session_id=mirrored.id,
            video_id=mirrored.video_id,
            chunk_index=chunk_index,
            payment_sequence=account.chunks_consumed,
            amount_paid=split.total_payment,
            platform_fee=split.platform_fee,
            creator_amount=split.creator_amount,
            transaction_signature=tx.signature,
            viewer_pubkey=mirrored.viewer_pubkey,
            creator_pubkey=content.creator_pubkey if content else None,
            chunks_consumed_before=mirrored.chunks_consumed,
            chunks_consumed=account.chunks_consumed,
            total_spent=account.total_spent,
            last_activity=account.last_activity,
            max_approved_chunks=account.max_approved_chunks,
        )
        if payment_id is None:
            logger.debug("Chunk %d of session %s already recorded", chunk_index, session_address)
            return

        self.dispatcher.emit(
            Events.CHUNK_PAID,
            {
                "video_id": mirrored.video_id,
                "viewer": mirrored.viewer_pubkey,
                "chunk_index": chunk_index,
                "amount": split.total_payment,
                "signature": tx.signature,
            },
        )

    async def on_session_closed(self, decoded: DecodedInstruction, tx: Transaction) -> None:
        """revokeDelegate and closeSession both end the session; the row is kept."""
        session_address = decoded.accounts["session"]
        if not await asyncio.to_thread(sessions_repo.deactivate_session, session_address):
            logger.debug("Session %s was not active locally", session_address)
            return
        logger.info("Session %s ended by %s", session_address, decoded.operation.value)
        self.dispatcher.emit(
            Events.SESSION_CLOSED,
            {
                "session_address": session_address,
                "viewer": decoded.accounts["viewer"],
                "reason": decoded.operation.value,
            },
        )
