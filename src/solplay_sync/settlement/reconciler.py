"""
Settlement reconciliation.

Two entry points share one write path:

* :meth:`SettlementReconciler.record_observed_settlement` runs when the
  ingestion loop decodes a ``settleSession`` instruction.
* :meth:`SettlementReconciler.settle` runs when a client asks the backend to
  reconcile its locally tracked chunk views. The viewer's wallet has already
  signed and sent the settlement; this call locates that transaction (by the
  signature the client passes, or by scanning the session account's recent
  signatures), records it, and clears the tracker for the pair.

Either way the chunk count is the difference between the ledger's
``chunks_consumed`` and the mirrored value, and the mirrored counters are then
overwritten with the ledger's. Nothing is derived locally.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from solplay_sync.db import sessions_repo, settlements_repo, videos_repo
from solplay_sync.db.errors import DatabaseError, SessionCountersChanged
from solplay_sync.db.types import SettlementRecord
from solplay_sync.ingest.decoder import Operation, decode_instruction
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.errors import InstructionDecodeError, InvariantViolation, MirrorNotFound, SyncError
from solplay_sync.ingest.events import Events
from solplay_sync.ledger.accounts import SessionAccount, VideoAccount
from solplay_sync.ledger.errors import LedgerError
from solplay_sync.ledger.reader import LedgerReader
from solplay_sync.ledger.types import Transaction
from solplay_sync.settlement.fees import split_payment
from solplay_sync.settlement.tracker import ChunkViewTracker

logger = logging.getLogger(__name__)

MAX_RECORD_ATTEMPTS = 3


@dataclass(slots=True, frozen=True)
class SettleResult:
    """Outcome of a client-triggered settlement. Never raised, always returned."""

    success: bool
    settled: bool
    chunk_count: int = 0
    signature: str | None = None
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _failure(message: str) -> SettleResult:
    return SettleResult(success=False, settled=False, message=message)


def _timestamp(block_time: int | None) -> str:
    moment = datetime.fromtimestamp(block_time, UTC) if block_time else datetime.now(UTC)
    return moment.isoformat()


class SettlementReconciler:
    """
    Records settlements against mirrored sessions.

    Args:
        reader: Ledger reader used for account and transaction fetches.
        dispatcher: Receives ``settlementRecorded``.
        tracker: Local chunk-view tracker drained after a client settle.
        program_id: SolPlay program address.
        fee_bps: Platform fee in basis points.
        settle_timeout: Upper bound, in seconds, on a client settle call.
        signature_scan_limit: How many recent session signatures to scan
            when the client does not name the settlement transaction.
    """

    def __init__(
        self,
        reader: LedgerReader,
        dispatcher: EventDispatcher,
        tracker: ChunkViewTracker,
        *,
        program_id: str,
        fee_bps: int,
        settle_timeout: float = 15.0,
        signature_scan_limit: int = 10,
    ) -> None:
        self.reader = reader
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.program_id = program_id
        self.fee_bps = fee_bps
        self.settle_timeout = settle_timeout
        self.signature_scan_limit = signature_scan_limit

    # =========================================================================
    # LEDGER-OBSERVED PATH
    # =========================================================================

    async def record_observed_settlement(
        self,
        session_address: str,
        *,
        signature: str,
        slot: int | None,
        block_time: int | None,
        video_address: str | None = None,
    ) -> SettlementRecord | None:
        """
        Record one settlement for ``signature`` and advance the mirrored session.

        Two settlements for the same session can be handled at once (poll and
        subscription, or ingestion and a client settle). The write only lands
        if the mirrored ``chunks_consumed`` is still the value the chunk count
        was computed from; otherwise the mirror is re-read and the delta
        recomputed, up to ``MAX_RECORD_ATTEMPTS`` times.

        Returns:
            The new record, or ``None`` if ``signature`` was already recorded.

        Raises:
            MirrorNotFound: The session is unknown locally or on the ledger.
            InvariantViolation: The ledger reports fewer consumed chunks than
                the mirror holds. Nothing is written.
            LedgerUnavailable: Account fetch failed; retry later.
            SessionCountersChanged: The session kept moving on every attempt.
        """
        for attempt in range(1, MAX_RECORD_ATTEMPTS + 1):
            try:
                return await self._record_settlement(
                    session_address,
                    signature=signature,
                    slot=slot,
                    block_time=block_time,
                    video_address=video_address,
                )
            except SessionCountersChanged:
                if attempt == MAX_RECORD_ATTEMPTS:
                    raise
                logger.info(
                    "Session %s advanced while recording %s; recomputing (attempt %d)",
                    session_address,
                    signature,
                    attempt,
                )
        return None

    async def _record_settlement(
        self,
        session_address: str,
        *,
        signature: str,
        slot: int | None,
        block_time: int | None,
        video_address: str | None,
    ) -> SettlementRecord | None:
        if await asyncio.to_thread(settlements_repo.get_settlement_by_signature, signature) is not None:
            logger.debug("Settlement %s already recorded", signature)
            return None

        mirrored = await asyncio.to_thread(sessions_repo.get_session_by_pda, session_address)
        if mirrored is None:
            raise MirrorNotFound(f"session {session_address} is not mirrored; cannot reconcile")

        account = await self.reader.get_account(session_address, SessionAccount)
        if account is None:
            raise MirrorNotFound(f"session account {session_address} not found on ledger")

        chunk_count = account.chunks_consumed - mirrored.chunks_consumed
        if chunk_count < 0:
            raise InvariantViolation(
                f"session {session_address}: ledger chunks_consumed={account.chunks_consumed} "
                f"is below mirrored {mirrored.chunks_consumed} (signature {signature})"
            )

        split = split_payment(chunk_count, account.approved_price_per_chunk, self.fee_bps)
        creator = await self._creator_for(mirrored.video_id, video_address)

        settlement_id = await asyncio.to_thread(
            settlements_repo.record_settlement,
            session_id=mirrored.id,
            video_id=mirrored.video_id,
            chunk_count=chunk_count,
            total_payment=split.total_payment,
            platform_fee=split.platform_fee,
            creator_amount=split.creator_amount,
            transaction_signature=signature,
            block_time=block_time,
            slot=slot,
            viewer_pubkey=mirrored.viewer_pubkey,
            creator_pubkey=creator,
            chunks_consumed_before=mirrored.chunks_consumed,
            chunks_consumed_after=account.chunks_consumed,
            chunks_remaining=account.chunks_remaining,
            settlement_timestamp=_timestamp(block_time),
            total_spent=account.total_spent,
            last_paid_chunk_index=account.last_paid_chunk_index,
            last_activity=account.last_activity,
            max_approved_chunks=account.max_approved_chunks,
        )
        if settlement_id is None:
            logger.info("Settlement %s recorded concurrently; skipping", signature)
            return None

        logger.info(
            "Recorded settlement %s: %d chunks, total %d (fee %d) for session %s",
            signature,
            chunk_count,
            split.total_payment,
            split.platform_fee,
            session_address,
        )
        self.dispatcher.emit(
            Events.SETTLEMENT_RECORDED,
            {
                "session_address": session_address,
                "chunk_count": chunk_count,
                "total_payment": split.total_payment,
                "signature": signature,
            },
            source="reconciler",
        )
        return await asyncio.to_thread(settlements_repo.get_settlement_by_signature, signature)

    async def _creator_for(self, video_id: int, video_address: str | None) -> str | None:
        content = await asyncio.to_thread(videos_repo.get_content, video_id)
        if content is not None and content.creator_pubkey:
            return content.creator_pubkey
        if video_address is None:
            return None
        video = await self.reader.get_account(video_address, VideoAccount)
        return video.creator if video is not None else None

    # =========================================================================
    # CLIENT-TRIGGERED PATH
    # =========================================================================

    async def settle(
        self,
        content_id: str | int,
        viewer: str | None = None,
        signature: str | None = None,
    ) -> SettleResult:
        """
        Reconcile a viewer's tracked chunk views with the ledger.

        Bounded by ``settle_timeout``; every failure comes back as a
        ``SettleResult`` with ``success=False``.
        """
        try:
            return await asyncio.wait_for(
                self._settle(content_id, viewer, signature), timeout=self.settle_timeout
            )
        except TimeoutError:
            logger.warning("Settle for content %s viewer %s timed out", content_id, viewer)
            return _failure(f"ledger did not respond within {self.settle_timeout:g}s")
        except LedgerError as exc:
            logger.warning("Settle for content %s failed reading the ledger: %s", content_id, exc)
            return _failure(f"ledger unavailable: {exc}")
        except SyncError as exc:
            logger.warning("Settle for content %s rejected: %s", content_id, exc)
            return _failure(str(exc))
        except DatabaseError as exc:
            logger.error("Settle for content %s hit a database error: %s", content_id, exc, exc_info=True)
            return _failure("database error while recording settlement")

    async def _settle(
        self, content_id: str | int, viewer: str | None, signature: str | None
    ) -> SettleResult:
        unsettled = self.tracker.unsettled_count(content_id, viewer)
        if unsettled == 0 and signature is None:
            return SettleResult(success=True, settled=False, message="nothing to settle")
        if not viewer:
            return _failure("viewer is required to locate the session")

        content = await asyncio.to_thread(videos_repo.resolve_content, content_id)
        if content is None:
            return _failure(f"content {content_id} not found")

        session = await asyncio.to_thread(sessions_repo.find_active_session, content.id, viewer)
        if session is None:
            return _failure("no active session for this viewer and content")

        if signature is None:
            tx = await self._find_settlement_transaction(session.session_pda)
            if tx is None:
                return SettleResult(
                    success=True,
                    settled=False,
                    message="no settlement transaction found for session yet",
                )
            signature = tx.signature
        else:
            tx = await self.reader.get_transaction(signature)
            if tx is None or tx.failed:
                return _failure(f"transaction {signature} not found or failed")
            if not self._settles_session(tx, session.session_pda):
                return _failure(f"transaction {signature} does not settle this session")

        record = await self.record_observed_settlement(
            session.session_pda,
            signature=signature,
            slot=tx.slot,
            block_time=tx.block_time,
        )
        if record is None:
            record = await asyncio.to_thread(settlements_repo.get_settlement_by_signature, signature)
        if record is None:
            return _failure(f"settlement {signature} could not be recorded")

        self.tracker.mark_settled(content_id, viewer)
        self.tracker.clear_settled(content_id, viewer)
        return SettleResult(
            success=True,
            settled=True,
            chunk_count=record.chunk_count,
            signature=signature,
            message=f"settled {record.chunk_count} chunks",
        )

    async def _find_settlement_transaction(self, session_address: str) -> Transaction | None:
        """Newest successful settleSession transaction touching the session account."""
        recent = await self.reader.list_recent_signatures(
            session_address, limit=self.signature_scan_limit
        )
        for info in recent:
            if info.failed:
                continue
            tx = await self.reader.get_transaction(info.signature)
            if tx is not None and not tx.failed and self._settles_session(tx, session_address):
                return tx
        return None

    def _settles_session(self, tx: Transaction, session_address: str) -> bool:
        for ix in tx.instructions:
            if ix.program_id != self.program_id:
                continue
            try:
                decoded = decode_instruction(ix.data, ix.accounts, tx.block_time)
            except InstructionDecodeError:
                continue
            if (
                decoded.operation is Operation.SETTLE_SESSION
                and decoded.accounts.get("session") == session_address
            ):
                return True
        return False

