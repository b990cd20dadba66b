"""
Tests for the watermark-tracked ingestion loop.

Covers the watermark rules, the retry set that keeps transiently failed
signatures alive after the watermark passes them, per-instruction failure
handling, and the start/stop lifecycle with both discovery paths.
"""

import asyncio

import pytest

from solplay_sync.db import sessions_repo, settlements_repo
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.events import Events
from solplay_sync.ingest.handlers import MirrorHandlers
from solplay_sync.ingest.listener import MAX_RETRY_ATTEMPTS, IngestionLoop
from solplay_sync.ledger.errors import LedgerUnavailable
from solplay_sync.ledger.types import SignatureNotice
from tests.ledger_fakes import (
    OTHER_PROGRAM,
    PROGRAM_ID,
    SESSION,
    FakeLedgerReader,
    instruction,
    transaction,
)


def errors(dispatcher: EventDispatcher) -> list[dict]:
    return [e.detail for e in dispatcher.get_event_log(channel=Events.ERROR)]


# =============================================================================
# PROCESS_SIGNATURE
# =============================================================================


class TestProcessSignature:
    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_handles_transaction_and_advances_watermark(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, content_id
    ):
        ledger.set_session()
        ledger.add_transaction(transaction("approve", 100, instruction(3)))

        assert await ingestion_loop.process_signature("approve", 100) is True

        assert ingestion_loop.last_processed_slot == 100
        assert sessions_repo.get_session_by_pda(SESSION) is not None

    @pytest.mark.asyncio
    async def test_skips_at_or_below_watermark_without_fetching(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader
    ):
        ingestion_loop.last_processed_slot = 200

        assert await ingestion_loop.process_signature("old", 150) is False
        assert await ingestion_loop.process_signature("same", 200) is False
        assert ledger.fetches == []

    @pytest.mark.asyncio
    async def test_failed_transaction_does_not_advance(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader
    ):
        ledger.add_transaction(transaction("boom", 300, instruction(4), failed=True))

        assert await ingestion_loop.process_signature("boom", 300) is False
        assert ingestion_loop.last_processed_slot == 0
        assert ingestion_loop.status()["pending_retries"] == 0

    @pytest.mark.asyncio
    async def test_other_programs_are_ignored(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        ledger.add_transaction(transaction("transfer", 120, instruction(4, program_id=OTHER_PROGRAM)))

        assert await ingestion_loop.process_signature("transfer", 120) is True
        assert ingestion_loop.last_processed_slot == 120
        assert errors(dispatcher) == []

    @pytest.mark.asyncio
    async def test_unknown_opcode_is_skipped(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        ledger.add_transaction(transaction("future-op", 130, instruction(42, accounts=[SESSION])))

        assert await ingestion_loop.process_signature("future-op", 130) is True
        assert errors(dispatcher) == []

    @pytest.mark.asyncio
    async def test_decode_error_is_emitted_not_raised(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        ledger.add_transaction(transaction("short", 140, instruction(4, accounts=[SESSION])))

        assert await ingestion_loop.process_signature("short", 140) is True
        assert errors(dispatcher)[0]["kind"] == "InstructionDecodeError"
        assert errors(dispatcher)[0]["signature"] == "short"

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_missing_mirror_is_skipped_quietly(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher, test_db
    ):
        ledger.set_session(chunks_consumed=5)
        ledger.add_transaction(transaction("orphan-settle", 150, instruction(4)))

        assert await ingestion_loop.process_signature("orphan-settle", 150) is True
        assert errors(dispatcher) == []
        assert ingestion_loop.last_processed_slot == 150

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_invariant_violation_is_emitted_and_dropped(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher, mirrored_session
    ):
        ledger.set_session(chunks_consumed=3)
        ledger.add_transaction(transaction("regress", 160, instruction(4)))

        assert await ingestion_loop.process_signature("regress", 160) is True
        assert errors(dispatcher)[0]["kind"] == "InvariantViolation"
        assert ingestion_loop.status()["pending_retries"] == 0
        assert settlements_repo.get_settlement_by_signature("regress") is None

    @pytest.mark.asyncio
    async def test_ledger_unavailable_is_retried(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        ledger.unavailable.add("flaky")

        assert await ingestion_loop.process_signature("flaky", 170) is False
        assert ingestion_loop.last_processed_slot == 0
        assert ingestion_loop.status()["pending_retries"] == 1
        assert errors(dispatcher)[0]["kind"] == "LedgerUnavailable"

    @pytest.mark.asyncio
    async def test_transaction_not_yet_visible_is_retried(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader
    ):
        assert await ingestion_loop.process_signature("not-yet", 180) is False
        assert ingestion_loop.status()["pending_retries"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_is_retried(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher, monkeypatch
    ):
        async def garbled(signature):
            raise ValueError("unexpected payload shape")

        monkeypatch.setattr(ledger, "get_transaction", garbled)

        assert await ingestion_loop.process_signature("odd", 100) is False

        assert ingestion_loop.status()["pending_retries"] == 1
        assert ingestion_loop.last_processed_slot == 0
        assert errors(dispatcher) == [
            {"kind": "ValueError", "message": "unexpected payload shape", "signature": "odd"}
        ]

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_skips_the_instruction(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, handlers: MirrorHandlers, dispatcher,
        monkeypatch,
    ):
        async def boom(decoded, tx):
            raise ValueError("boom")

        monkeypatch.setattr(handlers, "handle", boom)
        ledger.add_transaction(transaction("bad", 100, instruction(7)))

        assert await ingestion_loop.process_signature("bad", 100) is True

        assert ingestion_loop.last_processed_slot == 100
        assert errors(dispatcher) == [{"kind": "ValueError", "message": "boom", "signature": "bad"}]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        ledger.unavailable.add("dead")

        for _ in range(MAX_RETRY_ATTEMPTS + 1):
            await ingestion_loop.process_signature("dead", 10)

        assert ingestion_loop.status()["pending_retries"] == 0
        assert errors(dispatcher)[-1]["kind"] == "RetriesExhausted"


# =============================================================================
# POLLING
# =============================================================================


class TestPollOnce:
    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_processes_oldest_first(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, content_id
    ):
        ledger.set_session(chunks_consumed=0)
        ledger.add_transaction(transaction("approve", 100, instruction(3)))
        ledger.add_transaction(transaction("close", 101, instruction(7)))

        handled = await ingestion_loop.poll_once()

        assert handled == 2
        assert ledger.fetches == ["approve", "close"]
        assert sessions_repo.get_session_by_pda(SESSION).is_active is False
        assert ingestion_loop.last_processed_slot == 101

    @pytest.mark.asyncio
    async def test_listed_failures_are_not_fetched(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader
    ):
        ledger.add_transaction(transaction("failed", 100, instruction(4), failed=True))

        assert await ingestion_loop.poll_once() == 0
        assert ledger.fetches == []

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_failed_earlier_slot_survives_later_watermark(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, content_id
    ):
        """Slot 100 fails transiently, slot 101 succeeds; slot 100 is still mirrored."""
        ledger.set_session(chunks_consumed=0)
        ledger.add_transaction(transaction("approve", 100, instruction(3)))
        ledger.add_transaction(transaction("unrelated", 101, instruction(0)))
        ledger.unavailable.add("approve")

        await ingestion_loop.poll_once()

        assert ingestion_loop.last_processed_slot == 101
        assert sessions_repo.get_session_by_pda(SESSION) is None
        assert ingestion_loop.status()["pending_retries"] == 1

        ledger.unavailable.clear()
        await ingestion_loop.poll_once()

        assert sessions_repo.get_session_by_pda(SESSION) is not None
        assert ingestion_loop.status()["pending_retries"] == 0
        assert ingestion_loop.last_processed_slot == 101

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader
    ):
        ledger.listing_unavailable = True

        with pytest.raises(LedgerUnavailable):
            await ingestion_loop.poll_once()

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_replay_from_zero_is_idempotent(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher, mirrored_session
    ):
        ledger.set_session(chunks_consumed=25, total_spent=25_000)
        ledger.add_transaction(transaction("settle", 300, instruction(4)))

        await ingestion_loop.poll_once()
        ingestion_loop.last_processed_slot = 0
        await ingestion_loop.poll_once()

        assert len(settlements_repo.list_settlements_for_session(mirrored_session)) == 1
        assert len(dispatcher.get_event_log(channel=Events.SETTLEMENT_RECORDED)) == 1
        assert sessions_repo.get_session_by_pda(SESSION).chunks_consumed == 25


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_emit_lifecycle_events(
        self, ingestion_loop: IngestionLoop, ledger: FakeLedgerReader, dispatcher
    ):
        await ingestion_loop.start()
        assert ingestion_loop.status()["is_listening"] is True

        await ingestion_loop.stop()

        assert [e.channel for e in dispatcher.get_event_log()] == [Events.STARTED, Events.STOPPED]
        assert ingestion_loop.status() == {
            "is_listening": False,
            "last_processed_slot": 0,
            "subscription_active": False,
            "pending_retries": 0,
        }
        assert ledger.closed is True

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_no_op(self, ingestion_loop: IngestionLoop, dispatcher):
        await ingestion_loop.stop()

        assert dispatcher.get_event_log() == []

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_subscription_and_poll_deliver_once(
        self, ledger: FakeLedgerReader, handlers: MirrorHandlers, dispatcher, mirrored_session
    ):
        loop = IngestionLoop(
            ledger, handlers, dispatcher, program_id=PROGRAM_ID, poll_interval=0.01, subscribe_enabled=True
        )
        ledger.set_session(chunks_consumed=25, total_spent=25_000)
        ledger.add_transaction(transaction("settle", 300, instruction(4)))
        ledger.notices.put_nowait(SignatureNotice("settle", 300))

        await loop.start()
        try:
            await dispatcher.wait_for(Events.SETTLEMENT_RECORDED, timeout=1.0)
            await asyncio.sleep(0.05)
            assert loop.status()["subscription_active"] is True
        finally:
            await loop.stop()

        assert len(settlements_repo.list_settlements_for_session(mirrored_session)) == 1

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_subscription_failure_leaves_polling_running(
        self, ledger: FakeLedgerReader, handlers: MirrorHandlers, dispatcher, content_id
    ):
        loop = IngestionLoop(
            ledger, handlers, dispatcher, program_id=PROGRAM_ID, poll_interval=0.01, subscribe_enabled=True
        )
        ledger.subscribe_error = LedgerUnavailable("websocket refused")
        ledger.set_session()
        ledger.add_transaction(transaction("approve", 100, instruction(3)))

        await loop.start()
        try:
            await dispatcher.wait_for(Events.SESSION_CREATED, timeout=1.0)
            assert loop.status()["is_listening"] is True
            assert loop.status()["subscription_active"] is False
        finally:
            await loop.stop()

    @pytest.mark.db
    @pytest.mark.asyncio
    async def test_poll_survives_unexpected_errors(
        self, ledger: FakeLedgerReader, handlers: MirrorHandlers, dispatcher, content_id, monkeypatch
    ):
        handle = handlers.handle
        list_recent_signatures = ledger.list_recent_signatures
        listings = 0

        async def flaky_handle(decoded, tx):
            if tx.signature == "bad":
                raise ValueError("boom")
            await handle(decoded, tx)

        async def flaky_listing(address, limit=10):
            nonlocal listings
            listings += 1
            if listings == 1:
                raise KeyError("result")
            return await list_recent_signatures(address, limit)

        monkeypatch.setattr(handlers, "handle", flaky_handle)
        monkeypatch.setattr(ledger, "list_recent_signatures", flaky_listing)
        ledger.set_session()
        ledger.add_transaction(transaction("bad", 100, instruction(7)))
        ledger.add_transaction(transaction("approve", 101, instruction(3)))

        loop = IngestionLoop(
            ledger, handlers, dispatcher, program_id=PROGRAM_ID, poll_interval=0.01, subscribe_enabled=False
        )
        await loop.start()
        try:
            await dispatcher.wait_for(Events.SESSION_CREATED, timeout=1.0)
            poll = loop._tasks[0]
            assert not poll.done()
            assert loop.last_processed_slot == 101
        finally:
            await loop.stop()

        kinds = [e["kind"] for e in errors(dispatcher)]
        assert kinds[:2] == ["KeyError", "ValueError"]

    @pytest.mark.asyncio
    async def test_subscription_survives_unexpected_errors(
        self, ledger: FakeLedgerReader, handlers: MirrorHandlers, dispatcher
    ):
        loop = IngestionLoop(
            ledger, handlers, dispatcher, program_id=PROGRAM_ID, poll_interval=0.01, subscribe_enabled=True
        )
        ledger.subscribe_error = ValueError("malformed notification")

        await loop.start()
        try:
            await asyncio.sleep(0.05)
            assert not any(task.done() for task in loop._tasks)
            assert loop.status()["subscription_active"] is False
        finally:
            await loop.stop()

        assert {"kind": "ValueError", "message": "malformed notification", "signature": None} in errors(dispatcher)
