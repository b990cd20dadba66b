"""
Watermark-tracked ingestion loop.

Two discovery paths feed one pipeline:

    poll          every ``poll_interval`` seconds, list the program's most
                  recent signatures and process them oldest-first
    subscription  optional websocket push feed; reconnects with backoff and
                  never takes the loop down

Both call :meth:`IngestionLoop.process_signature`. The watermark
(``last_processed_slot``) advances only after a transaction was handled, and
a signature whose handling failed transiently is kept in a retry set that
bypasses the watermark, so a later, higher slot cannot bury it. Handling the
same signature twice is harmless: every mirror write is guarded by a
uniqueness constraint.

Failure policy per transaction:

    LedgerUnavailable, DatabaseError     retry on the next poll, emit ``error``
    unexpected fetch failure             same, bounded by the retry limit
    MirrorNotFound                       warn, skip the instruction
    InvariantViolation,
    InstructionDecodeError,
    AccountDecodeError,
    anything unexpected                  log, emit ``error``, skip the instruction

Neither discovery task ever exits on an exception; only :meth:`stop` ends them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from solplay_sync.db.errors import DatabaseError
from solplay_sync.ingest.decoder import decode_instruction
from solplay_sync.ingest.dispatcher import EventDispatcher
from solplay_sync.ingest.errors import InstructionDecodeError, InvariantViolation, MirrorNotFound
from solplay_sync.ingest.events import Events
from solplay_sync.ingest.handlers import MirrorHandlers
from solplay_sync.ledger.errors import AccountDecodeError, LedgerUnavailable
from solplay_sync.ledger.reader import LedgerReader
from solplay_sync.ledger.types import Transaction

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 5
RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 60.0


@dataclass(slots=True)
class _PendingRetry:
    slot: int
    attempts: int = 0


class IngestionLoop:
    """
    Keeps the mirror in step with the SolPlay program.

    Args:
        reader: Ledger reader. The loop closes it on :meth:`stop`.
        handlers: Per-operation mirror writes.
        dispatcher: Receives lifecycle and ``error`` events.
        program_id: Only instructions addressed to this program are decoded.
        poll_interval: Seconds between poll cycles.
        poll_limit: Signatures requested per poll cycle.
        subscribe_enabled: Start the websocket push feed alongside polling.
    """

    def __init__(
        self,
        reader: LedgerReader,
        handlers: MirrorHandlers,
        dispatcher: EventDispatcher,
        *,
        program_id: str,
        poll_interval: float = 30.0,
        poll_limit: int = 10,
        subscribe_enabled: bool = True,
    ) -> None:
        self.reader = reader
        self.handlers = handlers
        self.dispatcher = dispatcher
        self.program_id = program_id
        self.poll_interval = poll_interval
        self.poll_limit = poll_limit
        self.subscribe_enabled = subscribe_enabled

        self.last_processed_slot = 0
        self.is_listening = False
        self.subscription_active = False
        self._retries: dict[str, _PendingRetry] = {}
        self._in_flight: set[str] = set()
        self._tasks: list[asyncio.Task] = []

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def process_signature(self, signature: str, slot: int | None = None) -> bool:
        """
        Fetch, decode and handle one transaction.

        Returns:
            True if the transaction was handled and the watermark considered
            for advancing; False if it was skipped or must be retried.
        """
        pending = self._retries.get(signature)
        if (
            pending is None
            and slot is not None
            and slot <= self.last_processed_slot
        ):
            return False
        if signature in self._in_flight:
            return False

        self._in_flight.add(signature)
        try:
            tx = await self.reader.get_transaction(signature)
            if tx is None:
                # Not visible at our commitment yet.
                self._schedule_retry(signature, slot, "transaction not found yet")
                return False
            if tx.failed:
                logger.debug("Skipping failed transaction %s", signature)
                self._retries.pop(signature, None)
                return False

            await self._handle_transaction(tx)
        except (LedgerUnavailable, DatabaseError) as exc:
            logger.warning("Processing %s failed, will retry: %s", signature, exc)
            self._emit_error(type(exc).__name__, str(exc), signature)
            self._schedule_retry(signature, slot, str(exc))
            return False
        except Exception as exc:
            logger.error("Processing %s failed unexpectedly: %s", signature, exc, exc_info=True)
            self._emit_error(type(exc).__name__, str(exc), signature)
            self._schedule_retry(signature, slot, str(exc))
            return False
        finally:
            self._in_flight.discard(signature)

        self._retries.pop(signature, None)
        if tx.slot > self.last_processed_slot:
            self.last_processed_slot = tx.slot
        return True

    async def _handle_transaction(self, tx: Transaction) -> None:
        for ix in tx.instructions:
            if ix.program_id != self.program_id:
                continue
            try:
                decoded = decode_instruction(ix.data, ix.accounts, tx.block_time)
                if not decoded.is_known:
                    logger.debug("Unknown opcode %s in %s", decoded.opcode, tx.signature)
                    continue
                await self.handlers.handle(decoded, tx)
            except MirrorNotFound as exc:
                logger.warning("Skipping instruction in %s: %s", tx.signature, exc)
            except InvariantViolation as exc:
                logger.error("Invariant violation in %s: %s", tx.signature, exc)
                self._emit_error("InvariantViolation", str(exc), tx.signature)
            except (InstructionDecodeError, AccountDecodeError) as exc:
                logger.error("Could not decode %s: %s", tx.signature, exc)
                self._emit_error(type(exc).__name__, str(exc), tx.signature)
            except (LedgerUnavailable, DatabaseError):
                raise
            except Exception as exc:
                logger.error("Unexpected error handling %s: %s", tx.signature, exc, exc_info=True)
                self._emit_error(type(exc).__name__, str(exc), tx.signature)

    def _schedule_retry(self, signature: str, slot: int | None, reason: str) -> None:
        pending = self._retries.get(signature)
        if pending is None:
            pending = self._retries[signature] = _PendingRetry(slot=slot or 0)
        pending.attempts += 1
        if pending.attempts > MAX_RETRY_ATTEMPTS:
            del self._retries[signature]
            logger.error(
                "Giving up on %s after %d attempts: %s", signature, MAX_RETRY_ATTEMPTS, reason
            )
            self._emit_error("RetriesExhausted", reason, signature)

    def _emit_error(self, kind: str, message: str, signature: str | None) -> None:
        self.dispatcher.emit(
            Events.ERROR, {"kind": kind, "message": message, "signature": signature}
        )

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    async def poll_once(self) -> int:
        """
        Run one poll cycle: pending retries first, then the newest batch
        oldest-first.

        Returns:
            Number of transactions handled.

        Raises:
            LedgerUnavailable: The signature listing itself failed.
        """
        handled = 0
        for signature, pending in sorted(self._retries.items(), key=lambda item: item[1].slot):
            if await self.process_signature(signature, pending.slot):
                handled += 1

        recent = await self.reader.list_recent_signatures(self.program_id, limit=self.poll_limit)
        for info in sorted(recent, key=lambda info: info.slot):
            if info.failed:
                continue
            if await self.process_signature(info.signature, info.slot):
                handled += 1

        logger.debug(
            "Poll handled %d transactions; watermark at slot %d", handled, self.last_processed_slot
        )
        return handled

    async def _poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except LedgerUnavailable as exc:
                logger.warning("Poll cycle failed: %s", exc)
                self._emit_error("LedgerUnavailable", str(exc), None)
            except Exception as exc:
                logger.error("Poll cycle failed unexpectedly: %s", exc, exc_info=True)
                self._emit_error(type(exc).__name__, str(exc), None)
            await asyncio.sleep(self.poll_interval)

    async def _subscribe_forever(self) -> None:
        delay = RECONNECT_BASE_DELAY
        while True:
            try:
                async for notice in self.reader.subscribe(self.program_id, self._on_subscribed):
                    delay = RECONNECT_BASE_DELAY
                    await self.process_signature(notice.signature, notice.slot)
            except LedgerUnavailable as exc:
                logger.warning("Log subscription unavailable, polling continues: %s", exc)
            except Exception as exc:
                logger.error("Log subscription failed, reconnecting: %s", exc, exc_info=True)
                self._emit_error(type(exc).__name__, str(exc), None)
            finally:
                self.subscription_active = False
            await asyncio.sleep(delay)
            delay = min(delay * 2, RECONNECT_MAX_DELAY)

    def _on_subscribed(self) -> None:
        self.subscription_active = True

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self.is_listening:
            logger.warning("Ingestion loop already running")
            return

        self.is_listening = True
        self._tasks = [asyncio.create_task(self._poll_forever(), name="solplay-poll")]
        if self.subscribe_enabled:
            self._tasks.append(
                asyncio.create_task(self._subscribe_forever(), name="solplay-subscription")
            )
        logger.info(
            "Ingestion loop started for program %s (subscription %s)",
            self.program_id,
            "on" if self.subscribe_enabled else "off",
        )
        self.dispatcher.emit(
            Events.STARTED,
            {"program_id": self.program_id, "subscription": self.subscribe_enabled},
        )

    async def stop(self) -> None:
        """Cancel both discovery tasks and close the reader."""
        if not self.is_listening:
            return

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.is_listening = False
        self.subscription_active = False
        await self.reader.close()

        logger.info("Ingestion loop stopped at slot %d", self.last_processed_slot)
        self.dispatcher.emit(Events.STOPPED, {"last_processed_slot": self.last_processed_slot})

    def status(self) -> dict:
        return {
            "is_listening": self.is_listening,
            "last_processed_slot": self.last_processed_slot,
            "subscription_active": self.subscription_active,
            "pending_retries": len(self._retries),
        }
