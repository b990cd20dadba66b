"""Exceptions raised while turning ledger transactions into mirror writes.

None of these are fatal to the ingestion loop. Each is caught per
instruction, logged, and (except for :class:`MirrorNotFound`) reported on the
``error`` channel before the offending event is dropped.
"""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base exception for ingestion/reconciliation failures."""


class InstructionDecodeError(SyncError):
    """A program instruction did not carry the accounts its opcode requires."""


class MirrorNotFound(SyncError):
    """A local parent record (content or session) is missing.

    Expected while the mirror catches up; the event is skipped with a
    warning and later events for the same record succeed once it exists.
    """


class InvariantViolation(SyncError):
    """Ledger state contradicts the mirror, e.g. consumption went backwards."""
