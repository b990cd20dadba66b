"""Typed exceptions raised by the ledger reader."""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base exception for ledger-access failures."""


class LedgerUnavailable(LedgerError):
    """Transient failure talking to the RPC node.

    Callers retry on the next cycle; this is never fatal to the process.
    """


class AccountDecodeError(LedgerError):
    """Account data did not match the expected on-chain layout."""
