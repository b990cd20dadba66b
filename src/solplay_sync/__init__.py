"""SolPlay Sync: ledger mirror and settlement reconciliation.

Keeps an off-chain SQLite mirror of the SolPlay on-chain program in step with
the ledger, and reconciles batched chunk-view settlements against the views a
backend has served locally.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("solplay-sync")
except PackageNotFoundError:
    __version__ = "0.3.0"
