# src/hippius/ledger/__init__.py
"""
Ledger boundary.

  - client: LedgerClient protocol + tx status types
  - index_fetcher: read-side queries (storage requests, stored bytes, manifest pointer)
  - tx: signed storage_request / storage_unpin_request submission
  - memory: in-process ledger used by tests and dev mode
"""

from __future__ import annotations

__all__ = ["client", "index_fetcher", "tx", "memory"]
