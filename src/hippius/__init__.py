# src/hippius/__init__.py
"""
Hippius files core.

Client-side reconciliation of a user's on-chain storage requests with the
off-chain manifest stored on the IPFS gateway, plus the upload pipeline that
pushes bytes to the gateway and commits the batch to the ledger.

  - util.ipfs_cid: CID text/byte codec
  - ledger: ledger client boundary, index queries, signed calls
  - storage: gateway client, manifest + info-object fetchers
  - files: merge, snapshot cache, pending overlay, unpin, CSV import
  - credits: spendable-balance gate
  - upload: upload state machine
  - api: FastAPI surface over the above
"""

from __future__ import annotations

__version__ = "0.4.0"

__all__ = [
    "api",
    "credits",
    "files",
    "ledger",
    "storage",
    "upload",
    "util",
]
