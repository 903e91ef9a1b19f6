# src/hippius/files/__init__.py
"""
Reconciled file listing.

  - merger: merge on-chain + manifest sources into one snapshot
  - cache: TTL snapshot cache + background refresher
  - pending: local-only entries for uploads not yet visible on either source
  - unpin: storage_unpin_request flow
  - csv_import: {name, cid} batches for the register flow
"""
