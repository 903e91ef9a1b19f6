# src/hippius/storage/__init__.py
"""
Content gateway side.

  - gateway: IPFS HTTP client (streaming add, gateway reads)
  - gateway_memory: in-process content store for tests and dev mode
  - manifest: manifest + per-request info object fetchers
"""
