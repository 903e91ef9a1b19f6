from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse, urlunparse


@dataclass(frozen=True, slots=True)
class HippiusConfig:
    mode: str  # "prod" | "dev"

    # IPFS: add goes to the node API, reads go to the public gateway
    ipfs_api_base: str
    ipfs_gateway_base: str
    fetch_timeout_s: float
    upload_timeout_s: float

    # Reconciliation read path
    cache_ttl_s: float
    refresh_interval_s: float
    pending_stale_s: float

    # Upload path
    upload_concurrency: int
    signer_seed: Optional[str]
    account: Optional[str]


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip() or default


def _env_float(name: str, default: float) -> float:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return float(raw) if raw else float(default)
    except Exception:
        return float(default)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


def _env_opt(name: str) -> Optional[str]:
    v = (os.environ.get(name) or "").strip()
    return v or None


def normalize_base_url(url: str) -> str:
    """
    Normalize and validate a base URL.

    Rules:
      - scheme must be http or https
      - must include a hostname
      - rejects query/fragment
      - strips trailing slashes (a path prefix is kept)
    """
    if not isinstance(url, str) or not url.strip():
        raise ValueError("base_url must be a non-empty string")

    parsed = urlparse(url.strip())
    if parsed.query or parsed.fragment:
        raise ValueError("base_url must not include query or fragment")

    scheme = (parsed.scheme or "").lower()
    if scheme not in {"http", "https"}:
        raise ValueError("base_url must be http or https")
    if not parsed.hostname:
        raise ValueError("base_url must include a hostname")

    return urlunparse((scheme, parsed.netloc, parsed.path.rstrip("/"), "", "", ""))


def load_config() -> HippiusConfig:
    mode = _env_str("HIPPIUS_MODE", "prod").lower()
    return HippiusConfig(
        mode=mode,
        ipfs_api_base=normalize_base_url(_env_str("HIPPIUS_IPFS_API_BASE", "http://127.0.0.1:5001")),
        ipfs_gateway_base=normalize_base_url(_env_str("HIPPIUS_IPFS_GATEWAY_BASE", "https://get.hippius.network")),
        fetch_timeout_s=max(1.0, _env_float("HIPPIUS_FETCH_TIMEOUT_S", 120.0)),
        upload_timeout_s=max(1.0, _env_float("HIPPIUS_UPLOAD_TIMEOUT_S", 300.0)),
        cache_ttl_s=max(0.0, _env_float("HIPPIUS_CACHE_TTL_S", 30.0)),
        refresh_interval_s=max(5.0, _env_float("HIPPIUS_REFRESH_INTERVAL_S", 180.0)),
        pending_stale_s=max(1.0, _env_float("HIPPIUS_PENDING_STALE_S", 1800.0)),
        upload_concurrency=max(1, _env_int("HIPPIUS_UPLOAD_CONCURRENCY", 1)),
        signer_seed=_env_opt("HIPPIUS_SIGNER_SEED"),
        account=_env_opt("HIPPIUS_ACCOUNT"),
    )
