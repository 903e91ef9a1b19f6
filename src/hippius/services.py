# src/hippius/services.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from hippius.config import HippiusConfig, load_config
from hippius.credits import CreditsGate, LedgerCreditsOracle
from hippius.crypto.sig import public_key_hex
from hippius.files.cache import BackgroundRefresher, SnapshotCache
from hippius.files.merger import FileIndexService
from hippius.files.pending import PendingRegistry
from hippius.ledger.client import LedgerClient
from hippius.ledger.index_fetcher import OnChainIndexFetcher
from hippius.ledger.memory import InMemoryLedger
from hippius.ledger.tx import LedgerTx, TxSigner
from hippius.storage.gateway import ContentGateway, GatewayClient
from hippius.storage.gateway_memory import InMemoryGateway
from hippius.storage.manifest import ManifestFetcher, UnassignedEntryExpander
from hippius.upload.pipeline import UploadPipeline


@dataclass
class HippiusServices:
    cfg: HippiusConfig
    ledger: LedgerClient
    gateway: ContentGateway
    index: FileIndexService
    cache: SnapshotCache
    pending: PendingRegistry
    refresher: BackgroundRefresher
    ledger_tx: Optional[LedgerTx] = None
    pipeline: Optional[UploadPipeline] = None

    @property
    def account(self) -> Optional[str]:
        return self.ledger_tx.account if self.ledger_tx is not None else None


def _signer(cfg: HippiusConfig) -> Optional[TxSigner]:
    seed = cfg.signer_seed
    if not seed and cfg.mode == "dev":
        seed = os.urandom(32).hex()
    if not seed:
        return None
    return TxSigner(account=cfg.account or public_key_hex(seed), seed=seed)


def build_services(
    cfg: Optional[HippiusConfig] = None,
    *,
    ledger: Optional[LedgerClient] = None,
    gateway: Optional[ContentGateway] = None,
) -> HippiusServices:
    """
    Wire the read path (fetchers -> merger -> cache) and, when a signer is
    configured, the write path (tx -> credits gate -> upload pipeline).

    The ledger client is an external boundary. In dev mode an in-process
    ledger and gateway stand in; in prod a ledger client must be passed.
    """
    c = cfg or load_config()

    if ledger is None:
        if c.mode != "dev":
            raise RuntimeError("no ledger client configured (set HIPPIUS_MODE=dev for the in-process ledger)")
        ledger = InMemoryLedger()
    if gateway is None:
        gateway = InMemoryGateway() if c.mode == "dev" else GatewayClient(c)

    index = FileIndexService(
        index=OnChainIndexFetcher(ledger),
        manifests=ManifestFetcher(gateway, timeout_s=c.fetch_timeout_s),
        expander=UnassignedEntryExpander(gateway, timeout_s=c.fetch_timeout_s),
    )
    cache = SnapshotCache(index, ttl_s=c.cache_ttl_s)
    pending = PendingRegistry(stale_ms=int(c.pending_stale_s * 1000))
    refresher = BackgroundRefresher(cache, interval_s=c.refresh_interval_s)

    svc = HippiusServices(
        cfg=c,
        ledger=ledger,
        gateway=gateway,
        index=index,
        cache=cache,
        pending=pending,
        refresher=refresher,
    )

    signer = _signer(c)
    if signer is not None:
        svc.ledger_tx = LedgerTx(ledger, signer)
        svc.pipeline = UploadPipeline(
            gateway=gateway,
            ledger_tx=svc.ledger_tx,
            credits=CreditsGate(LedgerCreditsOracle(ledger), signer.account),
            cache=cache,
            pending=pending,
            concurrency=c.upload_concurrency,
        )
    return svc
