from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

Json = Dict[str, Any]

Cid = str
AccountId = str
BlockNumber = int


@dataclass(frozen=True, slots=True)
class StorageRequestRecord:
    """On-chain truth for one requested object."""

    cid: Cid
    file_name: str
    created_at: BlockNumber
    is_assigned: bool
    last_charged_at: BlockNumber
    miner_ids: Tuple[str, ...] = field(default_factory=tuple)
    file_size_bytes: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """Off-chain truth for one file inside the user's manifest."""

    cid: Cid
    file_name: str
    size_bytes: Optional[int]
    created_at: BlockNumber
    is_assigned: bool
    last_charged_at: BlockNumber
    miner_ids: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class PendingLocal:
    """Local-only marker for an upload not yet visible on either source."""

    since_ms: int


class EntrySource(str, Enum):
    ON_CHAIN = "on_chain"
    MANIFEST = "manifest"
    LOCAL = "local"


@dataclass(frozen=True, slots=True)
class FileEntry:
    name: str
    cid: Cid
    size_bytes: Optional[int]
    created_at: BlockNumber
    is_assigned: bool
    last_charged_at: BlockNumber
    miner_ids: Tuple[str, ...] = field(default_factory=tuple)
    source: EntrySource = EntrySource.ON_CHAIN
    pending_upload: Optional[PendingLocal] = None

    @property
    def confirmed(self) -> bool:
        return self.pending_upload is None

    @classmethod
    def from_record(cls, rec: StorageRequestRecord) -> "FileEntry":
        return cls(
            name=rec.file_name or "Unnamed File",
            cid=rec.cid,
            size_bytes=rec.file_size_bytes,
            created_at=int(rec.created_at),
            is_assigned=bool(rec.is_assigned),
            last_charged_at=int(rec.last_charged_at),
            miner_ids=tuple(rec.miner_ids),
            source=EntrySource.ON_CHAIN,
        )

    @classmethod
    def from_manifest(cls, ent: ManifestEntry) -> "FileEntry":
        return cls(
            name=ent.file_name or "Unnamed File",
            cid=ent.cid,
            size_bytes=ent.size_bytes,
            created_at=int(ent.created_at),
            is_assigned=bool(ent.is_assigned),
            last_charged_at=int(ent.last_charged_at),
            miner_ids=tuple(ent.miner_ids),
            source=EntrySource.MANIFEST,
        )

    def with_updates(self, **changes: Any) -> "FileEntry":
        return replace(self, **changes)

    def to_json(self) -> Json:
        return {
            "name": self.name,
            "cid": self.cid,
            "size": self.size_bytes,
            "createdAt": int(self.created_at),
            "isAssigned": bool(self.is_assigned),
            "lastChargedAt": int(self.last_charged_at),
            "minerIds": list(self.miner_ids),
            "source": self.source.value,
            "pendingUpload": (
                {"uploadTime": int(self.pending_upload.since_ms)} if self.pending_upload is not None else None
            ),
        }


@dataclass(frozen=True, slots=True)
class ReconciledSnapshot:
    """Immutable result of one reconciliation cycle."""

    account: AccountId
    files: Tuple[FileEntry, ...]
    total_stored_bytes: int
    fetched_at_ms: int
    manifest_cid: Optional[Cid] = None
    degraded: bool = False

    @property
    def length(self) -> int:
        return len(self.files)

    def by_cid(self) -> Dict[Cid, FileEntry]:
        return {f.cid: f for f in self.files}

    def to_json(self) -> Json:
        return {
            "account": self.account,
            "files": [f.to_json() for f in self.files],
            "totalStorageSize": int(self.total_stored_bytes),
            "length": len(self.files),
            "fetchedAtMs": int(self.fetched_at_ms),
            "manifestCid": self.manifest_cid,
            "degraded": bool(self.degraded),
        }
