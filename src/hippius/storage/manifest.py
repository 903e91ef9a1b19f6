"""
Manifest + info-object fetchers.

Manifest: the user's off-chain file collection, a JSON list stored on the
gateway under the CID the ledger profile points at. Entries use the wire keys
written by the profile sync (file_hash, file_name, file_size_in_bytes, ...).

Info object: the small JSON object uploaded with every batch, listing the
batch's {filename, cid} pairs. An unassigned storage request points at one;
expanding it yields the files the request actually covers.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from hippius.errors import GatewayError, InvalidCidEncoding, ManifestFetchFailed
from hippius.metrics import inc_counter
from hippius.models import EntrySource, FileEntry, ManifestEntry, StorageRequestRecord
from hippius.storage.gateway import ContentGateway
from hippius.structured_logging import log_event
from hippius.util import ipfs_cid

log = logging.getLogger("hippius.manifest")

DEFAULT_FETCH_TIMEOUT_S = 120.0


class ManifestEntryWire(BaseModel):
    """One manifest row as stored on the gateway."""

    file_hash: Optional[Union[str, List[int]]] = Field(default=None, validation_alias=AliasChoices("file_hash", "fileHash"))
    cid: Optional[str] = None
    file_name: str = Field(default="", validation_alias=AliasChoices("file_name", "fileName", "filename"))
    file_size_in_bytes: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("file_size_in_bytes", "fileSizeInBytes", "size")
    )
    is_assigned: bool = Field(default=False, validation_alias=AliasChoices("is_assigned", "isAssigned"))
    last_charged_at: int = Field(default=0, validation_alias=AliasChoices("last_charged_at", "lastChargedAt"))
    created_at: Optional[int] = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    miner_ids: Optional[List[Union[str, List[int]]]] = Field(
        default=None, validation_alias=AliasChoices("miner_ids", "minerIds")
    )
    selected_validator: Optional[str] = None

    # Any extra fields are ignored (forward compatible)
    model_config = {"extra": "allow"}


class InfoItemWire(BaseModel):
    filename: str = Field(validation_alias=AliasChoices("filename", "file_name", "fileName", "name"))
    cid: str

    model_config = {"extra": "allow"}


def _rows(obj: Any) -> Optional[List[Any]]:
    if isinstance(obj, list):
        return obj
    if isinstance(obj, dict) and isinstance(obj.get("files"), list):
        return obj["files"]
    return None


def manifest_entry_from_wire(w: ManifestEntryWire) -> ManifestEntry:
    """Raises InvalidCidEncoding when neither cid nor file_hash decodes."""
    if w.cid and ipfs_cid.has_cid_prefix(w.cid.strip()):
        cid = w.cid.strip()
    else:
        cid = ipfs_cid.decode(w.file_hash or w.cid or "")

    miners: List[str] = []
    for m in w.miner_ids or []:
        s = ipfs_cid.decode_text(m)
        if s and s not in miners:
            miners.append(s)
    if w.selected_validator and w.selected_validator not in miners:
        miners.append(w.selected_validator)

    return ManifestEntry(
        cid=cid,
        file_name=ipfs_cid.decode_text(w.file_name),
        size_bytes=w.file_size_in_bytes,
        created_at=int(w.created_at if w.created_at is not None else w.last_charged_at),
        is_assigned=bool(w.is_assigned),
        last_charged_at=int(w.last_charged_at),
        miner_ids=tuple(miners),
    )


def parse_manifest(raw: bytes) -> List[ManifestEntry]:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ManifestFetchFailed("malformed_json", str(e)) from e

    rows = _rows(obj)
    if rows is None:
        raise ManifestFetchFailed("not_a_list", type(obj).__name__)

    out: List[ManifestEntry] = []
    for i, row in enumerate(rows):
        try:
            out.append(manifest_entry_from_wire(ManifestEntryWire.model_validate(row)))
        except (ValidationError, InvalidCidEncoding) as e:
            log_event(log, "manifest_row_skipped", level=logging.WARNING, index=i, error=str(e)[:300])
    return out


class ManifestFetcher:
    def __init__(self, gateway: ContentGateway, *, timeout_s: float = DEFAULT_FETCH_TIMEOUT_S) -> None:
        self._gateway = gateway
        self._timeout_s = float(timeout_s)

    def fetch_manifest(self, cid: str) -> List[ManifestEntry]:
        try:
            raw = self._gateway.get_bytes(cid, timeout_s=self._timeout_s)
        except GatewayError as e:
            raise ManifestFetchFailed("gateway_error", {"cid": cid, "error": str(e)}) from e
        except Exception as e:
            raise ManifestFetchFailed("io_error", {"cid": cid, "error": f"{type(e).__name__}: {e}"}) from e
        return parse_manifest(raw)


def parse_info_object(raw: bytes) -> List[InfoItemWire]:
    """Raises ValueError / ValidationError / InvalidCidEncoding on anything unexpected."""
    obj = json.loads(raw.decode("utf-8"))
    rows = _rows(obj)
    if rows is None:
        raise ValueError("info object is not a list")
    items = [InfoItemWire.model_validate(r) for r in rows]
    for it in items:
        ipfs_cid.decode(it.cid)
    return items


class UnassignedEntryExpander:
    """Expands unassigned storage requests through their info objects.

    A record whose info object cannot be fetched or parsed is emitted as a
    single entry built from the record itself. Records are never dropped.
    """

    def __init__(self, gateway: ContentGateway, *, timeout_s: float = DEFAULT_FETCH_TIMEOUT_S) -> None:
        self._gateway = gateway
        self._timeout_s = float(timeout_s)

    def expand(self, rec: StorageRequestRecord) -> List[FileEntry]:
        try:
            raw = self._gateway.get_bytes(rec.cid, timeout_s=self._timeout_s)
            items = parse_info_object(raw)
        except Exception as e:
            inc_counter("info_expand_failed_total", 1)
            log_event(log, "info_expand_fallback", cid=rec.cid, error=f"{type(e).__name__}: {e}"[:300])
            return [FileEntry.from_record(rec)]

        return [
            FileEntry(
                name=it.filename or rec.file_name or "Unnamed File",
                cid=ipfs_cid.decode(it.cid),
                size_bytes=None,
                created_at=int(rec.created_at),
                is_assigned=bool(rec.is_assigned),
                last_charged_at=int(rec.last_charged_at),
                miner_ids=tuple(rec.miner_ids),
                source=EntrySource.ON_CHAIN,
            )
            for it in items
        ]

    def expand_all(self, records: List[StorageRequestRecord]) -> List[FileEntry]:
        out: List[FileEntry] = []
        for rec in records:
            out.extend(self.expand(rec))
        return out
