"""
Ledger client boundary.

The ledger (a Substrate-style chain) is an external collaborator. The core
only talks to it through LedgerClient: a handful of storage queries plus a
submit-and-watch call that yields status updates for one signed call.

Raw query results stay stringly/bytes-typed here. Decoding into domain
records happens once, in index_fetcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, Union, runtime_checkable

Json = Dict[str, Any]

RawBytes = Union[str, bytes, List[int]]

# Status stages reported by submit_and_watch().
STAGE_READY = "ready"
STAGE_IN_BLOCK = "in_block"
STAGE_FINALIZED = "finalized"
STAGE_DROPPED = "dropped"
STAGE_INVALID = "invalid"

INCLUDED_STAGES = frozenset({STAGE_IN_BLOCK, STAGE_FINALIZED})
TERMINAL_FAILURE_STAGES = frozenset({STAGE_DROPPED, STAGE_INVALID})

EXTRINSIC_SUCCESS = "ExtrinsicSuccess"
EXTRINSIC_FAILED = "ExtrinsicFailed"


@dataclass(frozen=True, slots=True)
class TxEvent:
    """One runtime event emitted while the call was included."""

    section: str
    method: str
    data: Json = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.section == "system" and self.method == EXTRINSIC_SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.section == "system" and self.method == EXTRINSIC_FAILED


@dataclass(frozen=True, slots=True)
class TxStatus:
    stage: str
    tx_hash: str = ""
    block_hash: Optional[str] = None
    events: Tuple[TxEvent, ...] = field(default_factory=tuple)
    # Raw dispatch error as reported by the client (module/token/string).
    dispatch_error: Any = None

    @property
    def included(self) -> bool:
        return self.stage in INCLUDED_STAGES


@runtime_checkable
class LedgerClient(Protocol):
    """Narrow surface of the ledger the core depends on.

    Raw storage request shape (extra keys allowed):
      {
        "file_hash": hex text | bytes,
        "file_name": bytes | 0x-hex,
        "owner": str,
        "is_assigned": bool,
        "created_at": int,
        "last_charged_at": int,
        "miner_ids": [bytes | str, ...] | None,
      }
    """

    def is_connected(self) -> bool: ...

    def storage_requests(self, account_id: str) -> List[Json]: ...

    def user_total_files_size(self, account_id: str) -> Optional[int]: ...

    def user_profile(self, account_id: str) -> Optional[RawBytes]: ...

    def free_credits(self, account_id: str) -> Optional[int]: ...

    def next_nonce(self, account_id: str) -> int: ...

    def submit_and_watch(self, envelope: Json) -> Iterator[TxStatus]: ...
