from __future__ import annotations

import hashlib
import json
import threading
from typing import Any, Dict, List, Optional, Tuple

from hippius.errors import GatewayError
from hippius.storage.gateway import AddResult, ProgressFn

_B58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def fake_cid(data: bytes) -> str:
    """Deterministic CIDv0-shaped identifier (Qm + 44 base58 chars)."""
    n = int.from_bytes(hashlib.sha256(data).digest(), "big")
    out: List[str] = []
    while len(out) < 44:
        n, r = divmod(n, 58)
        out.append(_B58[r])
    return "Qm" + "".join(out)


class InMemoryGateway:
    """
    Minimal in-process content store used for unit tests and dev mode.

    - add() is content-addressed: equal bytes give equal CIDs
    - every call is recorded in .calls as (op, arg)
    - failures are scriptable per name (add) or per CID (get)
    """

    def __init__(self, *, chunk_size: int = 0) -> None:
        self._lock = threading.Lock()
        self._objects: Dict[str, bytes] = {}
        self._chunk_size = int(chunk_size)
        self.calls: List[Tuple[str, str]] = []
        self.fail_add: Dict[str, Exception] = {}
        self.fail_get: Dict[str, Exception] = {}

    def add(self, *, name: str, data: bytes, on_progress: Optional[ProgressFn] = None) -> AddResult:
        with self._lock:
            self.calls.append(("add", name))
            err = self.fail_add.get(name)
        if err is not None:
            raise err

        step = self._chunk_size if self._chunk_size > 0 else max(1, len(data))
        if on_progress is not None:
            for i in range(0, len(data), step):
                on_progress(len(data[i : i + step]))

        cid = fake_cid(data)
        with self._lock:
            self._objects[cid] = bytes(data)
        return AddResult(cid=cid, name=name, size=len(data))

    def get_bytes(self, cid: str, *, timeout_s: float) -> bytes:
        with self._lock:
            self.calls.append(("get", cid))
            err = self.fail_get.get(cid)
            data = self._objects.get(cid)
        if err is not None:
            raise err
        if data is None:
            raise GatewayError("get_failed", {"cid": cid, "error": "http_404"})
        return data

    # ---- helpers for tests / harness ----

    def put_bytes(self, data: bytes, *, cid: Optional[str] = None) -> str:
        c = cid or fake_cid(data)
        with self._lock:
            self._objects[c] = bytes(data)
        return c

    def put_json(self, obj: Any, *, cid: Optional[str] = None) -> str:
        return self.put_bytes(json.dumps(obj, sort_keys=True).encode("utf-8"), cid=cid)

    def count(self, op: str) -> int:
        with self._lock:
            return sum(1 for o, _ in self.calls if o == op)
