# src/hippius/storage/gateway.py
from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from io import BytesIO
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from hippius.config import HippiusConfig
from hippius.errors import GatewayError
from hippius.metrics import inc_counter
from hippius.structured_logging import log_event

Json = Dict[str, Any]

# Called with the number of payload bytes just sent.
ProgressFn = Callable[[int], None]

log = logging.getLogger("hippius.gateway")

_CHUNK = 1024 * 256

DEFAULT_GATEWAY_BASE = "https://get.hippius.network"


@dataclass(frozen=True, slots=True)
class AddResult:
    cid: str
    name: str
    size: int


@runtime_checkable
class ContentGateway(Protocol):
    def add(self, *, name: str, data: bytes, on_progress: Optional[ProgressFn] = None) -> AddResult: ...

    def get_bytes(self, cid: str, *, timeout_s: float) -> bytes: ...


def parse_add_response(raw: bytes) -> AddResult:
    """
    /api/v0/add returns NDJSON (one JSON per line).

    The file is the first object. With wrap-with-directory the wrapping
    directory follows it; that CID is not used since it does not resolve to
    the file bytes through /ipfs/{cid}.
    """
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise GatewayError("add_failed", "empty_response")

    objs: List[Json] = []
    for line in txt.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if isinstance(obj, dict) and str(obj.get("Hash") or "").strip():
            objs.append(obj)

    if not objs:
        raise GatewayError("add_failed", f"bad_response:{txt[:200]}")

    named = objs[0]

    try:
        size = int(str(named.get("Size") or "0").strip())
    except ValueError:
        size = 0

    return AddResult(
        cid=str(named.get("Hash")).strip(),
        name=str(named.get("Name") or ""),
        size=size,
    )


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


class GatewayClient:
    """IPFS HTTP client.

    Writes go to the node API (/api/v0/add); reads go to the public gateway
    (/ipfs/{cid}).
    """

    BOUNDARY = "----hippius-ipfs-boundary-4c1d9e07b2a84f31"

    def __init__(self, cfg: HippiusConfig) -> None:
        self._api_base = cfg.ipfs_api_base.rstrip("/")
        self._gateway_base = cfg.ipfs_gateway_base.rstrip("/")
        self._upload_timeout_s = float(cfg.upload_timeout_s)

    def gateway_url(self, cid: str) -> str:
        return ipfs_gateway_url(cid, self._gateway_base)

    def _connect(self) -> Tuple[http.client.HTTPConnection, str, str]:
        u = urllib.parse.urlparse(self._api_base)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))
        conn: http.client.HTTPConnection
        if scheme == "https":
            conn = http.client.HTTPSConnection(host, port, timeout=self._upload_timeout_s)
        else:
            conn = http.client.HTTPConnection(host, port, timeout=self._upload_timeout_s)
        return conn, host, (u.path or "").rstrip("/")

    def add_fileobj(self, *, name: str, fileobj: BinaryIO, on_progress: Optional[ProgressFn] = None) -> AddResult:
        """
        Stream a file-like object to IPFS via the HTTP API without loading it into memory.

        Uses chunked transfer encoding; on_progress is called after each payload chunk.
        """
        qs = urllib.parse.urlencode(
            {
                "recursive": "true",
                "wrap-with-directory": "true",
                "pin": "true",
                "progress": "false",
            }
        )
        conn, host, prefix = self._connect()
        filename = (name or "upload").strip() or "upload"

        preamble = (
            f"--{self.BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{urllib.parse.quote(filename)}"\r\n'
            f"Content-Type: application/octet-stream\r\n"
            f"\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{self.BOUNDARY}--\r\n".encode("utf-8")

        inc_counter("gateway_add_total", 1)
        try:
            conn.putrequest("POST", f"{prefix}/api/v0/add?{qs}")
            conn.putheader("Host", host)
            conn.putheader("Content-Type", f"multipart/form-data; boundary={self.BOUNDARY}")
            conn.putheader("Transfer-Encoding", "chunked")
            conn.endheaders()

            _send_chunk(conn, preamble)
            while True:
                chunk = fileobj.read(_CHUNK)
                if not chunk:
                    break
                _send_chunk(conn, chunk)
                if on_progress is not None:
                    on_progress(len(chunk))
            _send_chunk(conn, epilogue)
            _finish_chunks(conn)

            resp = conn.getresponse()
            body = resp.read()
        except (OSError, http.client.HTTPException) as e:
            log_event(log, "gateway_add_failed", level=logging.WARNING, name=filename, error=str(e))
            raise GatewayError("add_failed", str(e)) from e
        finally:
            conn.close()

        if resp.status < 200 or resp.status >= 300:
            msg = body.decode("utf-8", errors="replace").strip()
            raise GatewayError("add_failed", f"http_{resp.status}:{msg[:300]}")

        return parse_add_response(body)

    def add(self, *, name: str, data: bytes, on_progress: Optional[ProgressFn] = None) -> AddResult:
        return self.add_fileobj(name=name, fileobj=BytesIO(data), on_progress=on_progress)

    def get_bytes(self, cid: str, *, timeout_s: float) -> bytes:
        url = self.gateway_url(cid)
        if not url:
            raise GatewayError("get_failed", "missing_cid")
        req = urllib.request.Request(url=url, method="GET")
        try:
            with urllib.request.urlopen(req, timeout=timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise GatewayError("get_failed", {"cid": cid, "error": f"http_{e.code}"}) from e
        except (urllib.error.URLError, socket.timeout, OSError, http.client.HTTPException) as e:
            raise GatewayError("get_failed", {"cid": cid, "error": str(e)}) from e
        if status < 200 or status >= 300:
            raise GatewayError("get_failed", {"cid": cid, "error": f"http_{status}"})
        return body

    def get_json(self, cid: str, *, timeout_s: float) -> Any:
        raw = self.get_bytes(cid, timeout_s=timeout_s)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise GatewayError("bad_json", {"cid": cid, "error": str(e)}) from e


def ipfs_gateway_url(cid: str, base: str = DEFAULT_GATEWAY_BASE) -> str:
    """Public gateway URL for a CID ("" for an empty CID)."""
    cid = (cid or "").strip()
    if not cid:
        return ""
    return f"{base.rstrip('/')}/ipfs/{cid}"
