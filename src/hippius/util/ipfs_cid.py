# src/hippius/util/ipfs_cid.py
from __future__ import annotations

"""CID codec and validation helpers.

The ledger stores a CID as raw bytes (usually the hex text of the CID string,
sometimes the CID string bytes themselves); the gateway speaks canonical CID
strings. Every value crossing that boundary goes through decode()/encode()
exactly once per direction.

Validation is lightweight:
  - CIDv0 (base58btc) starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) starts with "b" and uses a-z2-7.

This is NOT a full multiformats parser.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Union

from hippius.errors import InvalidCidEncoding

CID_PREFIXES = ("Qm", "baf")

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafy..., bafk...)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

RawCid = Union[str, bytes, bytearray, Iterable[int]]


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def has_cid_prefix(s: str) -> bool:
    return s.startswith(CID_PREFIXES)


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def _as_text(raw: RawCid) -> str:
    if isinstance(raw, str):
        return raw
    try:
        b = bytes(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidCidEncoding("unsupported_input", type(raw).__name__) from e
    try:
        return b.decode("ascii")
    except UnicodeDecodeError as e:
        raise InvalidCidEncoding("non_ascii_bytes", b[:16].hex()) from e


def decode(raw: RawCid) -> str:
    """Decode a ledger CID field into its canonical string form.

    Accepts hex text (optionally 0x-prefixed), the ASCII bytes of that hex
    text, or the CID string / its bytes. Raises InvalidCidEncoding unless the
    result starts with a recognized CID prefix.
    """
    s = _as_text(raw).strip()
    # A canonical CIDv1 can be made only of hex digits ("baf" + a-f, 2-7).
    if has_cid_prefix(s) and validate_ipfs_cid(s).ok:
        return s
    if s[:2] in {"0x", "0X"}:
        s = s[2:]
    if not s:
        raise InvalidCidEncoding("empty")

    if _HEX_RE.match(s):
        if len(s) % 2:
            raise InvalidCidEncoding("odd_length_hex", s[:32])
        try:
            out = bytes.fromhex(s).decode("ascii")
        except UnicodeDecodeError as e:
            raise InvalidCidEncoding("non_ascii_cid", s[:32]) from e
    else:
        out = s

    if not has_cid_prefix(out):
        raise InvalidCidEncoding("unrecognized_prefix", out[:32])
    return out


def encode(name: str) -> bytes:
    """UTF-8 encode a CID (or file name) for transmission to the ledger."""
    return str(name).encode("utf-8")


def to_hex(name: str) -> str:
    return "0x" + encode(name).hex()


def decode_text(raw: RawCid | None) -> str:
    """Decode a bounded byte vector (file name, miner id) into display text.

    Bytes decode as UTF-8 and fall back to hex. Strings are returned as-is
    unless 0x-prefixed hex, which is decoded the same way.
    """
    if raw is None:
        return ""
    if isinstance(raw, str):
        s = raw.strip()
        if s[:2] in {"0x", "0X"} and _HEX_RE.match(s[2:] or "z") and len(s) % 2 == 0:
            b = bytes.fromhex(s[2:])
        else:
            return s
    else:
        try:
            b = bytes(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return str(raw)
    try:
        return b.decode("utf-8")
    except UnicodeDecodeError:
        return b.hex()
