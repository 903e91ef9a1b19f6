# src/hippius/crypto/sig.py
from __future__ import annotations

import base64
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if s[:2] in {"0x", "0X"}:
        s = s[2:]
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def _private_key(privkey: str) -> Ed25519PrivateKey:
    pk_b = _decode_bytes(privkey)
    # 64-byte expanded keys carry the seed in the first half.
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(pk_b)


def canonical_call_message(*, pallet: str, call: str, signer: str, nonce: int, args: Json) -> bytes:
    obj: Json = {
        "pallet": str(pallet),
        "call": str(call),
        "signer": str(signer),
        "nonce": int(nonce),
        "args": args if isinstance(args, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def public_key_hex(privkey: str) -> str:
    key = _private_key(privkey).public_key()
    return key.public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing 32-byte seed or 64-byte private key.
    encoding: "hex" (default) or "b64".
    """
    sig_b = _private_key(privkey).sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(_decode_bytes(pubkey))
        key.verify(_decode_bytes(sig), message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_call_envelope(*, pallet: str, call: str, signer: str, nonce: int, args: Json, privkey: str) -> Json:
    """Return a signed call envelope ready for LedgerClient.submit_and_watch().

    Shape:
      {"pallet", "call", "signer", "nonce", "args", "pubkey", "sig"}
    """
    msg = canonical_call_message(pallet=pallet, call=call, signer=signer, nonce=nonce, args=args)
    return {
        "pallet": str(pallet),
        "call": str(call),
        "signer": str(signer),
        "nonce": int(nonce),
        "args": args,
        "pubkey": public_key_hex(privkey),
        "sig": sign_ed25519(message=msg, privkey=privkey),
    }


def verify_call_envelope(envelope: Json) -> bool:
    msg = canonical_call_message(
        pallet=str(envelope.get("pallet") or ""),
        call=str(envelope.get("call") or ""),
        signer=str(envelope.get("signer") or ""),
        nonce=int(envelope.get("nonce") or 0),
        args=envelope.get("args") if isinstance(envelope.get("args"), dict) else {},
    )
    return verify_ed25519_signature(
        message=msg,
        sig=str(envelope.get("sig") or ""),
        pubkey=str(envelope.get("pubkey") or ""),
    )
