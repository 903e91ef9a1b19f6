from __future__ import annotations

import pytest

from hippius.errors import InvalidCidEncoding
from hippius.storage.gateway_memory import fake_cid
from hippius.util import ipfs_cid

CID_V0 = fake_cid(b"hello")
CID_V1 = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def test_decode_hex_with_and_without_prefix() -> None:
    hx = CID_V0.encode("ascii").hex()
    assert ipfs_cid.decode("0x" + hx) == CID_V0
    assert ipfs_cid.decode(hx) == CID_V0
    assert ipfs_cid.decode("0X" + hx.upper()) == CID_V0


def test_decode_accepts_bytes_and_int_lists() -> None:
    hx = CID_V1.encode("ascii").hex()
    assert ipfs_cid.decode(hx.encode("ascii")) == CID_V1
    assert ipfs_cid.decode(list(hx.encode("ascii"))) == CID_V1
    assert ipfs_cid.decode(CID_V1.encode("ascii")) == CID_V1


def test_decode_is_idempotent_for_canonical_strings() -> None:
    assert ipfs_cid.decode(CID_V0) == CID_V0
    assert ipfs_cid.decode(ipfs_cid.decode(CID_V1)) == CID_V1


def test_encode_then_decode_is_identity() -> None:
    for cid in (CID_V0, CID_V1):
        assert ipfs_cid.decode(ipfs_cid.encode(cid)) == cid
        assert ipfs_cid.decode(ipfs_cid.to_hex(cid)) == cid


@pytest.mark.parametrize(
    "raw, reason",
    [
        ("", "empty"),
        ("0x", "empty"),
        ("0xabc", "odd_length_hex"),
        ("deadbeef", "non_ascii_cid"),
        ("hello-world", "unrecognized_prefix"),
        ("0x" + "zz-file".encode().hex(), "unrecognized_prefix"),
        (b"\xff\xfe", "non_ascii_bytes"),
    ],
)
def test_decode_rejects_bad_input(raw, reason: str) -> None:
    with pytest.raises(InvalidCidEncoding) as ei:
        ipfs_cid.decode(raw)
    assert ei.value.code == "invalid_cid_encoding"
    assert ei.value.reason == reason


def test_validate_ipfs_cid_shapes() -> None:
    assert ipfs_cid.validate_ipfs_cid(CID_V0).ok
    assert ipfs_cid.validate_ipfs_cid(CID_V1).ok
    assert ipfs_cid.validate_ipfs_cid("").reason == "missing_cid"
    assert ipfs_cid.validate_ipfs_cid("Qm123").reason == "invalid_cid_format"
    assert ipfs_cid.validate_ipfs_cid("b" * 200).reason == "cid_too_long"


def test_decode_text_handles_bytes_hex_and_plain() -> None:
    assert ipfs_cid.decode_text(b"report.pdf") == "report.pdf"
    assert ipfs_cid.decode_text(ipfs_cid.to_hex("notes.txt")) == "notes.txt"
    assert ipfs_cid.decode_text("plain name") == "plain name"
    assert ipfs_cid.decode_text(None) == ""
    assert ipfs_cid.decode_text(b"\xff\x00") == "ff00"


def test_decode_keeps_base32_cid_made_only_of_hex_digits() -> None:
    cid = "bafabcdef234567" + "abcdef" * 6
    assert ipfs_cid.validate_ipfs_cid(cid).ok
    assert ipfs_cid.decode(cid) == cid
    assert ipfs_cid.decode(ipfs_cid.encode(cid)) == cid
    assert ipfs_cid.decode(ipfs_cid.to_hex(cid)) == cid
