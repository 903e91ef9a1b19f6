"""Batch CID registration from a two-column `name,cid` CSV."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from typing import List, Tuple

from hippius.upload.pipeline import ExistingCid

CSV_CID_PREFIXES = ("Qm", "bafk", "bafy")


@dataclass(frozen=True, slots=True)
class CsvImportResult:
    entries: Tuple[ExistingCid, ...]
    invalid_lines: Tuple[str, ...] = field(default_factory=tuple)


def _split_row(line: str) -> List[str]:
    if '"' not in line:
        return line.split(",")
    return next(csv.reader([line], skipinitialspace=False), [])


def parse_cid_csv(text: str) -> CsvImportResult:
    """Parse CSV text into registrable (name, cid) items.

    Blank lines are ignored. A first line mentioning both "name" and "cid"
    is a header. Rows without a name, or whose CID does not start with a
    known prefix, are reported as "Line N: <row>" (N counts non-blank lines).
    """
    lines = [ln for ln in (text or "").splitlines() if ln.strip()]
    if not lines:
        return CsvImportResult(entries=())

    first = lines[0].lower()
    start = 1 if ("name" in first and "cid" in first) else 0

    entries: List[ExistingCid] = []
    invalid: List[str] = []
    for i in range(start, len(lines)):
        line = lines[i].strip()
        parts = _split_row(line)
        name = parts[0].strip() if len(parts) > 0 else ""
        cid = parts[1].strip() if len(parts) > 1 else ""

        if not name or not cid.startswith(CSV_CID_PREFIXES):
            invalid.append(f"Line {i + 1}: {line}")
            continue
        entries.append(ExistingCid(name=name, cid=cid))

    return CsvImportResult(entries=tuple(entries), invalid_lines=tuple(invalid))
