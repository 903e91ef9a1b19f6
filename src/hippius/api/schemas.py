from __future__ import annotations

"""Pydantic request schemas for the files API.

Responses are plain JSON dicts built from the domain types' to_json().
"""

from typing import Optional

from pydantic import BaseModel, Field


class CidItem(BaseModel):
    name: str = Field(..., min_length=1, description="Display file name")
    cid: str = Field(..., min_length=1, description="Existing IPFS CID (Qm... / bafy...)")

    model_config = {"extra": "allow"}


class UnpinItem(BaseModel):
    cid: str = Field(..., min_length=1, description="CID to unpin")
    name: Optional[str] = Field(default=None, description="File name; looked up when omitted")

    model_config = {"extra": "allow"}


class CsvImportRequest(BaseModel):
    csv: str = Field(..., description="name,cid rows (header optional)")

    model_config = {"extra": "allow"}
