from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass
class HippiusError(Exception):
    """Canonical error type for reconciliation and upload failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidCidEncoding(HippiusError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_cid_encoding", reason, details)


class LedgerUnavailable(HippiusError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("ledger_unavailable", reason, details)


class ManifestFetchFailed(HippiusError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("manifest_fetch_failed", reason, details)


class GatewayError(HippiusError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("gateway_error", reason, details)


class InsufficientCredits(HippiusError):
    def __init__(self, reason: str = "Insufficient Credits. Please add credits.", details: Any | None = None) -> None:
        super().__init__("insufficient_credits", reason, details)


class PipelineBusy(HippiusError):
    def __init__(self, reason: str = "upload already in progress", details: Any | None = None) -> None:
        super().__init__("pipeline_busy", reason, details)


# ---------------------------------------------------------------------------
# Ledger dispatch errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ModuleError:
    section: str
    name: str
    docs: str = ""

    def message(self) -> str:
        msg = f"{self.section}.{self.name}"
        return f"{msg}: {self.docs}" if self.docs else msg


@dataclass(frozen=True, slots=True)
class TokenError:
    token: str

    def message(self) -> str:
        return f"Token error: {self.token}"


@dataclass(frozen=True, slots=True)
class OtherError:
    text: str

    def message(self) -> str:
        return self.text or "Transaction failed"


LedgerError = Union[ModuleError, TokenError, OtherError]


def decode_dispatch_error(raw: Any) -> LedgerError:
    """Decode a ledger dispatch error into a LedgerError variant.

    Accepted shapes:
      - LedgerError instances (returned as-is)
      - {"module": {"section": ..., "name": ..., "docs": [...] | str}}
      - {"token": "..."}
      - anything else is stringified into OtherError
    """
    if isinstance(raw, (ModuleError, TokenError, OtherError)):
        return raw

    if isinstance(raw, dict):
        mod = raw.get("module")
        if isinstance(mod, dict):
            docs_any = mod.get("docs")
            if isinstance(docs_any, list):
                docs = " ".join(str(d) for d in docs_any if str(d).strip())
            else:
                docs = str(docs_any or "")
            return ModuleError(
                section=str(mod.get("section") or "unknown"),
                name=str(mod.get("name") or "unknown"),
                docs=docs.strip(),
            )
        tok = raw.get("token")
        if tok is not None:
            return TokenError(token=str(tok))
        msg = raw.get("message") or raw.get("error")
        if msg:
            return OtherError(text=str(msg))

    if raw is None:
        return OtherError(text="")
    return OtherError(text=str(raw))


class TransactionFailed(HippiusError):
    def __init__(self, error: LedgerError, details: Any | None = None) -> None:
        super().__init__("transaction_failed", error.message(), details)
        self.error = error

    @property
    def module_error(self) -> Optional[ModuleError]:
        return self.error if isinstance(self.error, ModuleError) else None
