from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from hippius.errors import InsufficientCredits
from hippius.ledger.client import LedgerClient
from hippius.structured_logging import log_event

log = logging.getLogger("hippius.credits")


@runtime_checkable
class CreditsOracle(Protocol):
    def free_credits(self, account_id: str) -> Optional[int]: ...


class LedgerCreditsOracle:
    """Reads credits.freeCredits through the ledger client.

    Returns None when the ledger is not connected, the value is absent, or
    the query fails.
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    def free_credits(self, account_id: str) -> Optional[int]:
        if not self._ledger.is_connected():
            return None
        try:
            v = self._ledger.free_credits(account_id)
        except Exception as e:
            log_event(log, "free_credits_query_failed", level=logging.WARNING, account=account_id, error=str(e))
            return None
        if v is None:
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None


class CreditsGate:
    """Spendable-balance gate. ensure_spendable() is called once per uploaded item."""

    def __init__(self, oracle: CreditsOracle, account_id: str) -> None:
        self._oracle = oracle
        self._account_id = account_id

    @property
    def account_id(self) -> str:
        return self._account_id

    def check_balance(self) -> Optional[int]:
        return self._oracle.free_credits(self._account_id)

    def ensure_spendable(self) -> int:
        balance = self.check_balance()
        if balance is None or balance <= 0:
            raise InsufficientCredits(details={"account": self._account_id, "balance": balance})
        return balance
