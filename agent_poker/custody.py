"""Custody interface: moves buy-ins into a table escrow and pays out of it.

The engine treats custody as a synchronous collaborator that either
completes a transfer or raises ``CustodyError``.  ``LedgerCustody`` is an
in-process balance ledger; ``StagedCustody`` seeds one from the balances the
table manager keeps in Redis and reports the net changes to commit.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from agent_poker.errors import PokerError

logger = logging.getLogger(__name__)


class CustodyError(PokerError):
    status_code = 502
    default_message = "Custody transfer failed"


def escrow_account(table_id: int) -> str:
    return f"escrow:{table_id}"


class Custody(ABC):
    @abstractmethod
    def deposit(self, source: str, escrow: str, amount: int) -> None:
        """Move *amount* from a funding principal into *escrow*."""

    @abstractmethod
    def payout(self, escrow: str, destination: str, amount: int) -> None:
        """Move *amount* out of *escrow* to *destination*."""


class LedgerCustody(Custody):
    """Balance ledger keyed by account identity."""

    def __init__(self, balances: Optional[dict[str, int]] = None) -> None:
        self._balances: dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()

    def balance(self, account: str) -> int:
        return self._balances.get(account, 0)

    def credit(self, account: str, amount: int) -> None:
        """Fund an account from outside the ledger (faucet / test setup)."""
        if amount <= 0:
            raise CustodyError("Credit amount must be positive")
        with self._lock:
            self._balances[account] = self.balance(account) + amount

    def _transfer(self, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise CustodyError("Transfer amount must be positive")
        with self._lock:
            available = self.balance(source)
            if available < amount:
                raise CustodyError(
                    f"Insufficient funds in {source}: {available} < {amount}"
                )
            self._balances[source] = available - amount
            self._balances[destination] = self.balance(destination) + amount
        logger.debug("Ledger transfer %s -> %s: %d", source, destination, amount)

    def deposit(self, source: str, escrow: str, amount: int) -> None:
        self._transfer(source, escrow, amount)

    def payout(self, escrow: str, destination: str, amount: int) -> None:
        self._transfer(escrow, destination, amount)


class StagedCustody(LedgerCustody):
    """Ledger seeded from stored balances that only records net changes.

    The table manager commits ``deltas()`` in the same Redis transaction as
    the table write, so a transfer never lands without its seat update.
    """

    def __init__(self, balances: Optional[dict[str, int]] = None) -> None:
        super().__init__(balances)
        self._initial: dict[str, int] = dict(self._balances)

    def deltas(self) -> dict[str, int]:
        changes = {}
        for account, amount in self._balances.items():
            delta = amount - self._initial.get(account, 0)
            if delta:
                changes[account] = delta
        return changes


_custody: Optional[Custody] = None


def get_custody() -> Custody:
    global _custody
    if _custody is None:
        _custody = LedgerCustody()
    return _custody


def set_custody(custody: Optional[Custody]) -> None:
    global _custody
    _custody = custody
