"""
Value movement between identities.

``ValueLedger`` is the external token ledger the core talks to. Transfers
either fully apply or return False; they never move part of an amount.
``ValueEscrow`` wraps a ledger on behalf of one custodian identity (the
directory or the market) and keeps a named hold per escrowed item.
"""

import threading
from collections import defaultdict
from typing import Hashable, Protocol

from swarmnode.errors import EscrowError, ValidationError
from swarmnode.logging import get_logger
from swarmnode.models import Identity

logger = get_logger("escrow")


class ValueLedger(Protocol):
    def transfer(self, source: Identity, destination: Identity, amount: int) -> bool:
        ...

    def transfer_from(
        self, spender: Identity, payer: Identity, payee: Identity, amount: int
    ) -> bool:
        ...


class InMemoryLedger:
    """Fungible balances with ERC-20 style allowances."""

    def __init__(self) -> None:
        self._balances: dict[Identity, int] = defaultdict(int)
        self._allowances: dict[tuple[Identity, Identity], int] = defaultdict(int)
        self._lock = threading.Lock()

    def mint(self, to: Identity, amount: int) -> None:
        if amount < 0:
            raise ValidationError("cannot mint a negative amount")
        with self._lock:
            self._balances[to] += amount

    def balance_of(self, owner: Identity) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: Identity, spender: Identity) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: Identity, spender: Identity, amount: int) -> None:
        if amount < 0:
            raise ValidationError("allowance cannot be negative")
        with self._lock:
            self._allowances[(owner, spender)] = amount

    def transfer(self, source: Identity, destination: Identity, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            if self._balances.get(source, 0) < amount:
                return False
            self._move(source, destination, amount)
        return True

    def transfer_from(
        self, spender: Identity, payer: Identity, payee: Identity, amount: int
    ) -> bool:
        if amount < 0:
            return False
        with self._lock:
            allowed = self._allowances.get((payer, spender), 0)
            if allowed < amount or self._balances.get(payer, 0) < amount:
                return False
            self._allowances[(payer, spender)] = allowed - amount
            self._move(payer, payee, amount)
        return True

    def _move(self, source: Identity, destination: Identity, amount: int) -> None:
        self._balances[source] -= amount
        self._balances[destination] += amount


class ValueEscrow:
    """
    Custody of value on behalf of one identity.

    Holds are keyed by whatever the owning component escrows for (a task
    id for the market). ``collect``/``pay`` move untracked value such as fees
    and rewards.
    """

    def __init__(self, ledger: ValueLedger, custodian: Identity):
        self.ledger = ledger
        self.custodian = custodian
        self._holds: dict[Hashable, int] = {}

    # ==================== Untracked Movement ====================

    def collect(self, payer: Identity, amount: int) -> None:
        """Pull ``amount`` from ``payer`` into custody using its allowance."""
        if amount == 0:
            return
        if not self.ledger.transfer_from(self.custodian, payer, self.custodian, amount):
            logger.debug("collect of %d from %s refused by ledger", amount, payer)
            raise EscrowError(f"could not collect {amount} from {payer}")

    def pay(self, payee: Identity, amount: int) -> None:
        """Send ``amount`` out of custody."""
        if amount == 0:
            return
        if not self.ledger.transfer(self.custodian, payee, amount):
            logger.debug("payment of %d to %s refused by ledger", amount, payee)
            raise EscrowError(f"could not pay {amount} to {payee}")

    # ==================== Holds ====================

    def hold(self, key: Hashable, payer: Identity, amount: int) -> None:
        """Collect ``amount`` from ``payer`` and book it under ``key``."""
        if key in self._holds:
            raise EscrowError(f"escrow {key!r} already exists")
        self.collect(payer, amount)
        self._holds[key] = amount

    def release(self, key: Hashable, payee: Identity) -> int:
        """Pay the whole hold for ``key`` to ``payee`` and zero it."""
        amount = self._holds.get(key)
        if amount is None:
            raise EscrowError(f"nothing held for {key!r}")
        self.pay(payee, amount)
        self._holds[key] = 0
        return amount

    def held(self, key: Hashable) -> int:
        return self._holds.get(key, 0)

    @property
    def total_held(self) -> int:
        return sum(self._holds.values())
