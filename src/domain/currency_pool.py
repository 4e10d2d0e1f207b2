from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterator

from pydantic import BaseModel

from .cost_basis import CostBasis, CostComponent, Pending
from .ledger import ACCOUNT_PRIORITY, Account, Currency

logger = logging.getLogger(__name__)


class InsufficientQuantityError(Exception):
    def __init__(
        self,
        *,
        currency: str,
        account: Account,
        requested: Decimal,
        available: Decimal,
    ) -> None:
        self.currency = currency
        self.account = account
        self.requested = requested
        self.available = available
        message = (
            f"Insufficient quantity for currency={currency} account={account} "
            f"requested={requested} available={available}"
        )
        super().__init__(message)


class PoolInvariantError(Exception):
    """Pool state that can not happen with a correct caller; processing must stop."""


class PoolSnapshot(BaseModel):
    currency: Currency
    account: Account
    total_quantity: Decimal
    total_cost: Decimal
    average_unit_cost: Decimal | None
    pending: tuple[Pending, ...]


class CurrencyPool:
    """Running average-cost accumulator for one currency in one account."""

    def __init__(self, currency: Currency, account: Account) -> None:
        self.currency = currency
        self.account = account
        self._quantity = Decimal(0)
        self._basis = CostBasis()

    @property
    def total_quantity(self) -> Decimal:
        return self._quantity

    @property
    def total_cost(self) -> Decimal:
        """Fiat-settled part of the cost of the held units."""
        return self._basis.fiat

    @property
    def cost_basis(self) -> CostBasis:
        return self._basis

    @property
    def average_unit_cost(self) -> Decimal | None:
        if self._quantity == 0:
            return None
        return self._basis.fiat / self._quantity

    def credit(self, quantity: Decimal, cost: CostBasis | CostComponent) -> None:
        if quantity < 0:
            raise PoolInvariantError(f"Negative credit of {quantity} into {self.currency}/{self.account}")
        if not isinstance(cost, CostBasis):
            cost = CostBasis.of([cost])
        self._quantity += quantity
        self._basis = self._basis + cost

    def debit(self, quantity: Decimal) -> CostBasis:
        """Remove `quantity` units at the current average cost and return the removed cost."""
        if quantity < 0:
            raise PoolInvariantError(f"Negative debit of {quantity} from {self.currency}/{self.account}")
        if quantity > self._quantity:
            raise InsufficientQuantityError(
                currency=self.currency,
                account=self.account,
                requested=quantity,
                available=self._quantity,
            )
        if quantity == 0:
            return CostBasis()

        if quantity == self._quantity:
            removed = self._basis
            self._quantity = Decimal(0)
            self._basis = CostBasis()
            return removed

        fraction = quantity / self._quantity
        average = self._basis.fiat / self._quantity
        removed_fiat = min(quantity * average, self._basis.fiat)
        removed_pending = tuple(component.scaled(fraction) for component in self._basis.pending)
        remaining_pending = CostBasis.of(
            Pending(
                currency=component.currency,
                quantity=max(component.quantity - taken.quantity, Decimal(0)),
                timestamp=component.timestamp,
            )
            for component, taken in zip(self._basis.pending, removed_pending)
        ).pending

        self._quantity -= quantity
        self._basis = CostBasis(fiat=self._basis.fiat - removed_fiat, pending=remaining_pending)
        if self._quantity < 0 or self._basis.fiat < 0:
            raise PoolInvariantError(
                f"Pool {self.currency}/{self.account} went negative: "
                f"quantity={self._quantity} cost={self._basis.fiat}"
            )
        return CostBasis(fiat=removed_fiat, pending=removed_pending)

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            currency=self.currency,
            account=self.account,
            total_quantity=self._quantity,
            total_cost=self._basis.fiat,
            average_unit_cost=self.average_unit_cost,
            pending=self._basis.pending,
        )


class PoolRegistry:
    """Owns every CurrencyPool of a run, keyed by (currency, account)."""

    def __init__(self) -> None:
        self._pools: dict[tuple[Currency, Account], CurrencyPool] = {}

    def get_or_create(self, currency: Currency, account: Account) -> CurrencyPool:
        key = (currency, account)
        pool = self._pools.get(key)
        if pool is None:
            pool = CurrencyPool(currency, account)
            self._pools[key] = pool
        return pool

    def available(self, currency: Currency, account: Account) -> Decimal:
        pool = self._pools.get((currency, account))
        return pool.total_quantity if pool is not None else Decimal(0)

    def total_available(self, currency: Currency) -> Decimal:
        return sum((self.available(currency, account) for account in ACCOUNT_PRIORITY), start=Decimal(0))

    def credit(self, currency: Currency, account: Account, quantity: Decimal, cost: CostBasis | CostComponent) -> None:
        self.get_or_create(currency, account).credit(quantity, cost)

    def debit(self, currency: Currency, account: Account, quantity: Decimal) -> CostBasis:
        return self.get_or_create(currency, account).debit(quantity)

    def transfer(self, currency: Currency, source: Account, destination: Account, quantity: Decimal) -> Decimal:
        """Move units and their cost between accounts; returns the quantity actually moved."""
        moved = min(quantity, self.available(currency, source))
        if moved < quantity:
            logger.warning(
                "Transfer of %s %s from %s to %s exceeds holdings; moving only %s",
                quantity,
                currency,
                source,
                destination,
                moved,
            )
        if moved == 0:
            return moved
        removed = self.debit(currency, source, moved)
        self.credit(currency, destination, moved, removed)
        return moved

    def __iter__(self) -> Iterator[CurrencyPool]:
        for key in sorted(self._pools):
            yield self._pools[key]

    def snapshots(self) -> list[PoolSnapshot]:
        return [pool.snapshot() for pool in self if pool.total_quantity > 0 or pool.cost_basis.pending]
