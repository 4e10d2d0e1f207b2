from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from .cost_basis import CostBasis, CostComponent, FiatSettled, Pending
from .currency_pool import PoolRegistry
from .ledger import ACCOUNT_PRIORITY, Account, Currency, Transaction, TransactionKind

logger = logging.getLogger(__name__)

_JournalKey = tuple[Currency, datetime]


class ResolvedDisposal(BaseModel):
    timestamp: datetime
    currency: Currency
    account: Account
    kind: TransactionKind
    amount: Decimal
    income: FiatSettled | Pending
    cost: CostBasis
    shortfall: Decimal = Decimal(0)

    @property
    def fiat_income(self) -> Decimal | None:
        if isinstance(self.income, FiatSettled):
            return self.income.amount
        return None

    @property
    def fiat_cost(self) -> Decimal:
        """Fiat-resolved part of the cost, as a non-positive number."""
        return -self.cost.fiat

    @property
    def is_resolved(self) -> bool:
        return self.fiat_income is not None and self.cost.is_resolved

    @property
    def net_income(self) -> Decimal | None:
        income = self.fiat_income
        if income is None or not self.cost.is_resolved:
            return None
        return income + self.fiat_cost


@dataclass
class _JournalEntry:
    quantity: Decimal
    cost: CostBasis


class DisposalJournal:
    """Cost basis consumed by each disposal, keyed by (currency, timestamp)."""

    def __init__(self) -> None:
        self._entries: dict[_JournalKey, _JournalEntry] = {}

    def record(self, currency: Currency, timestamp: datetime, quantity: Decimal, cost: CostBasis) -> None:
        key = (currency, timestamp)
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = _JournalEntry(quantity=quantity, cost=cost)
        else:
            entry.quantity += quantity
            entry.cost = entry.cost + cost

    def lookup(self, currency: Currency, timestamp: datetime) -> _JournalEntry | None:
        return self._entries.get((currency, timestamp))


class CostResolver:
    """Resolve the fiat cost of disposals, following cross-currency acquisition chains.

    A holding bought with another non-fiat currency D carries a Pending(D, q, t) cost.
    It resolves to the share q / Q of the cost consumed by the disposal of Q units of D
    at t, which is looked up in the journal and resolved the same way in turn.
    """

    def __init__(self, registry: PoolRegistry, *, base_currency: str) -> None:
        self._registry = registry
        self._base_currency = Currency(base_currency.upper())
        self._journal = DisposalJournal()

    @property
    def base_currency(self) -> Currency:
        return self._base_currency

    def counter_value(self, transaction: Transaction) -> CostComponent:
        if transaction.base_currency == self._base_currency:
            return FiatSettled(amount=transaction.counter_value)
        return Pending(
            currency=transaction.base_currency,
            quantity=transaction.counter_value,
            timestamp=transaction.timestamp,
        )

    def acquisition_cost(self, transaction: Transaction) -> CostBasis:
        return self.resolve(CostBasis.of([self.counter_value(transaction)]))

    def resolve_disposal(self, transaction: Transaction) -> ResolvedDisposal:
        if not transaction.is_disposal:
            raise ValueError(f"Not a disposal: {transaction.currency} {transaction.amount} @{transaction.timestamp}")

        currency = transaction.currency
        remaining = transaction.quantity
        drawn = CostBasis()
        for account in ACCOUNT_PRIORITY:
            if remaining == 0:
                break
            take = min(remaining, self._registry.available(currency, account))
            if take > 0:
                drawn = drawn + self._registry.debit(currency, account, take)
                remaining -= take

        if remaining > 0:
            logger.warning(
                "Disposal of %s %s @%s exceeds holdings in all accounts; %s units have no cost basis",
                transaction.quantity,
                currency,
                transaction.timestamp.isoformat(),
                remaining,
            )
            shortfall_cost = Pending(currency=currency, quantity=remaining, timestamp=transaction.timestamp)
            drawn = drawn + CostBasis.of([shortfall_cost])

        key = (currency, transaction.timestamp)
        cost = self.resolve(drawn, path=frozenset({key}))
        self._journal.record(currency, transaction.timestamp, transaction.quantity, cost)

        if not cost.is_resolved:
            logger.info(
                "Cost of %s %s @%s not fully traceable to %s: %s",
                transaction.quantity,
                currency,
                transaction.timestamp.isoformat(),
                self._base_currency,
                ", ".join(f"{p.quantity} {p.currency} @{p.timestamp.isoformat()}" for p in cost.pending),
            )

        return ResolvedDisposal(
            timestamp=transaction.timestamp,
            currency=currency,
            account=transaction.account,
            kind=transaction.kind,
            amount=transaction.amount,
            income=self.counter_value(transaction),
            cost=cost,
            shortfall=remaining,
        )

    def resolve(self, basis: CostBasis, *, path: frozenset[_JournalKey] = frozenset()) -> CostBasis:
        resolved = CostBasis(fiat=basis.fiat)
        for component in basis.pending:
            resolved = resolved + self._resolve_pending(component, path)
        return resolved

    def _resolve_pending(self, component: Pending, path: frozenset[_JournalKey]) -> CostBasis:
        unresolved = CostBasis(pending=(component,))
        if component.key in path:
            return unresolved

        entry = self._journal.lookup(component.currency, component.timestamp)
        if entry is None or entry.quantity == 0:
            return unresolved

        share = entry.cost.scaled(component.quantity / entry.quantity)
        return self.resolve(share, path=path | {component.key})
