from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, ConfigDict, model_validator

from .ledger import Currency


class FiatSettled(BaseModel):
    """Value already expressed in the base (fiat) currency."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal

    @model_validator(mode="after")
    def _validate_amount(self) -> FiatSettled:
        if self.amount < 0:
            raise ValueError("FiatSettled.amount must be >= 0")
        return self


class Pending(BaseModel):
    """Value still denominated in `quantity` units of `currency` moved at `timestamp`."""

    model_config = ConfigDict(frozen=True)

    currency: Currency
    quantity: Decimal
    timestamp: datetime

    @model_validator(mode="after")
    def _validate_quantity(self) -> Pending:
        if self.quantity < 0:
            raise ValueError("Pending.quantity must be >= 0")
        return self

    @property
    def key(self) -> tuple[Currency, datetime]:
        return self.currency, self.timestamp

    def scaled(self, fraction: Decimal) -> Pending:
        return Pending(currency=self.currency, quantity=self.quantity * fraction, timestamp=self.timestamp)


CostComponent = FiatSettled | Pending


class CostBasis(BaseModel):
    """Cost magnitude split into a fiat-settled part and pending parts.

    Pending parts are merged per (currency, timestamp) and kept in first-seen order.
    """

    model_config = ConfigDict(frozen=True)

    fiat: Decimal = Decimal(0)
    pending: tuple[Pending, ...] = ()

    @classmethod
    def of(cls, components: Iterable[CostComponent]) -> CostBasis:
        fiat = Decimal(0)
        merged: dict[tuple[Currency, datetime], Decimal] = {}
        for component in components:
            if isinstance(component, FiatSettled):
                fiat += component.amount
            else:
                merged[component.key] = merged.get(component.key, Decimal(0)) + component.quantity
        pending = tuple(
            Pending(currency=currency, quantity=quantity, timestamp=timestamp)
            for (currency, timestamp), quantity in merged.items()
            if quantity > 0
        )
        return cls(fiat=fiat, pending=pending)

    @property
    def components(self) -> tuple[CostComponent, ...]:
        if self.fiat == 0 and self.pending:
            return self.pending
        return (FiatSettled(amount=self.fiat), *self.pending)

    @property
    def is_resolved(self) -> bool:
        return not self.pending

    def scaled(self, fraction: Decimal) -> CostBasis:
        return CostBasis(
            fiat=self.fiat * fraction,
            pending=tuple(component.scaled(fraction) for component in self.pending),
        )

    def __add__(self, other: CostBasis) -> CostBasis:
        return CostBasis.of([*self.components, *other.components])
