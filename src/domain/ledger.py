from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import NewType

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

Currency = NewType("Currency", str)

COMPLETED_STATE = "completed"


class TransactionKind(StrEnum):
    EXCHANGE = "EXCHANGE"
    CARD_PAYMENT = "CARD_PAYMENT"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class Account(StrEnum):
    CURRENT = "CURRENT"
    SAVINGS = "SAVINGS"


# Order in which pools are drained when a disposal is matched.
ACCOUNT_PRIORITY: tuple[Account, ...] = (Account.CURRENT, Account.SAVINGS)

TAXABLE_KINDS = frozenset({TransactionKind.EXCHANGE, TransactionKind.CARD_PAYMENT})


class Transaction(BaseModel):
    """A single ledger row of the account statement.

    Amount sign convention:
    - Positive amount is an acquisition of `currency`.
    - Negative amount is a disposal of `currency`.

    `fiat_amount` and `fiat_amount_with_fees` are denominated in `base_currency`,
    which is not necessarily the fiat currency the report is made in.
    """

    model_config = ConfigDict(frozen=True)

    kind: TransactionKind
    account: Account
    timestamp: datetime
    currency: Currency
    amount: Decimal
    fiat_amount: Decimal
    fiat_amount_with_fees: Decimal
    base_currency: Currency
    state: str
    description: str = ""

    @field_validator("currency", "base_currency", mode="before")
    @classmethod
    def _normalize_ticker(cls, value: str) -> str:
        ticker = value.strip().upper()
        if not ticker:
            raise ValueError("currency ticker must be non-empty")
        return ticker

    @model_validator(mode="after")
    def _validate_amount(self) -> Transaction:
        if self.amount == 0:
            raise ValueError("Transaction.amount must be non-zero")
        return self

    @property
    def is_completed(self) -> bool:
        return self.state.strip().lower() == COMPLETED_STATE

    @property
    def is_acquisition(self) -> bool:
        return self.amount > 0

    @property
    def is_disposal(self) -> bool:
        return self.amount < 0

    @property
    def quantity(self) -> Decimal:
        return abs(self.amount)

    @property
    def counter_value(self) -> Decimal:
        """Magnitude of the counter-value, fees included."""
        return abs(self.fiat_amount_with_fees)
