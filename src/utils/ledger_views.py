from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, TextIO

from domain.ledger import TAXABLE_KINDS, Account, Currency, Transaction, TransactionKind

from .formatting import TIMESTAMP_FORMAT, format_decimal
from .gains_report import ALL_CURRENCIES, CSV_DELIMITER


@dataclass
class ExchangeTrade:
    date: datetime
    direction: str
    account: Account
    currency: Currency
    amount: Decimal
    counter_currency: Currency
    counter_amount: Decimal


def _normalize_filter(currency_filter: str | None) -> str | None:
    if currency_filter is None or currency_filter.upper() == ALL_CURRENCIES:
        return None
    return currency_filter.upper()


def exchange_transactions(
    transactions: Iterable[Transaction], *, currency_filter: str | None = None
) -> list[Transaction]:
    """Exchange legs touching `currency_filter`, either as the traded or as the counter currency."""
    currency = _normalize_filter(currency_filter)
    return [
        tx
        for tx in transactions
        if tx.kind == TransactionKind.EXCHANGE
        and (currency is None or currency in (tx.currency, tx.base_currency))
    ]


def _single_leg_trade(tx: Transaction) -> ExchangeTrade:
    return ExchangeTrade(
        date=tx.timestamp,
        direction="BUY" if tx.is_acquisition else "SELL",
        account=tx.account,
        currency=tx.currency,
        amount=tx.quantity,
        counter_currency=tx.base_currency,
        counter_amount=tx.counter_value,
    )


def merge_exchange_legs(
    transactions: Iterable[Transaction],
    *,
    base_currency: str,
    currency_filter: str | None = None,
) -> list[ExchangeTrade]:
    """One trade per exchange or card payment.

    Fiat legs are dropped since the crypto leg already carries the fiat counter-value.
    The two legs of a crypto-for-crypto exchange become a single SELL of the spent currency.
    """
    base = base_currency.upper()
    currency = _normalize_filter(currency_filter)
    trades: list[ExchangeTrade] = []
    waiting: dict[tuple[datetime, frozenset[str]], Transaction] = {}

    for tx in transactions:
        if tx.kind not in TAXABLE_KINDS or not tx.is_completed or tx.currency == base:
            continue
        if currency is not None and currency not in (tx.currency, tx.base_currency):
            continue
        if tx.base_currency == base or tx.kind == TransactionKind.CARD_PAYMENT:
            trades.append(_single_leg_trade(tx))
            continue

        key = (tx.timestamp, frozenset({tx.currency, tx.base_currency}))
        other = waiting.pop(key, None)
        if other is None:
            waiting[key] = tx
            continue
        sold, bought = (tx, other) if tx.is_disposal else (other, tx)
        trades.append(
            ExchangeTrade(
                date=tx.timestamp,
                direction="SELL",
                account=sold.account,
                currency=sold.currency,
                amount=sold.quantity,
                counter_currency=bought.currency,
                counter_amount=bought.quantity,
            )
        )

    trades.extend(_single_leg_trade(tx) for tx in waiting.values())
    trades.sort(key=lambda trade: trade.date)
    return trades


def write_exchanges_csv(transactions: Iterable[Transaction], handle: TextIO) -> None:
    writer = csv.writer(handle, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(["Date", "Account", "Currency", "Amount", "Base Currency", "Fiat Amount", "Description"])
    for tx in transactions:
        writer.writerow(
            [
                tx.timestamp.strftime(TIMESTAMP_FORMAT),
                tx.account,
                tx.currency,
                format_decimal(tx.amount),
                tx.base_currency,
                format_decimal(tx.fiat_amount_with_fees),
                tx.description,
            ]
        )


def write_trades_csv(trades: Iterable[ExchangeTrade], handle: TextIO) -> None:
    writer = csv.writer(handle, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(["Date", "Direction", "Account", "Currency", "Amount", "Counter Currency", "Counter Amount"])
    for trade in trades:
        writer.writerow(
            [
                trade.date.strftime(TIMESTAMP_FORMAT),
                trade.direction,
                trade.account,
                trade.currency,
                format_decimal(trade.amount),
                trade.counter_currency,
                format_decimal(trade.counter_amount),
            ]
        )
