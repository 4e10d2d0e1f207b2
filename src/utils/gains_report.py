from __future__ import annotations

import csv
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, TextIO

from domain.cost_basis import CostBasis, FiatSettled, Pending
from domain.cost_resolver import ResolvedDisposal
from domain.ledger import Currency

from .formatting import TIMESTAMP_FORMAT, format_cost, format_currency, format_decimal, format_fixed, format_income

ALL_CURRENCIES = "ALL"
CSV_DELIMITER = ";"


@dataclass
class GainsReportRow:
    date: datetime
    currency: Currency
    amount: Decimal
    income: FiatSettled | Pending
    cost: CostBasis
    net_income: Decimal | None


@dataclass
class CurrencySummary:
    currency: Currency
    disposal_count: int
    total_amount: Decimal
    total_income: Decimal
    total_cost: Decimal
    total_net_income: Decimal
    unresolved_count: int

    @property
    def is_resolved(self) -> bool:
        return self.unresolved_count == 0


class GainsAggregator:
    """Filter resolved disposals into report rows and per-currency totals.

    Filters only narrow the output; costs were already resolved against the full history.
    """

    def __init__(self, *, currency_filter: str | None = None, year_filter: int | None = None) -> None:
        if currency_filter is None or currency_filter.upper() == ALL_CURRENCIES:
            self._currency: str | None = None
        else:
            self._currency = currency_filter.upper()
        self._year = year_filter

    def accepts(self, disposal: ResolvedDisposal) -> bool:
        if self._currency is not None and disposal.currency != self._currency:
            return False
        if self._year is not None and disposal.timestamp.year != self._year:
            return False
        return True

    def select(self, disposals: Iterable[ResolvedDisposal]) -> list[ResolvedDisposal]:
        selected = [disposal for disposal in disposals if self.accepts(disposal)]
        selected.sort(key=lambda disposal: disposal.timestamp)
        return selected

    def report_rows(self, disposals: Iterable[ResolvedDisposal]) -> list[GainsReportRow]:
        return [
            GainsReportRow(
                date=disposal.timestamp,
                currency=disposal.currency,
                amount=disposal.amount,
                income=disposal.income,
                cost=disposal.cost,
                net_income=disposal.net_income,
            )
            for disposal in self.select(disposals)
        ]

    def summarize(self, disposals: Iterable[ResolvedDisposal]) -> list[CurrencySummary]:
        """Totals per currency; income and cost only count their fiat-resolved parts."""
        grouped: dict[Currency, list[ResolvedDisposal]] = defaultdict(list)
        for disposal in self.select(disposals):
            grouped[disposal.currency].append(disposal)

        summaries: list[CurrencySummary] = []
        for currency, rows in sorted(grouped.items()):
            summaries.append(
                CurrencySummary(
                    currency=currency,
                    disposal_count=len(rows),
                    total_amount=sum((row.amount for row in rows), start=Decimal(0)),
                    total_income=sum((row.fiat_income or Decimal(0) for row in rows), start=Decimal(0)),
                    total_cost=sum((row.fiat_cost for row in rows), start=Decimal(0)),
                    total_net_income=sum(
                        (row.net_income for row in rows if row.net_income is not None),
                        start=Decimal(0),
                    ),
                    unresolved_count=sum(1 for row in rows if not row.is_resolved),
                )
            )
        return summaries


def write_report_csv(rows: Iterable[GainsReportRow], handle: TextIO) -> None:
    writer = csv.writer(handle, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(["Date", "Currency", "Amount", "Income", "Cost", "Net Income"])
    for row in rows:
        writer.writerow(
            [
                row.date.strftime(TIMESTAMP_FORMAT),
                row.currency,
                format_decimal(row.amount),
                format_income(row.income),
                format_cost(row.cost),
                "" if row.net_income is None else format_fixed(row.net_income),
            ]
        )


def write_summary_csv(summaries: Iterable[CurrencySummary], handle: TextIO) -> None:
    writer = csv.writer(handle, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(["Currency", "Disposals", "Amount", "Income", "Cost", "Net Income", "Unresolved"])
    for summary in summaries:
        writer.writerow(
            [
                summary.currency,
                summary.disposal_count,
                format_decimal(summary.total_amount),
                format_currency(summary.total_income),
                format_currency(summary.total_cost),
                format_currency(summary.total_net_income),
                summary.unresolved_count,
            ]
        )
