from __future__ import annotations

import csv
import logging
import re
from collections import defaultdict
from csv import DictReader
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from domain.ledger import Account, Currency, Transaction, TransactionKind

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

STATEMENT_HEADER = [
    "Type",
    "Product",
    "Started Date",
    "Completed Date",
    "Description",
    "Amount",
    "Currency",
    "Fiat amount",
    "Fiat amount (inc. fees)",
    "Fee",
    "Base currency",
    "State",
    "Balance",
]

# Crypto statements exported before 2023: no product column and no fiat columns.
STATEMENT_HEADER_2022 = [
    "Type",
    "Started Date",
    "Completed Date",
    "Description",
    "Amount",
    "Fee",
    "Currency",
    "Original Amount",
    "Original Currency",
    "Settled Amount",
    "Settled Currency",
    "State",
    "Balance",
]

STATEMENT_HEADERS = {2022: STATEMENT_HEADER_2022, 2023: STATEMENT_HEADER}
_OPTIONAL_COLUMNS = {"Completed Date", "Balance", "Description", "Settled Amount", "Settled Currency"}

_KIND_BY_TYPE = {
    "EXCHANGE": TransactionKind.EXCHANGE,
    "CARD_PAYMENT": TransactionKind.CARD_PAYMENT,
    "TRANSFER": TransactionKind.TRANSFER,
}

_ACCOUNT_BY_PRODUCT = {
    "CURRENT": Account.CURRENT,
    "SAVINGS": Account.SAVINGS,
}

# "Exchanged to BTC", "Exchanged from SEK", "Exchanged to EOS Vault"
_EXCHANGE_DESCRIPTION = re.compile(r"Exchanged (?:to|from) (\w+)", re.IGNORECASE)


def _kind_of(raw_type: str) -> TransactionKind:
    return _KIND_BY_TYPE.get(raw_type.strip().upper().replace(" ", "_"), TransactionKind.OTHER)


class RevolutStatementRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(alias="Type")
    product: str = Field(alias="Product")
    started_date: datetime = Field(alias="Started Date")
    completed_date: datetime | None = Field(default=None, alias="Completed Date")
    description: str = Field(default="", alias="Description")
    amount: Decimal = Field(alias="Amount")
    currency: str = Field(alias="Currency")
    fiat_amount: Decimal = Field(alias="Fiat amount")
    fiat_amount_inc_fees: Decimal = Field(alias="Fiat amount (inc. fees)")
    fee: Decimal = Field(alias="Fee")
    base_currency: str = Field(alias="Base currency")
    state: str = Field(alias="State")
    balance: Decimal | None = Field(default=None, alias="Balance")

    @field_validator("started_date", mode="before")
    @classmethod
    def _parse_started(cls, value: str | datetime) -> datetime:
        return _parse_timestamp(value)

    @field_validator("completed_date", mode="before")
    @classmethod
    def _parse_completed(cls, value: str | datetime | None) -> datetime | None:
        if value is None or value == "":
            return None
        return _parse_timestamp(value)

    @field_validator("fiat_amount", "fiat_amount_inc_fees", "fee", mode="before")
    @classmethod
    def _blank_is_zero(cls, value: str | Decimal) -> str | Decimal:
        if value == "":
            return "0"
        return value

    @field_validator("balance", mode="before")
    @classmethod
    def _blank_is_none(cls, value: str | Decimal | None) -> str | Decimal | None:
        if value == "":
            return None
        return value

    @field_validator("currency", "base_currency", "product", "type", mode="before")
    @classmethod
    def _require_text(cls, value: str) -> str:
        return _non_empty(value)

    @property
    def kind(self) -> TransactionKind:
        return _kind_of(self.type)

    @property
    def account(self) -> Account:
        account = _ACCOUNT_BY_PRODUCT.get(self.product.upper())
        if account is None:
            raise ValueError(f"Unknown product {self.product!r}")
        return account

    def to_transaction(self) -> Transaction:
        return Transaction(
            kind=self.kind,
            account=self.account,
            timestamp=self.started_date,
            currency=Currency(self.currency),
            amount=self.amount,
            fiat_amount=self.fiat_amount,
            fiat_amount_with_fees=self.fiat_amount_inc_fees,
            base_currency=Currency(self.base_currency),
            state=self.state,
            description=self.description,
        )


class RevolutStatementRow2022(BaseModel):
    """Row of the older crypto statement.

    An exchange is split over two rows sharing a timestamp, one per currency, and
    each row only knows its own side. Savings holdings are told apart by "Vault"
    in the description.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(alias="Type")
    started_date: datetime = Field(alias="Started Date")
    completed_date: datetime | None = Field(default=None, alias="Completed Date")
    description: str = Field(default="", alias="Description")
    amount: Decimal = Field(alias="Amount")
    fee: Decimal = Field(alias="Fee")
    currency: str = Field(alias="Currency")
    original_amount: Decimal = Field(alias="Original Amount")
    original_currency: str = Field(alias="Original Currency")
    settled_amount: Decimal | None = Field(default=None, alias="Settled Amount")
    settled_currency: str | None = Field(default=None, alias="Settled Currency")
    state: str = Field(alias="State")
    balance: Decimal | None = Field(default=None, alias="Balance")

    @field_validator("started_date", mode="before")
    @classmethod
    def _parse_started(cls, value: str | datetime) -> datetime:
        return _parse_timestamp(value)

    @field_validator("completed_date", mode="before")
    @classmethod
    def _parse_completed(cls, value: str | datetime | None) -> datetime | None:
        if value is None or value == "":
            return None
        return _parse_timestamp(value)

    @field_validator("fee", mode="before")
    @classmethod
    def _blank_is_zero(cls, value: str | Decimal) -> str | Decimal:
        if value == "":
            return "0"
        return value

    @field_validator("settled_amount", "settled_currency", "balance", mode="before")
    @classmethod
    def _blank_is_none(cls, value: str | Decimal | None) -> str | Decimal | None:
        if value == "":
            return None
        return value

    @field_validator("currency", "original_currency", "type", mode="before")
    @classmethod
    def _require_text(cls, value: str) -> str:
        return _non_empty(value)

    @property
    def kind(self) -> TransactionKind:
        return _kind_of(self.type)

    @property
    def account(self) -> Account:
        return Account.SAVINGS if "vault" in self.description.lower() else Account.CURRENT

    @property
    def total(self) -> Decimal:
        """Amount including the fee, both signed the same way in the export."""
        return self.amount + self.fee

    @property
    def exchange_counterpart(self) -> str | None:
        match = _EXCHANGE_DESCRIPTION.search(self.description)
        return match.group(1).upper() if match else None

    def to_transaction(self, counterpart: RevolutStatementRow2022 | None = None) -> Transaction:
        if self.kind == TransactionKind.EXCHANGE:
            if counterpart is None:
                raise ValueError(f"Exchange of {self.total} {self.currency} has no counterpart leg")
            base_currency = counterpart.currency
            # The counter leg moves the other way; flip it so it follows this leg's sign.
            fiat_amount = -counterpart.amount
            fiat_amount_with_fees = -counterpart.total
        else:
            base_currency = self.original_currency
            fiat_amount = self.original_amount
            fiat_amount_with_fees = self.original_amount

        return Transaction(
            kind=self.kind,
            account=self.account,
            timestamp=self.started_date,
            currency=Currency(self.currency),
            amount=self.total,
            fiat_amount=fiat_amount,
            fiat_amount_with_fees=fiat_amount_with_fees,
            base_currency=Currency(base_currency),
            state=self.state,
            description=self.description,
        )


def _non_empty(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("field must be non-empty")
    return text


def _parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.strptime(value.strip(), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass
class _ImportStats:
    invalid: int = 0
    not_completed: int = 0


class RevolutImporter:
    """Read a crypto account statement export into completed, time-ordered transactions.

    `csv_year` selects the export layout: 2022 for the older per-leg statement,
    2023 (the default) for statements carrying product and fiat columns.
    """

    def __init__(self, source_path: str | Path, *, csv_year: int = 2023) -> None:
        if csv_year not in STATEMENT_HEADERS:
            raise ValueError(f"Unsupported statement year {csv_year}; expected one of {sorted(STATEMENT_HEADERS)}")
        self._source_path = Path(source_path)
        self._csv_year = csv_year

    def load_transactions(self) -> list[Transaction]:
        stats = _ImportStats()
        rows = self._read_rows(STATEMENT_HEADERS[self._csv_year])
        if self._csv_year == 2022:
            parsed = self._transactions_2022(rows, stats)
        else:
            parsed = self._transactions_2023(rows, stats)

        transactions: list[Transaction] = []
        for transaction in parsed:
            if not transaction.is_completed:
                stats.not_completed += 1
                continue
            transactions.append(transaction)

        # The export is not in chronological order; sort() is stable so same-timestamp rows keep file order.
        transactions.sort(key=lambda tx: tx.timestamp)
        logger.info(
            "Loaded %d completed transactions from %s (%d not completed, %d unparseable)",
            len(transactions),
            self._source_path,
            stats.not_completed,
            stats.invalid,
        )
        return transactions

    def _transactions_2023(
        self, rows: Iterable[tuple[int, dict[str, str]]], stats: _ImportStats
    ) -> Iterable[Transaction]:
        for line_number, row in rows:
            try:
                yield RevolutStatementRow.model_validate(row).to_transaction()
            except (ValidationError, ValueError) as err:
                self._skip(line_number, err, stats)

    def _transactions_2022(
        self, rows: Iterable[tuple[int, dict[str, str]]], stats: _ImportStats
    ) -> Iterable[Transaction]:
        parsed: list[tuple[int, RevolutStatementRow2022]] = []
        for line_number, row in rows:
            try:
                parsed.append((line_number, RevolutStatementRow2022.model_validate(row)))
            except ValidationError as err:
                self._skip(line_number, err, stats)

        counterparts = _pair_exchange_legs([statement_row for _, statement_row in parsed])
        for index, (line_number, statement_row) in enumerate(parsed):
            try:
                yield statement_row.to_transaction(counterparts.get(index))
            except (ValidationError, ValueError) as err:
                self._skip(line_number, err, stats)

    def _skip(self, line_number: int, err: Exception, stats: _ImportStats) -> None:
        stats.invalid += 1
        logger.warning("Skipping row %d of %s: %s", line_number, self._source_path, _first_error(err))

    def _read_rows(self, header: list[str]) -> Iterable[tuple[int, dict[str, str]]]:
        with self._source_path.open(encoding="utf-8", newline="") as handle:
            reader = DictReader(handle, skipinitialspace=True)
            if reader.fieldnames is None:
                raise ValueError(f"Statement {self._source_path} is empty or missing headers")
            fieldnames = [name.strip() for name in reader.fieldnames]
            missing = set(header) - set(fieldnames) - _OPTIONAL_COLUMNS
            if missing:
                columns = ", ".join(sorted(missing))
                raise ValueError(f"Statement {self._source_path} missing required columns: {columns}")
            reader.fieldnames = fieldnames

            for row in reader:
                values = {key: (value or "").strip() for key, value in row.items() if key is not None}
                # Whitespace-only lines between rows; quoted fields keep their own line breaks.
                if not any(values.values()):
                    continue
                yield reader.line_num, values


def _pair_exchange_legs(rows: list[RevolutStatementRow2022]) -> dict[int, RevolutStatementRow2022]:
    """Map the index of every exchange leg to the other leg of the same exchange."""
    by_timestamp: dict[datetime, list[int]] = defaultdict(list)
    for index, row in enumerate(rows):
        if row.kind == TransactionKind.EXCHANGE:
            by_timestamp[row.started_date].append(index)

    counterparts: dict[int, RevolutStatementRow2022] = {}
    for indices in by_timestamp.values():
        unpaired = list(indices)
        while unpaired:
            index = unpaired.pop(0)
            row = rows[index]
            match = next(
                (
                    other
                    for other in unpaired
                    if rows[other].currency.upper() == row.exchange_counterpart
                    and rows[other].exchange_counterpart == row.currency.upper()
                ),
                None,
            )
            if match is None and len(unpaired) == 1 and rows[unpaired[0]].currency != row.currency:
                # A lone pair whose descriptions do not name each other.
                match = unpaired[0]
            if match is None:
                continue
            unpaired.remove(match)
            counterparts[index] = rows[match]
            counterparts[match] = row
    return counterparts


def _first_error(err: Exception) -> str:
    if isinstance(err, ValidationError):
        first = err.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return f"{location}: {first['msg']}"
    return str(err)


def merge_statement_files(sources: Iterable[Path], destination: Path) -> int:
    """Concatenate several statement exports under a single header; returns the row count.

    All sources must share one of the known layouts.
    """
    written = 0
    header: list[str] | None = None
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8", newline="") as out:
        writer = csv.writer(out)
        for source in sources:
            if source.resolve() == destination.resolve():
                continue
            with source.open(encoding="utf-8", newline="") as handle:
                reader = csv.reader(handle)
                source_header = next(reader, None)
                if source_header is None:
                    logger.warning("Skipping empty statement %s", source)
                    continue
                source_header = [name.strip() for name in source_header]
                if header is None:
                    if source_header not in STATEMENT_HEADERS.values():
                        raise ValueError(f"Statement {source} has an unexpected header: {source_header}")
                    header = source_header
                    writer.writerow(header)
                elif source_header != header:
                    raise ValueError(f"Statement {source} has an unexpected header: {source_header}")
                for row in reader:
                    if not any(cell.strip() for cell in row):
                        continue
                    writer.writerow(row)
                    written += 1
    logger.info("Merged %d rows into %s", written, destination)
    return written
