from __future__ import annotations

from csv import DictWriter
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from domain.ledger import Account, TransactionKind
from importers.revolut_importer import (
    STATEMENT_HEADER,
    STATEMENT_HEADER_2022,
    RevolutImporter,
    RevolutStatementRow,
    merge_statement_files,
)


def write_csv(path: Path, rows: list[dict[str, str]], header: list[str] = STATEMENT_HEADER) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = DictWriter(handle, fieldnames=header)
        writer.writeheader()
        writer.writerows(rows)


def statement_row(
    *,
    started: str,
    currency: str,
    amount: str,
    fiat: str = "",
    tx_type: str = "EXCHANGE",
    product: str = "Current",
    base_currency: str = "SEK",
    state: str = "COMPLETED",
    fee: str = "0",
    description: str = "",
) -> dict[str, str]:
    return {
        "Type": tx_type,
        "Product": product,
        "Started Date": started,
        "Completed Date": started,
        "Description": description or f"Exchanged to {currency}",
        "Amount": amount,
        "Currency": currency,
        "Fiat amount": fiat,
        "Fiat amount (inc. fees)": fiat,
        "Fee": fee,
        "Base currency": base_currency,
        "State": state,
        "Balance": "",
    }


def test_load_transactions_parses_completed_rows(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(
        path,
        [
            statement_row(started="2023-02-01 10:00:00", currency="EOS", amount="100", fiat="609.15"),
            statement_row(
                started="2023-03-01 09:30:00",
                currency="EOS",
                amount="-25",
                fiat="-495.75",
                tx_type="CARD_PAYMENT",
                product="Savings",
            ),
            statement_row(started="2023-02-15 10:00:00", currency="EOS", amount="5", state="PENDING"),
        ],
    )

    transactions = RevolutImporter(path).load_transactions()

    assert len(transactions) == 2
    bought, paid = transactions
    assert bought.kind == TransactionKind.EXCHANGE
    assert bought.account == Account.CURRENT
    assert bought.timestamp == datetime(2023, 2, 1, 10, 0, tzinfo=timezone.utc)
    assert bought.amount == Decimal("100")
    assert bought.fiat_amount_with_fees == Decimal("609.15")
    assert bought.base_currency == "SEK"
    assert paid.kind == TransactionKind.CARD_PAYMENT
    assert paid.account == Account.SAVINGS
    assert paid.counter_value == Decimal("495.75")


def test_load_transactions_sorts_by_started_date(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(
        path,
        [
            statement_row(started="2023-05-01 00:00:00", currency="BTC", amount="-0.1", fiat="-2000"),
            statement_row(started="2023-01-01 00:00:00", currency="BTC", amount="0.2", fiat="3000"),
            statement_row(started="2023-05-01 00:00:00", currency="ETH", amount="1", fiat="2000"),
        ],
    )

    transactions = RevolutImporter(path).load_transactions()

    assert [(tx.currency, tx.amount) for tx in transactions] == [
        ("BTC", Decimal("0.2")),
        ("BTC", Decimal("-0.1")),
        ("ETH", Decimal("1")),
    ]


def test_unknown_types_map_to_other_and_blank_fiat_is_zero(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(path, [statement_row(started="2023-01-01 00:00:00", currency="DOT", amount="0.5", tx_type="REWARD")])

    [reward] = RevolutImporter(path).load_transactions()

    assert reward.kind == TransactionKind.OTHER
    assert reward.fiat_amount == 0


def test_invalid_rows_are_skipped_with_a_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "statement.csv"
    write_csv(
        path,
        [
            statement_row(started="2023-01-01 00:00:00", currency="BTC", amount="0"),
            statement_row(started="", currency="BTC", amount="1"),
            statement_row(started="2023-01-01 00:00:00", currency="BTC", amount="1", product="Crypto"),
            statement_row(started="2023-01-02 00:00:00", currency="BTC", amount="1", fiat="100"),
        ],
    )

    transactions = RevolutImporter(path).load_transactions()

    assert len(transactions) == 1
    assert caplog.text.count("Skipping row") == 3


def test_missing_columns_raise(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    path.write_text("Type,Product,Amount\nEXCHANGE,Current,1\n", encoding="utf-8")

    with pytest.raises(ValueError, match="missing required columns"):
        RevolutImporter(path).load_transactions()


def test_statement_row_accepts_field_aliases() -> None:
    row = RevolutStatementRow.model_validate(
        statement_row(started="2023-01-01 12:00:00", currency="btc", amount="1", fiat="100", product="savings")
    )

    assert row.account == Account.SAVINGS
    assert row.to_transaction().currency == "BTC"


def test_merge_statement_files(tmp_path: Path) -> None:
    first = tmp_path / "2022.csv"
    second = tmp_path / "2023.csv"
    write_csv(first, [statement_row(started="2022-06-01 00:00:00", currency="ETH", amount="1", fiat="10000")])
    write_csv(
        second,
        [
            statement_row(started="2023-06-01 00:00:00", currency="ETH", amount="-0.5", fiat="-9000"),
            statement_row(started="2023-07-01 00:00:00", currency="ETH", amount="0.1", fiat="1500"),
        ],
    )
    merged = tmp_path / "out" / "merged.csv"

    written = merge_statement_files([first, second], merged)

    assert written == 3
    lines = merged.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(STATEMENT_HEADER)
    assert len(lines) == 4
    assert len(RevolutImporter(merged).load_transactions()) == 3


def test_merge_rejects_foreign_header(tmp_path: Path) -> None:
    foreign = tmp_path / "foreign.csv"
    foreign.write_text("txid,refid,time\nA,B,C\n", encoding="utf-8")

    with pytest.raises(ValueError, match="unexpected header"):
        merge_statement_files([foreign], tmp_path / "merged.csv")


def test_multi_line_description_survives(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    description = "Monthly plan\n\n  second paragraph"
    write_csv(
        path,
        [
            statement_row(
                started="2023-01-01 00:00:00", currency="BTC", amount="0.1", fiat="3000", description=description
            ),
            statement_row(started="2023-01-02 00:00:00", currency="BTC", amount="0.2", fiat="6000"),
        ],
    )
    with path.open("a", encoding="utf-8") as handle:
        handle.write("\n   \n")

    first, second = RevolutImporter(path).load_transactions()

    assert first.description == description
    assert second.amount == Decimal("0.2")


def statement_row_2022(
    *,
    started: str,
    description: str,
    amount: str,
    currency: str,
    fee: str = "0",
    tx_type: str = "Exchange",
    original_amount: str = "",
    original_currency: str = "",
    state: str = "Completed",
) -> dict[str, str]:
    return {
        "Type": tx_type,
        "Started Date": started,
        "Completed Date": started,
        "Description": description,
        "Amount": amount,
        "Fee": fee,
        "Currency": currency,
        "Original Amount": original_amount or amount,
        "Original Currency": original_currency or currency,
        "Settled Amount": "",
        "Settled Currency": "",
        "State": state,
        "Balance": "",
    }


STATEMENT_2022 = [
    statement_row_2022(
        started="2021-12-31 17:54:48", description="Exchanged to DOGE", amount="-5000.45", fee="-80.15", currency="SEK"
    ),
    statement_row_2022(started="2021-12-31 17:54:48", description="Exchanged from SEK", amount="2000", currency="DOGE"),
    statement_row_2022(
        started="2022-03-01 16:21:49",
        description="Exchanged to EOS",
        amount="-900.90603463",
        fee="-20.36495977",
        currency="DOGE",
    ),
    statement_row_2022(started="2022-03-01 16:21:49", description="Exchanged from DOGE", amount="50", currency="EOS"),
    statement_row_2022(
        started="2022-04-02 12:00:00",
        description="Payment at Coffee Shop",
        amount="-2",
        fee="-0.1",
        currency="EOS",
        tx_type="Card Payment",
        original_amount="-45.50",
        original_currency="SEK",
    ),
    statement_row_2022(
        started="2022-05-01 08:00:00", description="To EOS Vault", amount="10", currency="EOS", tx_type="Transfer"
    ),
]


def test_2022_layout_pairs_exchange_legs(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(path, STATEMENT_2022, header=STATEMENT_HEADER_2022)

    transactions = RevolutImporter(path, csv_year=2022).load_transactions()

    assert [(tx.currency, tx.amount, tx.base_currency) for tx in transactions] == [
        ("SEK", Decimal("-5080.60"), "DOGE"),
        ("DOGE", Decimal("2000"), "SEK"),
        ("DOGE", Decimal("-921.27099440"), "EOS"),
        ("EOS", Decimal("50"), "DOGE"),
        ("EOS", Decimal("-2.1"), "SEK"),
        ("EOS", Decimal("10"), "EOS"),
    ]
    doge, eos = transactions[1], transactions[3]
    assert doge.fiat_amount == Decimal("5000.45")
    assert doge.fiat_amount_with_fees == Decimal("5080.60")
    assert eos.fiat_amount == Decimal("900.90603463")
    assert eos.counter_value == Decimal("921.27099440")
    assert transactions[2].counter_value == Decimal("50")


def test_2022_layout_accounts_and_kinds(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(path, STATEMENT_2022, header=STATEMENT_HEADER_2022)

    *_, paid, vault = RevolutImporter(path, csv_year=2022).load_transactions()

    assert paid.kind == TransactionKind.CARD_PAYMENT
    assert paid.account == Account.CURRENT
    assert paid.counter_value == Decimal("45.50")
    assert vault.kind == TransactionKind.TRANSFER
    assert vault.account == Account.SAVINGS


def test_2022_exchange_without_counterpart_is_skipped(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "statement.csv"
    write_csv(
        path,
        [
            statement_row_2022(
                started="2022-01-01 10:00:00", description="Exchanged from SEK", amount="1", currency="ETH"
            ),
            statement_row_2022(
                started="2022-01-01 10:00:01", description="Exchanged to ETH", amount="-100", currency="SEK"
            ),
        ],
        header=STATEMENT_HEADER_2022,
    )

    transactions = RevolutImporter(path, csv_year=2022).load_transactions()

    assert transactions == []
    assert caplog.text.count("has no counterpart leg") == 2


def test_2022_statement_read_with_newer_layout_raises(tmp_path: Path) -> None:
    path = tmp_path / "statement.csv"
    write_csv(path, STATEMENT_2022, header=STATEMENT_HEADER_2022)

    with pytest.raises(ValueError, match="missing required columns"):
        RevolutImporter(path).load_transactions()


def test_unsupported_statement_year() -> None:
    with pytest.raises(ValueError, match="Unsupported statement year"):
        RevolutImporter("statement.csv", csv_year=2021)


def test_merge_2022_statements(tmp_path: Path) -> None:
    first = tmp_path / "2021.csv"
    second = tmp_path / "2022.csv"
    write_csv(first, STATEMENT_2022[:2], header=STATEMENT_HEADER_2022)
    write_csv(second, STATEMENT_2022[2:], header=STATEMENT_HEADER_2022)
    merged = tmp_path / "merged.csv"

    assert merge_statement_files([first, second], merged) == len(STATEMENT_2022)
    assert len(RevolutImporter(merged, csv_year=2022).load_transactions()) == len(STATEMENT_2022)


def test_merge_rejects_mixed_layouts(tmp_path: Path) -> None:
    first = tmp_path / "2022.csv"
    second = tmp_path / "2023.csv"
    write_csv(first, STATEMENT_2022[:2], header=STATEMENT_HEADER_2022)
    write_csv(second, [statement_row(started="2023-06-01 00:00:00", currency="ETH", amount="1", fiat="9000")])

    with pytest.raises(ValueError, match="unexpected header"):
        merge_statement_files([first, second], tmp_path / "merged.csv")
