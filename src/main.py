from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Sequence, TextIO

from config import config
from domain.gains_engine import GainsEngine, GainsResult
from domain.ledger import Transaction
from filing.sru_file import SruFile, TaxpayerIdentity, UnresolvedFilingError
from importers.revolut_importer import STATEMENT_HEADERS, RevolutImporter
from utils.gains_report import GainsAggregator, write_report_csv, write_summary_csv
from utils.ledger_views import exchange_transactions, merge_exchange_legs, write_exchanges_csv, write_trades_csv

logger = logging.getLogger(__name__)


def load(csv_path: Path, *, csv_year: int) -> list[Transaction]:
    start = perf_counter()
    transactions = RevolutImporter(csv_path, csv_year=csv_year).load_transactions()
    logger.info("Import finished in %.3fs", perf_counter() - start)
    return transactions


def run(
    csv_path: Path,
    *,
    base_currency: str,
    csv_year: int = 2023,
    currency_filter: str | None = None,
    year_filter: int | None = None,
    summary: bool = False,
    identity: TaxpayerIdentity | None = None,
    out: TextIO | None = None,
) -> GainsResult:
    out = out or sys.stdout
    transactions = load(csv_path, csv_year=csv_year)

    start = perf_counter()
    result = GainsEngine(base_currency=base_currency).process(transactions)
    logger.info(
        "Processed %d transactions into %d disposals in %.3fs (%d skipped, %d unmatched transfers)",
        len(transactions),
        len(result.disposals),
        perf_counter() - start,
        result.skipped,
        len(result.unmatched_transfers),
    )

    aggregator = GainsAggregator(currency_filter=currency_filter, year_filter=year_filter)
    if identity is not None:
        summaries = aggregator.summarize(result.disposals)
        tax_year = year_filter or _latest_year(result)
        SruFile.from_summaries(summaries, identity, tax_year=tax_year).write(out)
    elif summary:
        write_summary_csv(aggregator.summarize(result.disposals), out)
    else:
        write_report_csv(aggregator.report_rows(result.disposals), out)
    return result


def print_exchanges(
    csv_path: Path,
    *,
    csv_year: int = 2023,
    currency_filter: str | None = None,
    out: TextIO | None = None,
) -> None:
    transactions = load(csv_path, csv_year=csv_year)
    write_exchanges_csv(exchange_transactions(transactions, currency_filter=currency_filter), out or sys.stdout)


def print_trades(
    csv_path: Path,
    *,
    base_currency: str,
    csv_year: int = 2023,
    currency_filter: str | None = None,
    out: TextIO | None = None,
) -> None:
    transactions = load(csv_path, csv_year=csv_year)
    trades = merge_exchange_legs(transactions, base_currency=base_currency, currency_filter=currency_filter)
    write_trades_csv(trades, out or sys.stdout)


def _latest_year(result: GainsResult) -> int:
    if result.disposals:
        return max(disposal.timestamp.year for disposal in result.disposals)
    return datetime.now(timezone.utc).year


def main(argv: Sequence[str] | None = None) -> None:
    settings = config()
    parser = argparse.ArgumentParser(description="Compute average-cost capital gains from a crypto account statement.")
    parser.add_argument("path", type=Path, help="account statement CSV export")
    parser.add_argument(
        "--csv-year",
        type=int,
        choices=sorted(STATEMENT_HEADERS),
        default=settings.csv_year,
        help="layout of the statement export",
    )
    parser.add_argument("--currency", default=settings.currency_filter, help="only report this currency (default: ALL)")
    parser.add_argument("--base-currency", default=settings.base_currency)
    parser.add_argument("--year", type=int, default=settings.year_filter, help="only report disposals in this year")
    parser.add_argument("--sum", action="store_true", help="print per-currency totals instead of every disposal")
    parser.add_argument("--sru-id", default=settings.taxpayer_id, help="write an SRU K4 file for this taxpayer id")
    parser.add_argument("--sru-name", default=settings.taxpayer_name)
    views = parser.add_mutually_exclusive_group()
    views.add_argument("--print-exchanges-only", action="store_true", help="print the exchange rows and stop")
    views.add_argument(
        "--print-trades", action="store_true", help="print both legs of each exchange as one trade and stop"
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    if args.print_exchanges_only:
        print_exchanges(args.path, csv_year=args.csv_year, currency_filter=args.currency)
        return
    if args.print_trades:
        print_trades(args.path, base_currency=args.base_currency, csv_year=args.csv_year, currency_filter=args.currency)
        return

    identity = TaxpayerIdentity(number=args.sru_id, name=args.sru_name) if args.sru_id else None
    try:
        run(
            args.path,
            base_currency=args.base_currency,
            csv_year=args.csv_year,
            currency_filter=args.currency,
            year_filter=args.year,
            summary=args.sum,
            identity=identity,
        )
    except UnresolvedFilingError as err:
        logger.error("%s", err)
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
