# flake8: noqa: E402
# uv run scripts/merge_statements.py data/2022.csv data/2023.csv --output data/merged.csv
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from importers.revolut_importer import merge_statement_files  # noqa: E402


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Merge several statement exports of one layout into a single CSV.")
    parser.add_argument("sources", type=Path, nargs="+", help="statement exports, in the order they are appended")
    parser.add_argument("--output", type=Path, default=PROJECT_ROOT / "data" / "merged.csv")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    written = merge_statement_files(args.sources, args.output)
    print(f"Wrote {written} rows to {args.output}")
    return written


if __name__ == "__main__":
    main()
