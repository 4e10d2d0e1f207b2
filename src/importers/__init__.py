"""Importers turning exchange statement exports into ledger transactions."""

from importers.revolut_importer import (
    STATEMENT_HEADERS,
    RevolutImporter,
    RevolutStatementRow,
    RevolutStatementRow2022,
    merge_statement_files,
)

__all__ = [
    "STATEMENT_HEADERS",
    "RevolutImporter",
    "RevolutStatementRow",
    "RevolutStatementRow2022",
    "merge_statement_files",
]
