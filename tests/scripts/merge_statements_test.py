from __future__ import annotations

import importlib.util
from pathlib import Path
from types import ModuleType

import pytest

from tests.importers.revolut_importer_test import statement_row, write_csv

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "merge_statements.py"


@pytest.fixture(scope="module")
def merge_script() -> ModuleType:
    module_spec = importlib.util.spec_from_file_location("merge_statements", SCRIPT)
    assert module_spec is not None and module_spec.loader is not None
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_merges_exports_into_output(
    merge_script: ModuleType, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    first = tmp_path / "first.csv"
    second = tmp_path / "second.csv"
    write_csv(first, [statement_row(started="2023-01-01 00:00:00", currency="ETH", amount="1", fiat="10000")])
    write_csv(second, [statement_row(started="2023-06-01 00:00:00", currency="ETH", amount="-0.5", fiat="-9000")])
    merged = tmp_path / "merged.csv"

    written = merge_script.main([str(first), str(second), "--output", str(merged)])

    assert written == 2
    assert len(merged.read_text(encoding="utf-8").splitlines()) == 3
    assert capsys.readouterr().out.strip() == f"Wrote 2 rows to {merged}"


def test_requires_a_source(merge_script: ModuleType) -> None:
    with pytest.raises(SystemExit):
        merge_script.main([])
