from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from transaction_intelligence.cli import app, read_transactions_csv

CSV_TEXT = """id,date,description,amount,memo
a1,2025-01-01,ACME PAYROLL,2400.00,
a2,2025-01-03,WHOLE FOODS MARKET,-84.12,weekly shop
,2025-01-05,NETFLIX.COM,-15.99,
"""


@pytest.fixture
def csv_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    # Run from an empty directory so no developer .env is picked up.
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "tx.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


def test_read_transactions_csv_fills_missing_ids(csv_file: Path):
    rows = read_transactions_csv(csv_file)
    assert [r["id"] for r in rows] == ["a1", "a2", "row-3"]
    assert rows[1]["memo"] == "weekly shop"


def test_categorize_prints_one_line_per_transaction(csv_file: Path):
    result = CliRunner().invoke(app, ["categorize", "--csv-path", str(csv_file)])

    assert result.exit_code == 0, result.output
    lines = result.stdout.strip().splitlines()
    assert lines == [
        "a1\tIncome & Deposits\t0.95",
        "a2\tGroceries & Food\t0.90",
        "row-3\tSubscriptions & Services\t0.90",
    ]


def test_analyze_prints_json_result(csv_file: Path):
    result = CliRunner().invoke(
        app, ["analyze", "--csv-path", str(csv_file), "--session-id", "cli-test"]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["session_id"] == "cli-test"
    assert payload["current_step"] == "complete"
    assert [s["stage"] for s in payload["stages"]] == [
        "categorization",
        "spending",
        "savings",
        "risk",
        "narrative",
    ]


def test_missing_file_exits_nonzero(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(app, ["categorize", "--csv-path", str(tmp_path / "nope.csv")])
    assert result.exit_code == 1


def test_missing_required_column_exits_nonzero(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "bad.csv"
    path.write_text("id,date,amount\n1,2025-01-01,-3.00\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["analyze", "--csv-path", str(path)])
    assert result.exit_code == 1
