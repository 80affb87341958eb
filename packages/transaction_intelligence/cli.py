"""CLI for the ``transaction_intelligence`` package.

Reads a canonical CSV (header ``id,date,description,amount``; extra columns
are ignored) and either runs the full analysis (``analyze``, JSON on stdout)
or only categorization (``categorize``, ``<id>\\t<category>\\t<confidence>``
per line). A local ``.env`` is loaded before configuration is read, so
``OPENAI_API_KEY`` and ``TI_*`` settings can live there. Without a key both
remote capabilities use their local fallbacks.

Errors are written to stderr and the process exits non-zero.
"""

from __future__ import annotations

import csv
import json
import sys
import uuid
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging

REQUIRED_COLUMNS = ("date", "description", "amount")


def read_transactions_csv(csv_path: Path) -> list[dict[str, Any]]:
    """Return raw rows from ``csv_path``; rows without an ``id`` get ``row-<n>``.

    Raises ``csv.Error`` when the header lacks a required column.
    """

    with open(csv_path, encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        header = [h.strip().lower() for h in (reader.fieldnames or [])]
        missing = [c for c in REQUIRED_COLUMNS if c not in header]
        if missing:
            raise csv.Error(f"CSV header missing required columns: {', '.join(missing)}")
        rows: list[dict[str, Any]] = []
        for n, raw in enumerate(reader, start=1):
            row = {(k or "").strip().lower(): v for k, v in raw.items()}
            if not (row.get("id") or "").strip():
                row["id"] = f"row-{n}"
            rows.append(row)
    return rows


def cmd_analyze(csv_path: Path, session_id: str | None = None) -> int:
    """Run the full pipeline over ``csv_path`` and print the JSON result."""

    from .config import PipelineConfig
    from .orchestrator import AnalysisOrchestrator

    try:
        rows = read_transactions_csv(csv_path)
        config = PipelineConfig.from_env()
    except (OSError, csv.Error, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = AnalysisOrchestrator(config).run(session_id or uuid.uuid4().hex, rows)
    print(json.dumps(result.to_dict(), indent=2))
    if result.state.error:
        print(f"Error: analysis failed: {result.state.error}", file=sys.stderr)
        return 1
    return 0


def cmd_categorize(csv_path: Path) -> int:
    """Categorize ``csv_path`` and print ``<id>\\t<category>\\t<confidence>`` lines."""

    from .categories import categorize_transactions
    from .classifier import SentimentClassifier
    from .config import PipelineConfig

    try:
        rows = read_transactions_csv(csv_path)
        config = PipelineConfig.from_env()
        results = categorize_transactions(
            rows,
            classifier=SentimentClassifier(config),
            concurrency=config.classifier_concurrency,
        )
    except (OSError, csv.Error, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for ct in results:
        print(f"{ct.id}\t{ct.category}\t{ct.confidence:.2f}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize and analyze bank transactions from a canonical CSV "
        "(id,date,description,amount). Loads OPENAI_API_KEY from a local .env."
    ),
)

# Module-level option object to satisfy ruff B008 (no calls in parameter defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a CSV with id,date,description,amount columns",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


@app.command("analyze")
def analyze_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    session_id: Annotated[
        str | None, typer.Option(help="Session identifier; random when omitted.")
    ] = None,
) -> None:
    """Run the full analysis and print the result as JSON."""

    raise typer.Exit(cmd_analyze(csv_path, session_id))


@app.command("categorize")
def categorize_cmd(csv_path: Annotated[Path, CSV_PATH_OPTION]) -> None:
    """Print one ``id<TAB>category<TAB>confidence`` line per transaction."""

    raise typer.Exit(cmd_categorize(csv_path))


if __name__ == "__main__":  # pragma: no cover
    app()
