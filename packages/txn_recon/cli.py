"""CLI for the ``txn_recon`` package.

A Typer console interface over the engine entry points. The root callback
loads a local ``.env`` with ``python-dotenv`` (``DATABASE_URL``,
``OPENAI_API_KEY`` and ``TXN_RECON_*`` settings) and configures logging before
any command runs. Business logic lives in the engine modules.
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Extract card transactions from notifications, store them, reconcile "
        "duplicates across channels and categorize what is left."
    ),
)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(1)


@app.command("extract")
def extract_cmd(
    text: str = typer.Option(..., "--text", help="Raw notification text."),
    *,
    trusted: bool = typer.Option(
        False, help="Skip the trigger-phrase gate (trusted source, lower admission bar)."
    ),
    no_ai: bool = typer.Option(False, "--no-ai", help="Disable the AI fallback."),
) -> None:
    """Print the merged extraction of one notification as JSON."""

    from dataclasses import replace

    from .config import load_settings
    from .extraction import extract

    settings = load_settings()
    if no_ai:
        settings = replace(settings, ai_enabled=False)
    result = extract(text, trusted, settings=settings)
    payload = asdict(result)
    payload["confidence"] = result.confidence
    payload["booking_date"] = result.booking_date
    _echo_json(payload)


@app.command("ingest")
def ingest_cmd(
    household: str = typer.Option(..., "--household", help="Household identifier."),
    text: str = typer.Option(..., "--text", help="Raw notification text."),
    *,
    provenance: str = typer.Option("sms", help="sms, ocr, email, statement or manual."),
    trusted: bool = typer.Option(False, help="Skip the trigger-phrase gate."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Extract, de-duplicate, store and categorize one notification."""

    from .categorize import default_categorizer
    from .config import load_settings
    from .ingest import ingest_notification
    from .models import Provenance
    from .persistence import SqlMerchantMemoryStore, SqlTransactionStore
    from .store import StorageError

    try:
        source = Provenance(provenance)
    except ValueError as e:
        raise _fail(f"unknown provenance {provenance!r}") from e

    settings = load_settings()
    store = SqlTransactionStore(database_url)
    memory = SqlMerchantMemoryStore(database_url)
    try:
        result = ingest_notification(
            store,
            household,
            text,
            skip_trigger_gate=trusted,
            settings=settings,
            categorizer=default_categorizer(memory, settings),
            provenance=source,
        )
    except StorageError as e:
        raise _fail(str(e)) from e

    _echo_json(
        {
            "status": result.status,
            "transaction": asdict(result.transaction) if result.transaction else None,
        }
    )


@app.command("reconcile")
def reconcile_cmd(
    household: str = typer.Option(..., "--household", help="Household identifier."),
    date_from: str = typer.Option(..., "--date-from", help="First app-record date (YYYY-MM-DD)."),
    date_to: str = typer.Option(..., "--date-to", help="Last app-record date (YYYY-MM-DD)."),
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Merge payment-app records with their card-statement duplicates."""

    from .persistence import SqlTransactionStore
    from .reconcile import reconcile_household
    from .store import StorageError

    try:
        start, end = date.fromisoformat(date_from), date.fromisoformat(date_to)
    except ValueError as e:
        raise _fail(f"invalid date: {e}") from e
    if start > end:
        raise _fail("--date-from must not be after --date-to")

    try:
        report = reconcile_household(SqlTransactionStore(database_url), household, start, end)
    except StorageError as e:
        raise _fail(str(e)) from e

    _echo_json(
        {
            "counts": report.counts,
            "merged_pairs": [
                {"primary": m.primary_id, "duplicate": m.duplicate_id, "confidence": m.confidence}
                for m in report.merged
            ],
            "needs_review": [
                {"record": m.record.id, "candidate": m.candidate.id, "diff": m.amount_diff}
                for m in report.needs_review
            ],
            "unmatched": report.unmatched,
        }
    )


@app.command("categorize")
def categorize_cmd(
    household: str = typer.Option(..., "--household", help="Household identifier."),
    *,
    keywords_json: Path | None = typer.Option(
        None,
        "--keywords-json",
        help="JSON object mapping category name to a list of merchant keywords.",
        dir_okay=False,
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Categorize every uncategorized open transaction of a household."""

    from .categorize import KeywordCategorizer, MemoryCategorizer, categorize_pending
    from .config import load_settings
    from .persistence import SqlMerchantMemoryStore, SqlTransactionStore
    from .store import StorageError

    settings = load_settings()
    keywords = settings.category_keywords
    if keywords_json is not None:
        try:
            raw = json.loads(keywords_json.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise _fail(f"file not found: {keywords_json}") from e
        except json.JSONDecodeError as e:
            raise _fail(f"invalid JSON in {keywords_json}: {e}") from e
        if not isinstance(raw, dict):
            raise _fail("keywords JSON must be an object")
        keywords = {str(k): tuple(str(w) for w in v) for k, v in raw.items()}

    memory = SqlMerchantMemoryStore(database_url)
    categorizer = MemoryCategorizer(memory, KeywordCategorizer(keywords or None))
    try:
        report = categorize_pending(
            SqlTransactionStore(database_url), household, categorizer, settings=settings
        )
    except StorageError as e:
        raise _fail(str(e)) from e
    _echo_json(asdict(report))


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
