from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import txn_recon.cli as cli_mod
from txn_recon.cli import app

WOLT = "charged 52.00 on card ending 8770 at Wolt on 29/01"
BAR = "charged 30.00 on card ending 8770 at Mystery Bar on 29/01"


@pytest.fixture()
def run(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    # leave the package logger propagating to the root logger
    monkeypatch.setattr(cli_mod, "configure_logging", lambda: None)
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(app, list(args))

    return _invoke


def test_e2e_ingest_categorize_and_reconcile(run, db_url: str, tmp_path: Path):
    # -------------------------
    # Extraction only
    # -------------------------
    res = run("extract", "--text", WOLT, "--no-ai")
    assert res.exit_code == 0, res.output
    payload = json.loads(res.stdout)
    assert payload["amount"] == "52.00"
    assert payload["card_ending"] == "8770"
    assert payload["merchant_name"] == "Wolt"
    assert payload["confidence"] == 100
    assert payload["is_valid"] is True

    # -------------------------
    # Ingest + resend
    # -------------------------
    res = run("ingest", "--household", "h1", "--text", WOLT, "--database-url", db_url)
    assert res.exit_code == 0, res.output
    created = json.loads(res.stdout)
    assert created["status"] == "created"
    assert created["transaction"]["category"] == "Restaurants"

    res = run("ingest", "--household", "h1", "--text", WOLT, "--database-url", db_url)
    resent = json.loads(res.stdout)
    assert resent["status"] == "duplicate"
    assert resent["transaction"]["id"] == created["transaction"]["id"]

    res = run("ingest", "--household", "h1", "--text", BAR, "--database-url", db_url)
    assert json.loads(res.stdout)["transaction"]["category"] is None

    # -------------------------
    # Categorize with custom keywords
    # -------------------------
    keywords = tmp_path / "keywords.json"
    keywords.write_text(json.dumps({"Bars": ["mystery"]}), encoding="utf-8")
    res = run(
        "categorize",
        "--household",
        "h1",
        "--keywords-json",
        str(keywords),
        "--database-url",
        db_url,
    )
    assert res.exit_code == 0, res.output
    report = json.loads(res.stdout)
    assert report["categorized"] == 1
    assert report["drained"] is True

    # -------------------------
    # Reconcile (nothing to merge for SMS-only data)
    # -------------------------
    res = run(
        "reconcile",
        "--household",
        "h1",
        "--date-from",
        "2026-01-01",
        "--date-to",
        "2026-12-31",
        "--database-url",
        db_url,
    )
    assert res.exit_code == 0, res.output
    summary = json.loads(res.stdout)
    assert summary["counts"]["merged"] == 0
    assert summary["merged_pairs"] == []


@pytest.mark.parametrize(
    "args",
    [
        ("ingest", "--household", "h1", "--text", WOLT, "--provenance", "fax"),
        ("reconcile", "--household", "h1", "--date-from", "2026-13-01", "--date-to", "2026-01-02"),
        ("reconcile", "--household", "h1", "--date-from", "2026-02-01", "--date-to", "2026-01-02"),
    ],
)
def test_e2e_bad_arguments_exit_non_zero(run, args):
    res = run(*args)

    assert res.exit_code == 1
    assert "Error:" in res.output
