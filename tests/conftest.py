"""Pytest configuration for test isolation.

Engine settings are read from ``TXN_RECON_*`` environment variables, and the
AI fallback would otherwise try to reach the OpenAI API. An autouse fixture
clears those variables and disables the AI fallback so every test starts from
the defaults and never touches the network; tests that exercise the fallback
inject a stub client explicitly.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# Ensure `tests/` is importable so `helpers.*` resolves.
sys.path[:0] = [p for p in [str(_ROOT / "tests")] if p not in sys.path]

from helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("TXN_RECON_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("TXN_RECON_AI_ENABLED", "false")


@pytest.fixture()
def db_url(tmp_path: Path) -> Iterator[str]:
    """File-backed SQLite database with the full schema."""

    from db.client import dispose_engines

    url = bootstrap_sqlite_db(tmp_path / "txn_recon.sqlite3")
    yield url
    dispose_engines()
