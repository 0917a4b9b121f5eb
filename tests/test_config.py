from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from txn_recon.config import EngineSettings, load_settings
from txn_recon.logging_setup import CardNumberRedactor, _parse_level, redact_card_numbers


def test_defaults_without_environment():
    settings = load_settings({})

    assert settings == EngineSettings()
    assert settings.local_currency == "ILS"
    assert settings.locales == ("he", "en")


def test_environment_values_are_coerced():
    settings = load_settings(
        {
            "TXN_RECON_AI_ENABLED": "off",
            "TXN_RECON_AI_TIMEOUT_SECONDS": "2.5",
            "TXN_RECON_RECEIPT_WINDOW_DAYS": "3",
            "TXN_RECON_MERCHANT_TOLERANCE_PCT": "4.5",
            "TXN_RECON_LOCALES": "en, he ,",
            "TXN_RECON_LOCAL_CURRENCY": "usd",
            "TXN_RECON_AI_MODEL": "",
        }
    )

    assert settings.ai_enabled is False
    assert settings.ai_timeout_seconds == 2.5
    assert settings.receipt_window_days == 3
    assert settings.merchant_tolerance_pct == Decimal("4.5")
    assert settings.locales == ("en", "he")
    assert settings.local_currency == "USD"
    assert settings.ai_model == "gpt-4o-mini"


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("TXN_RECON_AI_ENABLED", "maybe"),
        ("TXN_RECON_SWEEP_BATCH_SIZE", "ten"),
        ("TXN_RECON_STRICT_TOLERANCE_PCT", "half"),
    ],
)
def test_unparseable_values_name_the_variable(key: str, value: str):
    with pytest.raises(ValueError, match=key):
        load_settings({key: value})


@pytest.mark.parametrize(
    "overrides",
    [
        {"strict_tolerance_pct": Decimal("5"), "merchant_tolerance_pct": Decimal("3")},
        {"reconcile_days_before": -1},
        {"receipt_window_days": -2},
        {"trusted_admission_threshold": 80, "admission_threshold": 70},
    ],
)
def test_inconsistent_settings_are_rejected(overrides):
    with pytest.raises(ValueError):
        EngineSettings(**overrides)


def test_process_environment_is_read(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TXN_RECON_SWEEP_MAX_PASSES", "7")

    assert load_settings().sweep_max_passes == 7
    # autouse fixture keeps the AI fallback off in tests
    assert load_settings().ai_enabled is False


def test_log_level_parsing(monkeypatch: pytest.MonkeyPatch):
    assert _parse_level("debug") == logging.DEBUG
    assert _parse_level("15") == 15
    monkeypatch.setenv("TXN_RECON_LOG_LEVEL", "warning")
    assert _parse_level(None) == logging.WARNING
    with pytest.raises(ValueError):
        _parse_level("chatty")


def test_card_numbers_are_masked():
    assert redact_card_numbers("card 4580-1234-5678-8770 used") == "card ****8770 used"
    assert redact_card_numbers("charged 1,043.50 on 29/01/2026") == "charged 1,043.50 on 29/01/2026"

    record = logging.LogRecord(
        "txn_recon.ingest", logging.INFO, __file__, 1, "raw=%s", ("4580123456788770",), None
    )
    assert CardNumberRedactor().filter(record)
    assert record.getMessage() == "raw=****8770"
