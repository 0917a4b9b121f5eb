from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

import txn_recon.ai_extraction as ai_mod
from helpers.openai_stub import OpenAIStub, extract_message, stub_factory
from txn_recon.ai_extraction import AIFallbackExtractor, parse_ai_payload, strip_code_fences
from txn_recon.config import EngineSettings
from txn_recon.extraction import extract

TODAY = date(2026, 2, 10)


def _install(monkeypatch: pytest.MonkeyPatch, stub: OpenAIStub):
    factory = stub_factory(stub)
    monkeypatch.setattr(ai_mod, "OpenAI", factory)
    return factory


def test_reply_is_parsed_into_fields(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(
        {
            "cardEnding": "**** 8770",
            "merchantName": " Aroma Espresso Bar ",
            "amount": "1,043.50",
            "currency": "ils",
            "transactionDate": "2026-02-09",
            "confidence": 140,
        }
    )
    factory = _install(monkeypatch, stub)

    fields = AIFallbackExtractor(timeout_seconds=3.5).extract("some message", today=TODAY)

    assert fields.card_ending == "8770"
    assert fields.merchant_name == "Aroma Espresso Bar"
    assert fields.amount == Decimal("1043.50")
    assert fields.currency == "ILS"
    assert fields.transaction_date == date(2026, 2, 9)
    assert fields.model_confidence == 100
    # presence-derived, never the model's own number
    assert fields.confidence == 100
    assert factory.inits == [{"timeout": 3.5, "max_retries": 0}]

    (call,) = stub.calls
    assert call["model"] == "gpt-4o-mini"
    assert extract_message(call["input"]) == "some message"
    assert call["text"]["format"]["name"] == "transaction_extraction"
    assert call["text"]["format"]["strict"] is True


def test_code_fenced_reply_is_accepted():
    reply = '```json\n{"merchantName": "Wolt", "amount": 52}\n```'

    assert strip_code_fences(reply) == '{"merchantName": "Wolt", "amount": 52}'
    fields = parse_ai_payload(reply)
    assert fields.merchant_name == "Wolt"
    assert fields.amount == Decimal("52")


@pytest.mark.parametrize(
    "reply",
    [
        "not json at all",
        "[1, 2, 3]",
        '{"amount": "twelve"}',
        '{"amount": 12, "confidence": Infinity}',
        '{"amount": 12, "confidence": 1e999}',
        '{"amount": 12, "confidence": "NaN"}',
        '{"amount": 12, "confidence": [90]}',
        '{"amount": 12, "confidence": true}',
        "",
        None,
    ],
)
def test_malformed_reply_yields_empty_fields(reply):
    fields = parse_ai_payload(reply)

    assert fields.confidence == 0
    assert fields.amount is None
    assert fields.currency == "ILS"


def test_day_first_dates_are_understood():
    fields = parse_ai_payload('{"transactionDate": "09/02/2026"}')

    assert fields.transaction_date == date(2026, 2, 9)


def test_upstream_failure_degrades_to_empty(monkeypatch: pytest.MonkeyPatch, caplog):
    stub = OpenAIStub(error=TimeoutError("deadline exceeded"))
    _install(monkeypatch, stub)

    with caplog.at_level("WARNING", logger="txn_recon.ai_extraction"):
        fields = AIFallbackExtractor().extract("msg", today=TODAY)

    assert fields.confidence == 0
    assert len(stub.calls) == 1
    assert any("upstream_unavailable" in r.getMessage() for r in caplog.records)


def test_extract_keeps_pattern_result_when_ai_is_down(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(error=ConnectionError("offline"))
    _install(monkeypatch, stub)
    text = "charged 20.00 on card ending 9999"

    result = extract(
        text,
        settings=EngineSettings(ai_enabled=True),
        received_at=datetime(2026, 2, 10, tzinfo=UTC),
    )

    assert len(stub.calls) == 1
    assert not result.used_ai
    assert result.amount == Decimal("20.00")
    assert result.card_ending == "9999"
    assert result.merchant_name is None
    assert result.is_valid  # card + amount reach the admission bar


def test_extract_survives_non_finite_model_confidence(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub('{"merchantName": "Wolt", "confidence": Infinity}')
    _install(monkeypatch, stub)

    result = extract(
        "charged 20.00 on card ending 9999",
        settings=EngineSettings(ai_enabled=True),
        received_at=datetime(2026, 2, 10, tzinfo=UTC),
    )

    assert len(stub.calls) == 1
    assert not result.used_ai
    assert result.amount == Decimal("20.00")
    assert result.merchant_name is None


def test_extract_uses_foreign_currency_only_when_pattern_saw_it(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub({"merchantName": "Netflix", "currency": "USD"})
    _install(monkeypatch, stub)

    result = extract(
        "charged 45.00 on card ending 1234",
        settings=EngineSettings(ai_enabled=True),
        received_at=datetime(2026, 2, 10, tzinfo=UTC),
    )

    assert result.merchant_name == "Netflix"
    assert result.currency == "ILS"
    assert result.used_ai
