from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from itertools import product

import pytest

from txn_recon.config import EngineSettings
from txn_recon.extraction import (
    detect_currency,
    detect_provider,
    extract,
    extract_batch,
    extract_notification,
    extract_with_patterns,
    merge_extractions,
    needs_ai_fallback,
    parse_amount,
    parse_day_month,
    passes_trigger_gate,
)
from txn_recon.models import (
    ExtractedFields,
    Provenance,
    Provider,
    RawNotification,
    field_confidence,
)

NO_AI = EngineSettings(ai_enabled=False)
FEB = datetime(2026, 2, 10, 9, 30, tzinfo=UTC)


class _FixedAI:
    """Extractor double returning fixed fields and counting calls."""

    def __init__(self, fields: ExtractedFields) -> None:
        self.fields = fields
        self.calls: list[str] = []

    def extract(self, raw_text: str, *, today: date) -> ExtractedFields:
        self.calls.append(raw_text)
        return self.fields


# ---- Worked examples ---------------------------------------------------------


def test_english_notification_with_day_month_date():
    text = "charged 143.42 on card ending 8770 at MerchantX on 29/01"

    result = extract(text, settings=NO_AI, received_at=FEB)

    assert result.is_valid
    assert result.amount == Decimal("143.42")
    assert result.card_ending == "8770"
    assert result.merchant_name == "MerchantX"
    assert result.transaction_date == date(2026, 1, 29)
    assert result.confidence == 100
    assert result.provenance == Provenance.SMS


def test_invalid_month_falls_back_to_arrival_date():
    text = "charged 143.42 on card ending 8770 at MerchantX on 29/13"

    result = extract(text, settings=NO_AI, received_at=FEB)

    assert result.transaction_date is None
    assert result.booking_date == FEB.date()
    assert result.amount == Decimal("143.42")
    assert result.is_valid


def test_notification_carries_provenance_and_arrival():
    notification = RawNotification(
        "charged 52.00 on card ending 4321 at Wolt", Provenance.EMAIL, FEB
    )

    result = extract_notification(notification, settings=NO_AI)

    assert result.provenance == Provenance.EMAIL
    assert result.received_at == FEB
    assert result.booking_date == FEB.date()
    assert result.merchant_name == "Wolt"
    assert result.is_valid


# ---- Trigger gate ---------------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        "Your OTP code is 4417",
        'קוד האימות שלך הוא 5531 בסך 10 ש"ח',
        "",
    ],
)
def test_gate_rejection_nulls_every_field(text: str):
    ai = _FixedAI(ExtractedFields(amount=Decimal("1")))

    result = extract(text, ai_extractor=ai, settings=EngineSettings(), received_at=FEB)

    assert not result.is_valid
    assert (result.card_ending, result.amount, result.merchant_name, result.transaction_date) == (
        None,
        None,
        None,
        None,
    )
    assert result.confidence == 0
    assert ai.calls == []


def test_trigger_gate_is_case_insensitive_and_per_locale():
    assert passes_trigger_gate("Transaction APPROVED at Cafe", ("en",))
    assert not passes_trigger_gate("Transaction approved at Cafe", ("he",))
    assert passes_trigger_gate("אושרה עסקה בכרטיסך", ("he",))


# ---- Issuer samples ------------------------------------------------------------


def test_isracard_sample():
    text = (
        'בכרטיסך המסתיים ב-1234 אושרה עסקה בסך 45.90 ש"ח ב-שופרסל דיל. '
        "למידע נוסף היכנסו לאתר"
    )

    fields = extract_with_patterns(text, today=FEB.date())

    assert fields.provider == Provider.ISRACARD
    assert fields.card_ending == "1234"
    assert fields.amount == Decimal("45.90")
    assert fields.merchant_name == "שופרסל דיל"
    assert fields.confidence == 90


def test_cal_sample():
    text = 'כאל: בוצעה עסקה בכרטיס *5678 בסך 120.00 ש"ח ב-רמי לוי 15/03'

    fields = extract_with_patterns(text, today=date(2026, 3, 20))

    assert fields.provider == Provider.CAL
    assert fields.card_ending == "5678"
    assert fields.amount == Decimal("120.00")
    assert fields.merchant_name == "רמי לוי"
    assert fields.transaction_date == date(2026, 3, 15)


def test_leumi_sample():
    text = 'לאומי קארד: חיוב בכרטיס 4321 על סך 89.90 ש"ח - סופר פארם.'

    fields = extract_with_patterns(text, today=FEB.date())

    assert fields.provider == Provider.LEUMI
    assert fields.card_ending == "4321"
    assert fields.amount == Decimal("89.90")
    assert fields.merchant_name == "סופר פארם"


def test_bit_transfer_without_merchant_gets_processor_label():
    text = 'אושרה עסקה: העברה ב BIT על סך 50.00 ש"ח'

    fields = extract_with_patterns(text, today=FEB.date())
    assert fields.merchant_name == "BIT Transfer"
    assert fields.amount == Decimal("50.00")

    # amount + merchant = 60: below the default bar, above the trusted one
    assert not extract(text, settings=NO_AI, received_at=FEB).is_valid
    assert extract(text, True, settings=NO_AI, received_at=FEB).is_valid


def test_provider_priority_is_fixed():
    assert detect_provider("isracard max cal") == Provider.ISRACARD
    assert detect_provider("ויזה כאל ומקס") == Provider.CAL
    assert detect_provider("Maxwell's cafe") == Provider.UNKNOWN


@pytest.mark.parametrize(
    ("text", "card"),
    [
        ("charged 1500 ILS at Wolt", None),
        ("payment of 2026.00 at Wolt, booked 2026", None),
        ("charged 52.00 at Wolt, ending in 3344", "3344"),
        ("charged 52.00 on XXXX9012 at Wolt", "9012"),
    ],
)
def test_card_ending_needs_card_context(text: str, card: str | None):
    fields = extract_with_patterns(text, today=FEB.date())

    assert fields.card_ending == card
    assert fields.amount is not None


# ---- Field parsers ---------------------------------------------------------------


def test_parse_amount_rejects_non_numeric():
    assert parse_amount("1,234.50") == Decimal("1234.50")
    assert parse_amount("12a") is None
    assert parse_amount("") is None


def test_day_month_year_inference():
    today = date(2026, 2, 10)
    assert parse_day_month(29, 1, today=today) == date(2026, 1, 29)
    assert parse_day_month(15, 11, today=today) == date(2025, 11, 15)
    assert parse_day_month(31, 2, today=today) is None
    assert parse_day_month(0, 5, today=today) is None


def test_currency_explicit_only_for_foreign_markers():
    assert detect_currency("charged $12.00 at Amazon", "ILS") == ("USD", True)
    assert detect_currency('בסך 12 ש"ח', "ILS") == ("ILS", False)


# ---- Confidence and merge ----------------------------------------------------------


def test_confidence_is_monotonic_in_field_presence():
    values = {
        "card_ending": "1234",
        "amount": Decimal("1"),
        "merchant_name": "Shop",
        "transaction_date": date(2026, 1, 1),
    }
    keys = list(values)
    for mask in product([False, True], repeat=4):
        present = {k: values[k] if on else None for k, on in zip(keys, mask, strict=True)}
        base = field_confidence(**present)
        for k in keys:
            if present[k] is None:
                more = dict(present, **{k: values[k]})
                assert field_confidence(**more) > base


def test_merge_prefers_pattern_fields_and_recomputes_confidence():
    pattern = ExtractedFields(amount=Decimal("10"), card_ending="1111")
    ai = ExtractedFields(
        amount=Decimal("99"),
        card_ending="2222",
        merchant_name="Cafe",
        currency="USD",
        model_confidence=95,
    )

    merged = merge_extractions(pattern, ai)

    assert merged.amount == Decimal("10")
    assert merged.card_ending == "1111"
    assert merged.merchant_name == "Cafe"
    assert merged.currency == "ILS"
    assert merged.confidence == 90


def test_ai_fallback_fills_missing_merchant():
    text = "charged 20.00 on card ending 9999"
    ai = _FixedAI(ExtractedFields(merchant_name="Aroma"))

    result = extract(text, ai_extractor=ai, settings=EngineSettings(), received_at=FEB)

    assert ai.calls == [text]
    assert result.used_ai
    assert result.merchant_name == "Aroma"
    assert result.is_valid


def test_ai_fallback_is_skipped_when_pattern_is_complete():
    assert not needs_ai_fallback(
        ExtractedFields(
            card_ending="1", amount=Decimal("1"), merchant_name="x", transaction_date=None
        )
    )
    assert needs_ai_fallback(ExtractedFields(card_ending="1", amount=Decimal("1")))


def test_extract_batch_preserves_order():
    texts = [
        "charged 1.00 on card ending 1111 at A",
        "hello",
        "charged 3.00 on card ending 3333 at C",
    ]

    results = extract_batch(texts, settings=NO_AI, received_at=FEB, concurrency=2)

    assert [r.amount for r in results] == [Decimal("1.00"), None, Decimal("3.00")]
    assert [r.is_valid for r in results] == [True, False, True]
