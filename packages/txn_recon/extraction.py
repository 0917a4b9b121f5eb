"""Notification text to transaction fields.

Pipeline for one message::

    trigger gate -> provider patterns (+ generic fallbacks)
                 -> AI fallback when the merchant is missing or confidence < 70
                 -> field-wise merge -> admit at 70 (40 for trusted sources)

Nothing in this module raises for bad input or an unavailable AI service: the
caller always receives a ``MergedExtraction`` whose ``is_valid`` says whether
it may be stored.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation

from . import patterns
from .ai_extraction import AIFallbackExtractor
from .config import EngineSettings, load_settings
from .logging_setup import get_logger
from .models import (
    ExtractedFields,
    MergedExtraction,
    Provenance,
    Provider,
    RawNotification,
    field_confidence,
)
from .normalizers import clean_merchant_name
from .pmap import p_map

_logger = get_logger("txn_recon.extraction")


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def passes_trigger_gate(text: str, locales: Sequence[str] = ("he", "en")) -> bool:
    """True when ``text`` contains a "transaction occurred" phrase for a locale."""

    folded = text.casefold()
    for locale in locales:
        for phrase in patterns.TRIGGER_PHRASES.get(locale, ()):
            if phrase.casefold() in folded:
                return True
    return False


def detect_provider(text: str) -> Provider:
    for provider, marker in patterns.PROVIDER_MARKERS:
        if marker.search(text):
            return provider
    return Provider.UNKNOWN


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse ``"1,234.50"`` style amounts; ``None`` when not a number."""

    if not raw:
        return None
    cleaned = raw.replace(",", "").strip()
    if not re.fullmatch(r"\d+(?:\.\d+)?", cleaned):
        return None
    try:
        return abs(Decimal(cleaned))
    except InvalidOperation:
        return None


def parse_day_month(day: str | int, month: str | int, *, today: date) -> date | None:
    """Resolve a day/month pair to a date relative to ``today``.

    A month later than the current month belongs to the previous year.
    Out-of-range or impossible dates (``31/02``, month ``13``) yield ``None``.
    """

    try:
        d = int(day)
        m = int(month)
    except (TypeError, ValueError):
        return None
    if not (1 <= d <= 31 and 1 <= m <= 12):
        return None
    year = today.year - 1 if m > today.month else today.year
    try:
        return date(year, m, d)
    except ValueError:
        return None


def detect_currency(text: str, local_currency: str) -> tuple[str, bool]:
    """Return ``(currency, explicit)``; explicit only for a foreign marker."""

    for code, marker in patterns.FOREIGN_CURRENCY_MARKERS:
        if code != local_currency and marker.search(text):
            return code, True
    return local_currency, False


def compute_confidence(
    card_ending: str | None,
    amount: Decimal | None,
    merchant_name: str | None,
    transaction_date: date | None,
) -> int:
    return field_confidence(card_ending, amount, merchant_name, transaction_date)


# ---------------------------------------------------------------------------
# Pattern strategy
# ---------------------------------------------------------------------------


def _first_value[T](
    rules: Iterable[re.Pattern[str]],
    text: str,
    parse: Callable[[re.Match[str]], T | None],
) -> T | None:
    for rx in rules:
        m = rx.search(text)
        if m is None:
            continue
        value = parse(m)
        if value is not None:
            return value
    return None


def _rules_for(provider: Provider, field_name: str) -> tuple[re.Pattern[str], ...]:
    own = patterns.PROVIDER_RULES[provider].for_field(field_name)
    return own + patterns.GENERIC_RULES.for_field(field_name)


def extract_with_patterns(
    text: str,
    *,
    today: date,
    local_currency: str = "ILS",
) -> ExtractedFields:
    """Deterministic extraction from issuer rules, then generic fallbacks."""

    provider = detect_provider(text)

    card = _first_value(
        _rules_for(provider, "card_ending"),
        text,
        lambda m: m.group(1) if re.fullmatch(r"\d{4}", m.group(1)) else None,
    )
    amount = _first_value(
        _rules_for(provider, "amount"), text, lambda m: parse_amount(m.group(1))
    )
    merchant = _first_value(
        _rules_for(provider, "merchant"), text, lambda m: clean_merchant_name(m.group(1))
    )
    txn_date = _first_value(
        _rules_for(provider, "date"),
        text,
        lambda m: parse_day_month(m.group(1), m.group(2), today=today),
    )

    if merchant is None and patterns.P2P_TRANSFER_MARKER.search(text):
        merchant = "BIT Transfer" if patterns.P2P_TRANSFER_PHRASE.search(text) else "BIT"

    currency, explicit = detect_currency(text, local_currency)
    return ExtractedFields(
        card_ending=card,
        amount=amount,
        currency=currency,
        explicit_currency=explicit,
        merchant_name=merchant,
        transaction_date=txn_date,
        provider=provider,
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def needs_ai_fallback(fields: ExtractedFields, threshold: int = 70) -> bool:
    return not fields.merchant_name or fields.confidence < threshold


def merge_extractions(
    pattern: ExtractedFields,
    ai: ExtractedFields | None,
    *,
    local_currency: str = "ILS",
) -> ExtractedFields:
    """Field-wise merge preferring the pattern result.

    Currency stays local unless the pattern saw an explicit foreign marker.
    The merged confidence is recomputed from the merged fields.
    """

    if ai is None:
        return pattern
    currency = pattern.currency if pattern.explicit_currency else local_currency
    return ExtractedFields(
        card_ending=pattern.card_ending or ai.card_ending,
        amount=pattern.amount if pattern.amount is not None else ai.amount,
        currency=currency,
        explicit_currency=pattern.explicit_currency,
        merchant_name=pattern.merchant_name or ai.merchant_name,
        transaction_date=(
            pattern.transaction_date
            if pattern.transaction_date is not None
            else ai.transaction_date
        ),
        provider=pattern.provider,
        model_confidence=ai.model_confidence,
    )


def _rejected(
    raw_text: str,
    *,
    provenance: Provenance,
    received_at: datetime | None,
    local_currency: str,
) -> MergedExtraction:
    return MergedExtraction(
        card_ending=None,
        amount=None,
        currency=local_currency,
        merchant_name=None,
        transaction_date=None,
        provider=Provider.UNKNOWN,
        is_valid=False,
        raw_message=raw_text,
        provenance=provenance,
        received_at=received_at,
    )


def extract(
    raw_text: str,
    skip_trigger_gate: bool = False,
    *,
    ai_extractor: AIFallbackExtractor | None = None,
    settings: EngineSettings | None = None,
    provenance: Provenance = Provenance.SMS,
    received_at: datetime | None = None,
) -> MergedExtraction:
    """Extract one notification into a ``MergedExtraction``.

    ``received_at`` (default: now) anchors year inference for day/month dates
    and is the fallback booking date when no date could be parsed.
    """

    cfg = settings or load_settings()
    text = (raw_text or "").strip()
    arrived = received_at or datetime.now(UTC)

    if not skip_trigger_gate and not passes_trigger_gate(text, cfg.locales):
        _logger.info("extract:rejected reason=trigger_gate provenance=%s", provenance)
        return _rejected(
            text, provenance=provenance, received_at=arrived, local_currency=cfg.local_currency
        )

    today = arrived.date()
    pattern = extract_with_patterns(text, today=today, local_currency=cfg.local_currency)
    merged = pattern
    used_ai = False

    if needs_ai_fallback(pattern, cfg.ai_fallback_threshold) and cfg.ai_enabled:
        extractor = ai_extractor or AIFallbackExtractor(
            model=cfg.ai_model,
            timeout_seconds=cfg.ai_timeout_seconds,
            local_currency=cfg.local_currency,
        )
        _logger.info(
            "extract:ai_fallback provider=%s pattern_confidence=%d merchant_missing=%s",
            pattern.provider,
            pattern.confidence,
            pattern.merchant_name is None,
        )
        ai = extractor.extract(text, today=today)
        merged = merge_extractions(pattern, ai, local_currency=cfg.local_currency)
        used_ai = ai.confidence > 0

    threshold = cfg.trusted_admission_threshold if skip_trigger_gate else cfg.admission_threshold
    result = MergedExtraction(
        card_ending=merged.card_ending,
        amount=merged.amount,
        currency=merged.currency,
        merchant_name=merged.merchant_name,
        transaction_date=merged.transaction_date,
        provider=merged.provider,
        is_valid=merged.confidence >= threshold,
        raw_message=text,
        provenance=provenance,
        received_at=arrived,
        used_ai=used_ai,
    )
    _logger.info(
        "extract:done provider=%s confidence=%d valid=%s used_ai=%s",
        result.provider,
        result.confidence,
        result.is_valid,
        used_ai,
    )
    return result


def extract_notification(
    notification: RawNotification,
    skip_trigger_gate: bool = False,
    *,
    ai_extractor: AIFallbackExtractor | None = None,
    settings: EngineSettings | None = None,
) -> MergedExtraction:
    return extract(
        notification.text,
        skip_trigger_gate,
        ai_extractor=ai_extractor,
        settings=settings,
        provenance=notification.provenance,
        received_at=notification.received_at,
    )


def extract_batch(
    texts: Iterable[str],
    skip_trigger_gate: bool = False,
    *,
    ai_extractor: AIFallbackExtractor | None = None,
    settings: EngineSettings | None = None,
    provenance: Provenance = Provenance.SMS,
    received_at: datetime | None = None,
    concurrency: int | None = None,
) -> list[MergedExtraction]:
    """Extract many messages concurrently, preserving input order."""

    cfg = settings or load_settings()
    return p_map(
        texts,
        lambda t: extract(
            t,
            skip_trigger_gate,
            ai_extractor=ai_extractor,
            settings=cfg,
            provenance=provenance,
            received_at=received_at,
        ),
        concurrency=concurrency or cfg.batch_concurrency,
    )


__all__ = [
    "compute_confidence",
    "detect_currency",
    "detect_provider",
    "extract",
    "extract_batch",
    "extract_notification",
    "extract_with_patterns",
    "merge_extractions",
    "needs_ai_fallback",
    "parse_amount",
    "parse_day_month",
    "passes_trigger_gate",
]
