"""Decide whether automatic categorization may run for a lifecycle event.

A pure decision table over the trigger and the record's current category
provenance. Rules are evaluated in order and the first match wins:

1. ``user_manual`` category: never run.
2. Confirmation of an existing record: never run.
3. Fresh ingestion: run.
4. Enrichment: run only when it brings usable, better merchant text.
5. Otherwise: do not run.
"""

from __future__ import annotations

from enum import StrEnum
from typing import NamedTuple

from .models import CategorySource, Channel
from .normalizers import normalize_merchant, scripts_in


class AutoCatTrigger(StrEnum):
    SMS_CREATED = "sms_created"
    CC_CREATED = "cc_created"
    BIT_STANDALONE = "bit_standalone"
    CC_CONFIRMED = "cc_confirmed"
    EMAIL_ENRICHED = "email_enriched"


FRESH_TRIGGERS = frozenset(
    {AutoCatTrigger.SMS_CREATED, AutoCatTrigger.CC_CREATED, AutoCatTrigger.BIT_STANDALONE}
)
CONFIRMATION_TRIGGERS = frozenset({AutoCatTrigger.CC_CONFIRMED})
ENRICHMENT_TRIGGERS = frozenset({AutoCatTrigger.EMAIL_ENRICHED})


class AutoCatDecision(NamedTuple):
    should_run: bool
    reason: str


def is_better_merchant_text(new: str, previous: str | None) -> bool:
    """Longer than the previous text, or written in a script it lacks."""

    new_key = normalize_merchant(new) or ""
    prev_key = normalize_merchant(previous) or ""
    if not prev_key:
        return bool(new_key)
    if len(new_key) > len(prev_key):
        return True
    return bool(scripts_in(new_key) - scripts_in(prev_key))


def decide(
    trigger: AutoCatTrigger | str,
    current_category: str | None,
    category_source: CategorySource | str | None,
    new_merchant_info: str | None = None,
    previous_merchant: str | None = None,
) -> AutoCatDecision:
    trig = AutoCatTrigger(trigger)
    source = CategorySource(category_source) if category_source else None

    if source is CategorySource.USER_MANUAL:
        return AutoCatDecision(False, "category set manually by user")

    if trig in CONFIRMATION_TRIGGERS:
        return AutoCatDecision(False, "confirmation keeps the existing categorization")

    if trig in FRESH_TRIGGERS:
        return AutoCatDecision(True, f"new transaction ({trig})")

    if trig in ENRICHMENT_TRIGGERS:
        if not new_merchant_info or not new_merchant_info.strip():
            return AutoCatDecision(False, "enrichment carried no merchant information")
        if not current_category:
            return AutoCatDecision(True, "first usable merchant information")
        if source is CategorySource.AUTO:
            if is_better_merchant_text(new_merchant_info, previous_merchant):
                return AutoCatDecision(True, "enrichment improved the merchant text")
            return AutoCatDecision(False, "existing auto category is adequate")
        return AutoCatDecision(False, f"category source {source} is not re-evaluated")

    return AutoCatDecision(False, "no rule permits categorization")


def trigger_for_channel(channel: Channel) -> AutoCatTrigger:
    if channel == Channel.SMS:
        return AutoCatTrigger.SMS_CREATED
    if channel == Channel.APP:
        return AutoCatTrigger.BIT_STANDALONE
    return AutoCatTrigger.CC_CREATED


__all__ = [
    "AutoCatDecision",
    "AutoCatTrigger",
    "CONFIRMATION_TRIGGERS",
    "ENRICHMENT_TRIGGERS",
    "FRESH_TRIGGERS",
    "decide",
    "is_better_merchant_text",
    "trigger_for_channel",
]
