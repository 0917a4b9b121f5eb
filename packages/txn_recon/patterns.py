"""Rule tables for notification extraction.

Everything provider-specific lives here as data: which phrases identify an
issuer, and per issuer an ordered tuple of patterns for each field. Adding a
provider means adding a ``ProviderRules`` entry and a marker, not code.

Capture-group conventions
-------------------------
- ``card_ending``/``amount``/``merchant``: group 1 is the value.
- ``date``: group 1 is the day, group 2 the month.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .models import Provider

type Pattern = re.Pattern[str]


def _c(*patterns: str, flags: int = 0) -> tuple[Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


@dataclass(frozen=True, slots=True)
class ProviderRules:
    card_ending: tuple[Pattern, ...] = ()
    amount: tuple[Pattern, ...] = ()
    merchant: tuple[Pattern, ...] = ()
    date: tuple[Pattern, ...] = ()

    def for_field(self, name: str) -> tuple[Pattern, ...]:
        return getattr(self, name)


# ---------------------------------------------------------------------------
# Relevance vocabulary ("a transaction occurred"), per locale
# ---------------------------------------------------------------------------

TRIGGER_PHRASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "he": (
            "אושרה עסקה",
            "בוצעה עסקה",
            "עסקה אושרה",
            "בוצע חיוב",
            "חיוב בכרטיס",
        ),
        "en": (
            "charged",
            "transaction approved",
            "transaction was approved",
            "purchase of",
            "payment of",
            "debited",
        ),
    }
)


# ---------------------------------------------------------------------------
# Issuer detection, in fixed priority order
# ---------------------------------------------------------------------------

PROVIDER_MARKERS: tuple[tuple[Provider, Pattern], ...] = (
    (Provider.ISRACARD, re.compile(r"\bisracard\b|בכרטיסך", re.IGNORECASE)),
    (Provider.CAL, re.compile(r"\bcal\b|ויזה כאל|כאל", re.IGNORECASE)),
    (Provider.MAX, re.compile(r"\bmax\b|מקס", re.IGNORECASE)),
    (Provider.LEUMI, re.compile(r"לאומי קארד|לאומי card|\bleumi\b", re.IGNORECASE)),
)


# ---------------------------------------------------------------------------
# Per-issuer rules
# ---------------------------------------------------------------------------

_AMOUNT = r"([\d,]+(?:\.\d+)?)"
# Merchant text ends at a sentence dot, an info clause or a trailing date.
_MERCHANT_END = r"(?=\s*\.(?!\d)|\s*למידע|\s*לפרטים|\s+ב-?\s*\d{1,2}/\d{1,2}|\s*$)"

PROVIDER_RULES: Mapping[Provider, ProviderRules] = MappingProxyType(
    {
        Provider.ISRACARD: ProviderRules(
            card_ending=_c(r"בכרטיסך(?:\s+המסתיים\s+ב-)?\s*(\d{4})"),
            amount=_c(rf'בסך\s+{_AMOUNT}\s*(?:ש"ח|ILS)?'),
            merchant=_c(
                rf'ש"ח\s+ב-?\s*([^.\d][^.]*?){_MERCHANT_END}',
                rf"(?<!\w)ב-([^.\d][^.]*?){_MERCHANT_END}",
            ),
            date=_c(r"ב-?\s*(\d{1,2})/(\d{1,2})"),
        ),
        Provider.CAL: ProviderRules(
            card_ending=_c(r"\*(\d{4})"),
            amount=_c(rf'בסך\s+{_AMOUNT}\s*ש"ח'),
            merchant=_c(r"ב-([^*\d][^*]*?)(?=\s*\*|\s+\d{1,2}/\d{1,2}|\s*$)"),
            date=_c(r"(\d{1,2})/(\d{1,2})"),
        ),
        Provider.MAX: ProviderRules(
            card_ending=_c(r"\*(\d{4})"),
            amount=_c(rf'בסך\s+{_AMOUNT}\s*ש"ח'),
            merchant=_c(
                r'ש"ח\s+ב-?([^*]+?)\s*\*',
                r"(?<!\w)ב-?([^*\d][^*]*?)\s*\*",
            ),
        ),
        Provider.LEUMI: ProviderRules(
            card_ending=_c(r"כרטיס\s*(\d{4})"),
            amount=_c(rf'{_AMOUNT}\s*ש"ח'),
            merchant=_c(r'ש"ח\s*-\s*(.+?)(?:\s*$|\s*\.)'),
        ),
        Provider.UNKNOWN: ProviderRules(),
    }
)


# ---------------------------------------------------------------------------
# Generic fallbacks, tried after the issuer's own patterns
# ---------------------------------------------------------------------------

GENERIC_RULES = ProviderRules(
    card_ending=_c(
        r"(?:card|כרטיס)\D{0,24}?(\d{4})(?!\d)",
        r"\*(\d{4})(?!\d)",
        r"(?:ending(?:\s+in)?|x{2,}|•+|המסתיים\s*ב-?)\s*(\d{4})(?!\d)",
        flags=re.IGNORECASE,
    ),
    amount=_c(
        rf"(?:charged|amount|payment of|purchase of|total|בסך|סכום)\s*(?:of\s+)?"
        rf"(?:ILS|NIS|USD|EUR|GBP|₪|\$|€|£)?\s*{_AMOUNT}",
        rf'{_AMOUNT}\s*(?:ש"ח|ILS|NIS|USD|EUR|GBP|₪)',
        rf"(?:₪|\$|€|£)\s*{_AMOUNT}",
        flags=re.IGNORECASE,
    ),
    merchant=_c(
        r"\bat\s+(.+?)(?=\s+on\s+\d|\s*[.,;]\s|\s*\.?\s*$|\s+for\s+more)",
        r"(?<!\w)ב-?([א-ת][א-ת\w\s'\"-]*)",
        flags=re.IGNORECASE,
    ),
    date=_c(r"(?<![\d/])(\d{1,2})/(\d{1,2})(?!\d)"),
)


# ---------------------------------------------------------------------------
# Currency markers and P2P fallbacks
# ---------------------------------------------------------------------------

FOREIGN_CURRENCY_MARKERS: tuple[tuple[str, Pattern], ...] = (
    ("USD", re.compile(r"\bUSD\b|\$")),
    ("EUR", re.compile(r"\bEUR\b|€")),
    ("GBP", re.compile(r"\bGBP\b|£")),
)

P2P_TRANSFER_MARKER = re.compile(r"\bBIT\b|ביט")
P2P_TRANSFER_PHRASE = re.compile(r"העברה\s*ב\s*BIT", re.IGNORECASE)


__all__ = [
    "FOREIGN_CURRENCY_MARKERS",
    "GENERIC_RULES",
    "P2P_TRANSFER_MARKER",
    "P2P_TRANSFER_PHRASE",
    "PROVIDER_MARKERS",
    "PROVIDER_RULES",
    "ProviderRules",
    "TRIGGER_PHRASES",
]
