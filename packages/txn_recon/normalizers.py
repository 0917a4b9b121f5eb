"""Merchant text cleanup and comparison keys.

Two layers:

- ``clean_merchant_name`` trims what a provider appends after the merchant in
  a notification (trailing dots, "for more information" clauses). The result
  is still display text.
- ``normalize_merchant`` builds the comparison key: NFKC, whitespace collapsed,
  ``casefold()``. Equivalent spellings of one merchant map to the same key.
"""

from __future__ import annotations

import re
import unicodedata

# Trailing clauses providers append after the merchant name.
_BOILERPLATE_TAIL_RE = re.compile(
    r"\s*(?:למידע|לפרטים|for more information|for details|more info)\b.*$",
    re.IGNORECASE | re.DOTALL,
)
_TRAILING_NOISE_RE = re.compile(r"[\s.,;:\-]+$")
_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)

_STOP_WORDS = frozenset({"the", "and", "ltd", "inc", "com", "www", "llc", "בעמ"})


def clean_merchant_name(text: str | None) -> str | None:
    """Return display merchant text without trailing provider boilerplate."""

    if text is None:
        return None
    s = _WS_RE.sub(" ", text).strip()
    s = _BOILERPLATE_TAIL_RE.sub("", s)
    s = _TRAILING_NOISE_RE.sub("", s).strip()
    return s or None


def normalize_merchant(text: str | None) -> str | None:
    """Comparison key for a merchant name, or ``None`` when blank."""

    if text is None:
        return None
    s = unicodedata.normalize("NFKC", text)
    s = s.replace("*", " ")
    s = _WS_RE.sub(" ", s).strip().casefold()
    return s or None


def significant_words(text: str | None) -> set[str]:
    """Word tokens of three or more characters, stop words removed.

    Letters of any script count as word characters, so Hebrew names keep their
    tokens. Punctuation (including the geresh in abbreviations) is dropped.
    """

    key = normalize_merchant(text)
    if not key:
        return set()
    key = key.replace('"', "").replace("'", "").replace("״", "")
    return {w for w in _WORD_RE.findall(key) if len(w) >= 3 and w not in _STOP_WORDS}


def scripts_in(text: str | None) -> frozenset[str]:
    """Unicode scripts of the letters in ``text`` (``LATIN``, ``HEBREW``...)."""

    if not text:
        return frozenset()
    out: set[str] = set()
    for ch in text:
        if not ch.isalpha():
            continue
        name = unicodedata.name(ch, "")
        if name:
            out.add(name.split(" ", 1)[0])
    return frozenset(out)


__all__ = [
    "clean_merchant_name",
    "normalize_merchant",
    "scripts_in",
    "significant_words",
]
