"""Cross-source fuzzy matching of a record against a pool of transactions.

A *record* is either a ``Receipt`` or a ``CanonicalTransaction`` from one
channel; the *pool* holds stored transactions from the other side. Matching is
read-only and returns at most one ``MatchCandidate``:

- merchant correlation: substring containment, a known service mapping
  (payment-processor labels standing in for the real merchant), or a shared
  significant word;
- amount test: a wide tolerance when the merchants correlate, a strict one
  when they do not;
- ranking: merchant-correlated (score 100) beats amount-only (score 50); then
  the smallest absolute amount difference; then the closest date.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from types import MappingProxyType

from .logging_setup import get_logger
from .models import CanonicalTransaction, MatchCandidate, MatchReason, Receipt
from .normalizers import normalize_merchant, significant_words

_logger = get_logger("txn_recon.matching")

type Correlate = Callable[[str | None, str | None], bool]


@dataclass(frozen=True, slots=True)
class ServiceMapping:
    """Receipt-side name pattern and the statement-side labels it appears as."""

    receipt: re.Pattern[str]
    transaction: re.Pattern[str]


def _svc(receipt: str, transaction: str) -> ServiceMapping:
    return ServiceMapping(re.compile(receipt, re.I), re.compile(transaction, re.I))


KNOWN_SERVICE_MAPPINGS: tuple[ServiceMapping, ...] = (
    # Streaming and digital services
    _svc(r"spotify", r"paypal.*spotify|spotify"),
    _svc(r"netflix", r"paypal.*netflix|netflix"),
    _svc(r"google\s*(?:play|payment|one)?", r"paypal.*google|google"),
    _svc(r"apple", r"apple|itunes"),
    _svc(r"amazon|amzn", r"paypal.*amazon|amazon|amzn"),
    _svc(r"dropbox", r"paypal.*dropbox|dropbox"),
    _svc(r"adobe", r"paypal.*adobe|adobe"),
    _svc(r"microsoft|office\s*365", r"paypal.*microsoft|microsoft|msft"),
    # Cloud and developer services
    _svc(r"anthropic", r"paypal.*anthropic|anthropic"),
    _svc(r"openai", r"paypal.*openai|openai"),
    _svc(r"cloudflare", r"paypal.*cloudflare|cloudflare"),
    _svc(r"github", r"paypal.*github|github"),
    _svc(r"vercel", r"paypal.*vercel|vercel"),
    _svc(r"heroku", r"paypal.*heroku|heroku"),
    _svc(r"digital\s*ocean", r"paypal.*digital|digitalocean"),
    # Local telecom and utilities
    _svc(r"bezeq|בזק", r"bezeq|בזק"),
    _svc(r"cellcom|סלקום", r"cellcom|סלקום"),
    _svc(r"partner|פרטנר", r"partner|פרטנר"),
    _svc(r"\bhot\b|הוט", r"\bhot\b|הוט"),
    _svc(r"\byes\b|(?<!\w)יס(?!\w)", r"\byes\b|(?<!\w)יס(?!\w)"),
    _svc(
        r"electra\s*power|superpower|אלקטרה\s*פאוור",
        r"electra|superpower|אלקטרה\s*פאוור",
    ),
    _svc(r"הארץ|haaretz", r"הארץ|הוצאת\s*עיתון|haaretz"),
    # E-commerce
    _svc(r"aliexpress", r"paypal.*ali|aliexpress|alibaba"),
    _svc(r"ebay", r"paypal.*ebay|ebay"),
    _svc(r"temu", r"paypal.*temu|temu"),
    _svc(r"shein", r"paypal.*shein|shein"),
    # VPN
    _svc(r"nord\s*(?:vpn|account)?", r"paypal.*nord|nordvpn"),
    _svc(r"express\s*vpn", r"paypal.*express|expressvpn"),
)

# Plausible conversion ranges into the local currency (units of local per unit).
FX_RANGES_TO_LOCAL: Mapping[str, tuple[Decimal, Decimal]] = MappingProxyType(
    {
        "USD": (Decimal("3.4"), Decimal("4.0")),
        "EUR": (Decimal("3.6"), Decimal("4.3")),
        "GBP": (Decimal("4.2"), Decimal("5.0")),
    }
)


# ---------------------------------------------------------------------------
# Merchant correlation
# ---------------------------------------------------------------------------


def _known_mapping(receipt_side: str, transaction_side: str) -> bool:
    return any(
        m.receipt.search(receipt_side) and m.transaction.search(transaction_side)
        for m in KNOWN_SERVICE_MAPPINGS
    )


def merchants_match(a: str | None, b: str | None) -> bool:
    """Whether two merchant texts plausibly name the same business.

    Symmetric: the known-mapping table is consulted in both directions.
    """

    ka = normalize_merchant(a)
    kb = normalize_merchant(b)
    if not ka or not kb:
        return False
    if ka in kb or kb in ka:
        return True
    if _known_mapping(ka, kb) or _known_mapping(kb, ka):
        return True
    return bool(significant_words(ka) & significant_words(kb))


# ---------------------------------------------------------------------------
# Amount tolerance
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Tolerances:
    """Percent tolerances relative to the larger amount.

    ``merchant_abs`` sets a floor under the merchant-correlated tolerance
    (used for P2P transfers, where fees round to whole units).
    """

    merchant_pct: Decimal = Decimal("3.0")
    strict_pct: Decimal = Decimal("0.5")
    merchant_abs: Decimal | None = None

    def __post_init__(self) -> None:
        if self.strict_pct < 0 or self.merchant_pct < self.strict_pct:
            raise ValueError("tolerances must satisfy 0 <= strict_pct <= merchant_pct")

    def allowed(self, a: Decimal, b: Decimal, *, merchant_correlated: bool) -> Decimal:
        base = max(a, b)
        strict = base * self.strict_pct / 100
        if not merchant_correlated:
            return strict
        if self.merchant_abs is not None:
            return max(base * self.merchant_pct / 100, self.merchant_abs)
        return base * self.merchant_pct / 100


DEFAULT_TOLERANCES = Tolerances()


def amounts_match(
    a: Decimal,
    b: Decimal,
    *,
    merchant_correlated: bool,
    tolerances: Tolerances = DEFAULT_TOLERANCES,
) -> bool:
    return abs(a - b) <= tolerances.allowed(a, b, merchant_correlated=merchant_correlated)


def fx_plausible(
    foreign_amount: Decimal,
    foreign_currency: str,
    local_amount: Decimal,
) -> bool:
    """Whether ``local_amount`` is a plausible conversion of ``foreign_amount``."""

    rng = FX_RANGES_TO_LOCAL.get(foreign_currency)
    if rng is None or foreign_amount <= 0:
        return False
    lo, hi = rng
    return foreign_amount * lo <= local_amount <= foreign_amount * hi


def amount_difference(
    amount: Decimal,
    currency: str,
    candidate: CanonicalTransaction,
    *,
    merchant_correlated: bool,
    tolerances: Tolerances = DEFAULT_TOLERANCES,
    local_currency: str = "ILS",
) -> Decimal | None:
    """Absolute difference when the amounts are acceptable, otherwise ``None``.

    Order of checks: same currency; the candidate's original (pre-conversion)
    amount in the record's currency; and, only for merchant-correlated pairs,
    a plausible FX conversion between the record's foreign currency and the
    candidate's local amount.
    """

    if candidate.currency == currency:
        if amounts_match(
            amount, candidate.amount, merchant_correlated=merchant_correlated, tolerances=tolerances
        ):
            return abs(amount - candidate.amount)
        return None
    if candidate.original_currency == currency and candidate.original_amount is not None:
        if amounts_match(
            amount,
            candidate.original_amount,
            merchant_correlated=merchant_correlated,
            tolerances=tolerances,
        ):
            return abs(amount - candidate.original_amount)
        return None
    if not merchant_correlated:
        return None
    if candidate.currency == local_currency and fx_plausible(amount, currency, candidate.amount):
        lo, hi = FX_RANGES_TO_LOCAL[currency]
        return abs(candidate.amount - amount * (lo + hi) / 2)
    if currency == local_currency and fx_plausible(
        candidate.amount, candidate.currency, amount
    ):
        lo, hi = FX_RANGES_TO_LOCAL[candidate.currency]
        return abs(amount - candidate.amount * (lo + hi) / 2)
    return None


# ---------------------------------------------------------------------------
# Date windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DateWindow:
    """Candidate dates allowed from ``anchor - days_before`` to ``anchor + days_after``."""

    days_before: int
    days_after: int

    def __post_init__(self) -> None:
        if self.days_before < 0 or self.days_after < 0:
            raise ValueError("DateWindow bounds must be non-negative")

    @classmethod
    def symmetric(cls, days: int) -> DateWindow:
        return cls(days, days)

    def mirrored(self) -> DateWindow:
        return DateWindow(self.days_after, self.days_before)

    def bounds(self, anchor: date) -> tuple[date, date]:
        return anchor - timedelta(days=self.days_before), anchor + timedelta(days=self.days_after)

    def contains(self, anchor: date, candidate: date) -> bool:
        lo, hi = self.bounds(anchor)
        return lo <= candidate <= hi


RECEIPT_WINDOW = DateWindow.symmetric(2)
# Statement settlement of an app payment lags by up to five days.
RECONCILIATION_WINDOW = DateWindow(days_before=1, days_after=5)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _RecordView:
    merchants: tuple[str, ...]
    amount: Decimal
    currency: str
    on: date


def _merchant_texts(tx: CanonicalTransaction) -> tuple[str, ...]:
    return tuple(dict.fromkeys(t for t in (tx.merchant_raw, tx.merchant_normalized) if t))


def _view(record: Receipt | CanonicalTransaction) -> _RecordView:
    if isinstance(record, Receipt):
        merchants = (record.merchant_name,) if record.merchant_name else ()
        return _RecordView(merchants, record.amount, record.currency, record.receipt_date)
    return _RecordView(_merchant_texts(record), record.amount, record.currency, record.date)


def correlated(
    record_merchants: Iterable[str],
    candidate: CanonicalTransaction,
    correlate: Correlate = merchants_match,
) -> bool:
    cand = _merchant_texts(candidate)
    return any(correlate(a, b) for a in record_merchants for b in cand)


def find_match(
    record: Receipt | CanonicalTransaction,
    pool: Iterable[CanonicalTransaction],
    *,
    window: DateWindow = RECEIPT_WINDOW,
    correlate: Correlate = merchants_match,
    tolerances: Tolerances = DEFAULT_TOLERANCES,
    local_currency: str = "ILS",
) -> MatchCandidate | None:
    """Best acceptable candidate for ``record`` in ``pool``, or ``None``.

    ``None`` means "no candidate"; it is the common outcome and not an error.
    """

    view = _view(record)
    best: tuple[tuple[int, Decimal, int], MatchCandidate] | None = None
    for cand in pool:
        if not window.contains(view.on, cand.date):
            continue
        is_correlated = correlated(view.merchants, cand, correlate)
        diff = amount_difference(
            view.amount,
            view.currency,
            cand,
            merchant_correlated=is_correlated,
            tolerances=tolerances,
            local_currency=local_currency,
        )
        if diff is None:
            continue
        offset = (cand.date - view.on).days
        key = (0 if is_correlated else 1, diff, abs(offset))
        if best is not None and key >= best[0]:
            continue
        best = (
            key,
            MatchCandidate(
                record=record,
                candidate=cand,
                score=100 if is_correlated else 50,
                reason=(
                    MatchReason.MERCHANT_CORRELATED if is_correlated else MatchReason.AMOUNT_ONLY
                ),
                amount_diff=diff,
                day_offset=offset,
            ),
        )

    if best is None:
        _logger.debug("matching:no_candidate amount=%s on=%s", view.amount, view.on)
        return None
    match = best[1]
    _logger.debug(
        "matching:candidate id=%s score=%d reason=%s diff=%s offset=%d",
        match.candidate.id,
        match.score,
        match.reason,
        match.amount_diff,
        match.day_offset,
    )
    return match


__all__ = [
    "DEFAULT_TOLERANCES",
    "DateWindow",
    "FX_RANGES_TO_LOCAL",
    "KNOWN_SERVICE_MAPPINGS",
    "RECEIPT_WINDOW",
    "RECONCILIATION_WINDOW",
    "ServiceMapping",
    "Tolerances",
    "amount_difference",
    "amounts_match",
    "correlated",
    "find_match",
    "fx_plausible",
    "merchants_match",
]
