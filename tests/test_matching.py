from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from itertools import permutations

import pytest

from txn_recon.matching import (
    DateWindow,
    Tolerances,
    amount_difference,
    amounts_match,
    find_match,
    fx_plausible,
    merchants_match,
)
from txn_recon.models import CanonicalTransaction, Channel, MatchReason, Receipt

D = date(2026, 3, 10)


def _tx(
    tx_id: int,
    merchant: str | None,
    amount: str,
    on: date = D,
    *,
    currency: str = "ILS",
    **kw,
) -> CanonicalTransaction:
    return CanonicalTransaction(
        household_id="h1",
        id=tx_id,
        date=on,
        amount=Decimal(amount),
        currency=currency,
        channel=kw.pop("channel", Channel.STATEMENT),
        merchant_raw=merchant,
        **kw,
    )


def _receipt(merchant: str | None, amount: str, on: date = D, currency: str = "ILS") -> Receipt:
    return Receipt(
        id="r1",
        household_id="h1",
        merchant_name=merchant,
        amount=Decimal(amount),
        receipt_date=on,
        currency=currency,
    )


# ---- Merchant correlation ------------------------------------------------------------


NAMES = [
    "Spotify",
    "PAYPAL *SPOTIFY",
    "Amazon UK",
    "AMZN Mktp",
    "בזק בינלאומי",
    "Bezeq",
    "Hot Mobile",
    "Shotgun Cafe",
    "Rami Levy",
    "רמי לוי",
    "",
]


def test_merchant_correlation_is_symmetric():
    for a, b in permutations(NAMES, 2):
        assert merchants_match(a, b) == merchants_match(b, a), (a, b)


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        ("Spotify", "PAYPAL *SPOTIFY", True),
        ("Amazon", "AMZN Mktp US", True),
        ("Bezeq", "בזק בינלאומי", True),
        ("Cafe Landwer Tel Aviv", "Landwer", True),
        ("Hot Mobile", "Shotgun Cafe", False),
        ("Yes Planet", "Yesodot Bakery", False),
        ("Aroma", None, False),
    ],
)
def test_merchant_correlation_cases(a, b, expected):
    assert merchants_match(a, b) is expected


# ---- Amount tolerance -------------------------------------------------------------------


def test_strict_tolerance_is_contained_in_wide_tolerance():
    tol = Tolerances()
    base = Decimal("100")
    for cents in range(0, 600, 7):
        other = base + Decimal(cents) / 100
        if amounts_match(base, other, merchant_correlated=False, tolerances=tol):
            assert amounts_match(base, other, merchant_correlated=True, tolerances=tol)


def test_tolerance_bounds():
    assert amounts_match(Decimal("100"), Decimal("102.9"), merchant_correlated=True)
    assert not amounts_match(Decimal("100"), Decimal("103.5"), merchant_correlated=True)
    assert amounts_match(Decimal("100"), Decimal("100.4"), merchant_correlated=False)
    assert not amounts_match(Decimal("100"), Decimal("101"), merchant_correlated=False)


def test_absolute_tolerance_is_a_floor_under_merchant_percent():
    tol = Tolerances(merchant_abs=Decimal("1.00"))
    assert tol.allowed(Decimal("1000"), Decimal("1000"), merchant_correlated=True) == Decimal("30")
    assert tol.allowed(Decimal("50"), Decimal("50"), merchant_correlated=True) == Decimal("1.50")
    assert tol.allowed(Decimal("20"), Decimal("20"), merchant_correlated=True) == Decimal("1.00")
    assert tol.allowed(Decimal("1000"), Decimal("1000"), merchant_correlated=False) == Decimal("5")


def test_tolerances_reject_inverted_configuration():
    with pytest.raises(ValueError):
        Tolerances(merchant_pct=Decimal("0.1"), strict_pct=Decimal("0.5"))


def test_fx_only_for_merchant_correlated_pairs():
    stmt = _tx(1, "NETFLIX.COM", "55.00")
    assert fx_plausible(Decimal("15.49"), "USD", Decimal("55.00"))
    assert amount_difference(Decimal("15.49"), "USD", stmt, merchant_correlated=True) is not None
    assert amount_difference(Decimal("15.49"), "USD", stmt, merchant_correlated=False) is None


def test_original_amount_is_compared_in_its_own_currency():
    stmt = _tx(
        1,
        "AMAZON",
        "120.00",
        original_amount=Decimal("32.10"),
        original_currency="USD",
    )
    diff = amount_difference(Decimal("32.10"), "USD", stmt, merchant_correlated=False)
    assert diff == Decimal("0")


# ---- Selection ----------------------------------------------------------------------------


def test_receipt_prefers_merchant_correlated_candidate():
    receipt = _receipt("Spotify", "19.99")
    correlated = _tx(1, "PAYPAL *SPOTIFY", "19.99", D + timedelta(days=1))
    amount_only = _tx(2, "Cafe Nimrod", "19.99", D)

    match = find_match(receipt, [amount_only, correlated])

    assert match is not None
    assert match.candidate.id == 1
    assert match.reason == MatchReason.MERCHANT_CORRELATED
    assert match.score == 100
    assert match.day_offset == 1


def test_amount_only_match_is_reported_with_lower_score():
    receipt = _receipt("Unknown Shop", "42.00")
    match = find_match(receipt, [_tx(5, "Cafe Nimrod", "42.00")])

    assert match is not None
    assert match.reason == MatchReason.AMOUNT_ONLY
    assert match.score == 50
    assert not match.merchant_correlated


def test_ties_break_on_amount_then_date():
    receipt = _receipt("Wolt", "100.00")
    far = _tx(1, "WOLT", "100.00", D + timedelta(days=2))
    near = _tx(2, "WOLT", "100.00", D - timedelta(days=1))
    closer_amount = _tx(3, "WOLT", "100.50", D)

    match = find_match(receipt, [far, closer_amount, near])

    assert match is not None
    assert match.candidate.id == 2


def test_candidates_outside_window_are_ignored():
    receipt = _receipt("Wolt", "100.00")
    assert find_match(receipt, [_tx(1, "WOLT", "100.00", D + timedelta(days=3))]) is None
    assert find_match(receipt, []) is None


def test_date_window_mirroring():
    window = DateWindow(days_before=1, days_after=5)
    assert window.contains(D, D + timedelta(days=5))
    assert not window.contains(D, D - timedelta(days=2))
    assert window.mirrored().contains(D, D - timedelta(days=5))
    with pytest.raises(ValueError):
        DateWindow(-1, 0)
