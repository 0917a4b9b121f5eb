import pytest

from txn_recon.normalizers import (
    clean_merchant_name,
    normalize_merchant,
    scripts_in,
    significant_words,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Wolt. למידע נוסף חייגו *2000", "Wolt"),
        ("SUPER-PHARM for more information call us", "SUPER-PHARM"),
        ("  Aroma   Espresso Bar ;", "Aroma Espresso Bar"),
        (" . ", None),
        (None, None),
    ],
)
def test_clean_merchant_name(raw, expected):
    assert clean_merchant_name(raw) == expected


def test_normalize_merchant_builds_comparison_key():
    assert normalize_merchant("  WOLT*TLV ") == "wolt tlv"
    assert normalize_merchant("ＡＭＡＺＯＮ") == "amazon"  # fullwidth folds under NFKC
    assert normalize_merchant("   ") is None


def test_significant_words_drop_noise():
    assert significant_words("The Coffee Shop Ltd") == {"coffee", "shop"}
    assert significant_words('בזק בע"מ') == {"בזק"}
    assert significant_words("AB 12") == set()


def test_scripts_in():
    assert scripts_in("Aroma ארומה 24/7") == frozenset({"LATIN", "HEBREW"})
    assert scripts_in("") == frozenset()
