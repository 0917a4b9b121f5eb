from __future__ import annotations

import pytest

from txn_recon.autocat import (
    AutoCatTrigger,
    decide,
    is_better_merchant_text,
    trigger_for_channel,
)
from txn_recon.models import CategorySource, Channel


def test_enrichment_with_longer_merchant_reruns():
    decision = decide(
        AutoCatTrigger.EMAIL_ENRICHED,
        "Shopping",
        CategorySource.AUTO,
        new_merchant_info="Amazon UK",
        previous_merchant="Amzn",
    )

    assert decision.should_run


def test_enrichment_with_shorter_merchant_keeps_category():
    decision = decide(
        "email_enriched",
        "Shopping",
        "auto",
        new_merchant_info="Amzn",
        previous_merchant="Amazon UK",
    )

    assert not decision.should_run


@pytest.mark.parametrize("trigger", list(AutoCatTrigger))
def test_user_manual_category_is_never_recomputed(trigger: AutoCatTrigger):
    decision = decide(
        trigger,
        "Groceries",
        CategorySource.USER_MANUAL,
        new_merchant_info="Shufersal Deal Online",
        previous_merchant="Shufersal",
    )

    assert not decision.should_run
    assert "manual" in decision.reason


def test_confirmation_never_recategorizes():
    assert not decide(AutoCatTrigger.CC_CONFIRMED, None, None).should_run
    assert not decide(AutoCatTrigger.CC_CONFIRMED, "Food", CategorySource.AUTO).should_run


@pytest.mark.parametrize(
    "trigger",
    [AutoCatTrigger.SMS_CREATED, AutoCatTrigger.CC_CREATED, AutoCatTrigger.BIT_STANDALONE],
)
def test_fresh_ingestion_runs(trigger: AutoCatTrigger):
    assert decide(trigger, None, None).should_run


def test_enrichment_rules():
    enriched = AutoCatTrigger.EMAIL_ENRICHED
    assert not decide(enriched, None, None, new_merchant_info="  ").should_run
    assert decide(enriched, None, None, new_merchant_info="Wolt").should_run
    # rule-sourced categories are not re-evaluated on enrichment
    assert not decide(
        enriched, "Food", CategorySource.RULE, new_merchant_info="Wolt Market TLV"
    ).should_run


def test_new_script_counts_as_better_text():
    assert is_better_merchant_text("שופרסל", "Shufersal Deal")
    assert not is_better_merchant_text("SHUFERSAL", "Shufersal")
    assert is_better_merchant_text("Wolt", None)


def test_unknown_trigger_is_rejected():
    with pytest.raises(ValueError):
        decide("carrier_pigeon", None, None)


def test_trigger_for_channel():
    assert trigger_for_channel(Channel.SMS) is AutoCatTrigger.SMS_CREATED
    assert trigger_for_channel(Channel.APP) is AutoCatTrigger.BIT_STANDALONE
    assert trigger_for_channel(Channel.STATEMENT) is AutoCatTrigger.CC_CREATED
