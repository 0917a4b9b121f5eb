"""Domain types for transaction extraction, matching and reconciliation.

Records crossing module boundaries are frozen dataclasses; writers derive new
values with ``dataclasses.replace``. The only Pydantic model here is the DTO
that validates the AI extraction payload, mirroring how the LLM boundary is
typed elsewhere in the workspace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Provenance(StrEnum):
    SMS = "sms"
    OCR = "ocr"
    EMAIL = "email"
    STATEMENT = "statement"
    MANUAL = "manual"


class Channel(StrEnum):
    """Ingestion channel of a stored transaction."""

    SMS = "sms"
    APP = "app"  # P2P payment apps / screenshots
    STATEMENT = "statement"  # credit-card statement rows
    EMAIL = "email"
    MANUAL = "manual"


class Provider(StrEnum):
    ISRACARD = "isracard"
    CAL = "cal"
    MAX = "max"
    LEUMI = "leumi"
    UNKNOWN = "unknown"


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionStatus(StrEnum):
    PROVISIONAL = "provisional"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    VERIFIED = "verified"


class CategorySource(StrEnum):
    AUTO = "auto"
    USER_MANUAL = "user_manual"
    RULE = "rule"


class MatchReason(StrEnum):
    MERCHANT_CORRELATED = "merchant_correlated"
    AMOUNT_ONLY = "amount_only"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

# Additive weights per present field; the sum of all four is 100.
CONFIDENCE_WEIGHTS: dict[str, int] = {
    "card_ending": 30,
    "amount": 40,
    "merchant_name": 20,
    "transaction_date": 10,
}


def field_confidence(
    card_ending: str | None,
    amount: Decimal | None,
    merchant_name: str | None,
    transaction_date: date | None,
) -> int:
    """Score 0..100 from which of the four key fields are present."""

    score = 0
    if card_ending:
        score += CONFIDENCE_WEIGHTS["card_ending"]
    if amount is not None:
        score += CONFIDENCE_WEIGHTS["amount"]
    if merchant_name:
        score += CONFIDENCE_WEIGHTS["merchant_name"]
    if transaction_date is not None:
        score += CONFIDENCE_WEIGHTS["transaction_date"]
    return score


@dataclass(frozen=True, slots=True)
class RawNotification:
    text: str
    provenance: Provenance
    received_at: datetime


@dataclass(frozen=True, slots=True)
class ExtractedFields:
    """Fields recovered by one extraction strategy.

    ``confidence`` is derived from field presence on every access, so no
    strategy can assert a score of its own. ``model_confidence`` keeps the AI
    service's self-reported estimate for logging only.
    """

    card_ending: str | None = None
    amount: Decimal | None = None
    currency: str = "ILS"
    explicit_currency: bool = False
    merchant_name: str | None = None
    transaction_date: date | None = None
    provider: Provider = Provider.UNKNOWN
    model_confidence: int | None = None

    @property
    def confidence(self) -> int:
        return field_confidence(
            self.card_ending, self.amount, self.merchant_name, self.transaction_date
        )


@dataclass(frozen=True, slots=True)
class MergedExtraction:
    card_ending: str | None
    amount: Decimal | None
    currency: str
    merchant_name: str | None
    transaction_date: date | None
    provider: Provider
    is_valid: bool
    raw_message: str
    provenance: Provenance = Provenance.SMS
    received_at: datetime | None = None
    used_ai: bool = False

    @property
    def confidence(self) -> int:
        return field_confidence(
            self.card_ending, self.amount, self.merchant_name, self.transaction_date
        )

    @property
    def booking_date(self) -> date | None:
        """Transaction date, falling back to the arrival date of the message."""

        if self.transaction_date is not None:
            return self.transaction_date
        return self.received_at.date() if self.received_at is not None else None


class AiExtractionPayload(BaseModel):
    """Validated shape of the AI extraction service's JSON reply."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    card_ending: str | None = Field(default=None, alias="cardEnding")
    merchant_name: str | None = Field(default=None, alias="merchantName")
    amount: Decimal | None = None
    currency: str | None = None
    transaction_date: date | None = Field(default=None, alias="transactionDate")
    confidence: int | None = None

    @field_validator("card_ending", mode="before")
    @classmethod
    def _v_card(cls, v: Any) -> str | None:
        if v is None:
            return None
        digits = re.sub(r"\D", "", str(v))
        return digits[-4:] if len(digits) >= 4 else None

    @field_validator("merchant_name", "currency", mode="before")
    @classmethod
    def _v_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("amount", mode="before")
    @classmethod
    def _v_amount(cls, v: Any) -> Decimal | None:
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("amount must be numeric")
        try:
            value = Decimal(str(v).replace(",", "").strip())
        except InvalidOperation as e:
            raise ValueError(f"amount is not numeric: {v!r}") from e
        if not value.is_finite():
            raise ValueError("amount must be finite")
        return abs(value)

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _v_date(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str):
            m = re.fullmatch(r"\s*(\d{1,2})[/.](\d{1,2})[/.](\d{4})\s*", v)
            if m:
                return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _v_confidence(cls, v: Any) -> int | None:
        if v is None:
            return None
        if isinstance(v, bool) or not isinstance(v, (int, float, str, Decimal)):
            raise ValueError("confidence must be numeric")
        try:
            value = Decimal(str(v).strip())
        except InvalidOperation as e:
            raise ValueError(f"confidence is not numeric: {v!r}") from e
        if not value.is_finite():
            raise ValueError("confidence must be finite")
        return max(0, min(100, int(value)))


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A stored transaction; ``amount`` is a magnitude and ``type`` its sign."""

    household_id: str
    date: date
    amount: Decimal
    channel: Channel
    id: int | None = None
    currency: str = "ILS"
    type: TransactionType = TransactionType.EXPENSE
    merchant_raw: str | None = None
    merchant_normalized: str | None = None
    category: str | None = None
    category_source: CategorySource | None = None
    category_confidence: int | None = None
    status: TransactionStatus = TransactionStatus.PROVISIONAL
    provider: Provider | None = None
    card_ending: str | None = None
    notes: str | None = None
    original_amount: Decimal | None = None
    original_currency: str | None = None
    is_duplicate: bool = False
    duplicate_of: int | None = None
    receipt_id: str | None = None
    reconciliation_group_id: str | None = None
    verified: bool = False
    created_at: datetime | None = None

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.type == TransactionType.EXPENSE else self.amount

    @property
    def merchant(self) -> str | None:
        """Best display merchant: normalized when set, else the raw text."""

        return self.merchant_normalized or self.merchant_raw

    @property
    def is_linked(self) -> bool:
        return (
            self.is_duplicate
            or self.duplicate_of is not None
            or self.reconciliation_group_id is not None
        )


@dataclass(frozen=True, slots=True)
class ReceiptItem:
    name: str
    quantity: int = 1


@dataclass(frozen=True, slots=True)
class Receipt:
    id: str
    household_id: str
    merchant_name: str | None
    amount: Decimal
    receipt_date: date
    currency: str = "ILS"
    items: tuple[ReceiptItem, ...] = field(default_factory=tuple)


class MatchCandidate(NamedTuple):
    """Best pool transaction for a record, with the reason it was chosen."""

    record: Any  # CanonicalTransaction or Receipt
    candidate: CanonicalTransaction
    score: int
    reason: MatchReason
    amount_diff: Decimal
    day_offset: int

    @property
    def merchant_correlated(self) -> bool:
        return self.reason == MatchReason.MERCHANT_CORRELATED


@dataclass(frozen=True, slots=True)
class MerchantMemoryEntry:
    household_id: str
    merchant_normalized: str
    category: str
    confidence_score: int = 100
    correction_count: int = 0
    last_used: datetime | None = None


class CategoryAssignment(NamedTuple):
    category: str
    source: CategorySource
    confidence: int | None = None


__all__ = [
    "AiExtractionPayload",
    "CONFIDENCE_WEIGHTS",
    "CanonicalTransaction",
    "CategoryAssignment",
    "CategorySource",
    "Channel",
    "ExtractedFields",
    "MatchCandidate",
    "MatchReason",
    "MergedExtraction",
    "MerchantMemoryEntry",
    "Provenance",
    "Provider",
    "RawNotification",
    "Receipt",
    "ReceiptItem",
    "TransactionStatus",
    "TransactionType",
    "field_confidence",
]
