"""Prompt and strict response format for AI-assisted field extraction.

The instructions are kept as a module constant so the prompt text is reviewed
together with the schema it must agree with.
"""

from __future__ import annotations

from datetime import date

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

EXTRACTION_INSTRUCTIONS = """\
You extract structured data from a single payment notification (an SMS from a \
credit-card issuer, a payment-app screenshot transcript, or an email receipt). \
Messages are often in Hebrew, sometimes in English, and may mix both.

Return exactly one JSON object with these keys:
- cardEnding: the last 4 digits of the card, or null.
- merchantName: the business or counterparty name as written, without \
issuer boilerplate such as "for more information" clauses, or null.
- amount: the charged amount as a positive number without currency symbols or \
thousands separators, or null.
- currency: ISO 4217 code (ILS for ש"ח / ₪ / NIS), or null when not stated.
- transactionDate: YYYY-MM-DD, or null. When only day/month is given, use the \
reference date's year unless that month is later than the reference month, in \
which case use the previous year.
- confidence: integer 0-100, your confidence in the extraction as a whole.

Never invent values that are not present in the message. Output JSON only."""


def build_extraction_input(raw_text: str, *, today: date, local_currency: str) -> str:
    """User content embedding the message between explicit delimiters."""

    return (
        f"Reference date: {today.isoformat()}\n"
        f"Household currency: {local_currency}\n\n"
        "BEGIN_MESSAGE\n"
        f"{raw_text}\n"
        "END_MESSAGE"
    )


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Strict JSON Schema ``text.format`` for the Responses API."""

    nullable_string = {"type": ["string", "null"]}
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "transaction_extraction",
        "schema": {
            "type": "object",
            "properties": {
                "cardEnding": nullable_string,
                "merchantName": nullable_string,
                "amount": {"type": ["number", "null"]},
                "currency": nullable_string,
                "transactionDate": nullable_string,
                "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
            },
            "required": [
                "cardEnding",
                "merchantName",
                "amount",
                "currency",
                "transactionDate",
                "confidence",
            ],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "EXTRACTION_INSTRUCTIONS",
    "build_extraction_input",
    "build_response_format",
]
