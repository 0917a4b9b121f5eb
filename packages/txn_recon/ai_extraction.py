"""AI fallback extractor over the OpenAI Responses API.

Used only when the pattern result is incomplete. One bounded call per
message (``timeout``, no SDK retries); any upstream failure or unusable reply
becomes an empty result so extraction falls back to the pattern fields.
"""

from __future__ import annotations

import json
import re
from datetime import date
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from . import prompting
from .logging_setup import get_logger
from .models import AiExtractionPayload, ExtractedFields

_logger = get_logger("txn_recon.ai_extraction")

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def empty_fields(local_currency: str = "ILS") -> ExtractedFields:
    """The "no AI signal" result: every field absent, confidence 0."""

    return ExtractedFields(currency=local_currency)


def strip_code_fences(text: str) -> str:
    m = _FENCE_RE.match(text)
    return (m.group(1) if m else text).strip()


def _response_text(resp: Any) -> str | None:
    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text
    output = getattr(resp, "output", None)
    if not output:
        return None
    content = getattr(output[0], "content", None) or []
    if content:
        candidate = getattr(content[0], "text", None)
        if isinstance(candidate, str):
            return candidate
    return None


def parse_ai_payload(text: str | None, *, local_currency: str = "ILS") -> ExtractedFields:
    """Decode the service's reply; malformed output yields ``empty_fields()``."""

    if not text:
        return empty_fields(local_currency)
    body = strip_code_fences(text)
    try:
        decoded = json.loads(body)
        if not isinstance(decoded, dict):
            raise ValueError(f"expected a JSON object, got {type(decoded).__name__}")
        payload = AiExtractionPayload.model_validate(decoded)
    except (json.JSONDecodeError, ValidationError, ValueError, TypeError, OverflowError) as e:
        _logger.warning("ai_extraction:malformed_output error=%s", e.__class__.__name__)
        return empty_fields(local_currency)

    return ExtractedFields(
        card_ending=payload.card_ending,
        amount=payload.amount,
        currency=(payload.currency or local_currency).upper(),
        merchant_name=payload.merchant_name,
        transaction_date=payload.transaction_date,
        model_confidence=payload.confidence,
    )


def _create_client(*, timeout: float) -> OpenAI:
    return OpenAI(timeout=timeout, max_retries=0)


class AIFallbackExtractor:
    """Callable wrapper holding the model name, timeout and optional client."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 10.0,
        local_currency: str = "ILS",
    ) -> None:
        self._client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.local_currency = local_currency

    def extract(self, raw_text: str, *, today: date) -> ExtractedFields:
        try:
            client = self._client or _create_client(timeout=self.timeout_seconds)
            resp = client.responses.create(
                model=self.model,
                instructions=prompting.EXTRACTION_INSTRUCTIONS,
                input=prompting.build_extraction_input(
                    raw_text, today=today, local_currency=self.local_currency
                ),
                text={"format": prompting.build_response_format()},
            )
        except Exception as e:  # noqa: BLE001 - upstream failure degrades to pattern-only
            _logger.warning(
                "ai_extraction:upstream_unavailable model=%s error=%s",
                self.model,
                e.__class__.__name__,
            )
            return empty_fields(self.local_currency)

        fields = parse_ai_payload(_response_text(resp), local_currency=self.local_currency)
        _logger.info(
            "ai_extraction:done model=%s confidence=%d model_confidence=%s",
            self.model,
            fields.confidence,
            fields.model_confidence,
        )
        return fields


__all__ = [
    "AIFallbackExtractor",
    "empty_fields",
    "parse_ai_payload",
    "strip_code_fences",
]
