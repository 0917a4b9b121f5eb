"""Engine settings read from ``TXN_RECON_*`` environment variables.

``.env`` files are loaded by the CLI entrypoint (python-dotenv) before
``load_settings()`` runs; library code only reads the process environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation

_ENV_PREFIX = "TXN_RECON_"


@dataclass(frozen=True, slots=True)
class EngineSettings:
    local_currency: str = "ILS"
    locales: tuple[str, ...] = ("he", "en")
    # Admission thresholds on the recomputed confidence score.
    admission_threshold: int = 70
    trusted_admission_threshold: int = 40
    ai_fallback_threshold: int = 70
    ai_enabled: bool = True
    ai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 10.0
    receipt_window_days: int = 2
    reconcile_days_before: int = 1
    reconcile_days_after: int = 5
    merchant_tolerance_pct: Decimal = Decimal("3.0")
    strict_tolerance_pct: Decimal = Decimal("0.5")
    p2p_amount_tolerance: Decimal = Decimal("1.00")
    duplicate_notification_hours: int = 1
    sweep_batch_size: int = 50
    sweep_max_passes: int = 20
    batch_concurrency: int = 4
    category_keywords: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.strict_tolerance_pct > self.merchant_tolerance_pct:
            raise ValueError("strict_tolerance_pct must not exceed merchant_tolerance_pct")
        if self.reconcile_days_before < 0 or self.reconcile_days_after < 0:
            raise ValueError("reconciliation window bounds must be non-negative")
        if self.receipt_window_days < 0:
            raise ValueError("receipt_window_days must be non-negative")
        if not (0 <= self.trusted_admission_threshold <= self.admission_threshold <= 100):
            raise ValueError("admission thresholds must satisfy 0 <= trusted <= default <= 100")


def _coerce(name: str, raw: str, current: object) -> object:
    value = raw.strip()
    try:
        if isinstance(current, bool):
            if value.lower() in {"1", "true", "yes", "on"}:
                return True
            if value.lower() in {"0", "false", "no", "off"}:
                return False
            raise ValueError(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, Decimal):
            return Decimal(value)
        if isinstance(current, tuple):
            return tuple(part.strip() for part in value.split(",") if part.strip())
    except (ValueError, InvalidOperation) as e:
        raise ValueError(f"Invalid value for {_ENV_PREFIX}{name.upper()}: {raw!r}") from e
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> EngineSettings:
    """Build ``EngineSettings`` from defaults overridden by environment values."""

    env = os.environ if environ is None else environ
    base = EngineSettings()
    overrides: dict[str, object] = {}
    for f in fields(EngineSettings):
        if f.name == "category_keywords":
            continue
        raw = env.get(f"{_ENV_PREFIX}{f.name.upper()}")
        if raw is None or raw == "":
            continue
        overrides[f.name] = _coerce(f.name, raw, getattr(base, f.name))
    if "local_currency" in overrides:
        overrides["local_currency"] = str(overrides["local_currency"]).upper()
    return replace(base, **overrides) if overrides else base


__all__ = ["EngineSettings", "load_settings"]
