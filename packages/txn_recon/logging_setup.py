"""Logging for the ``txn_recon`` package.

- ``configure_logging(...)`` attaches one ``StreamHandler`` to the package root
  logger (``"txn_recon"``). Entrypoints (the CLI, a host worker) call it once.
- ``get_logger(name)`` returns a named logger; the package root keeps a
  ``NullHandler`` while nothing has been configured.

Engine modules only ever call ``get_logger("txn_recon.<module>")``. Log lines
can quote notification text, so the configured handler masks card-number-like
digit runs down to their last four digits.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import IO

_PKG_LOGGER_NAME = "txn_recon"
_LEVEL_ENV = "TXN_RECON_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
# 8..19 digits, optionally grouped by spaces or dashes
_CARD_RUN_RE = re.compile(r"(?<!\d)(?:\d[ -]?){4,15}(\d{4})(?!\d)")
_CONFIGURED = False


class CardNumberRedactor(logging.Filter):
    """Rewrites the record message with long digit runs masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact_card_numbers(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def redact_card_numbers(text: str) -> str:
    return _CARD_RUN_RE.sub(lambda m: f"****{m.group(1)}", text)


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
        raise ValueError(f"Unknown log level: {level!r}")
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    redact: bool = True,
) -> None:
    """Configure the package root logger once per process.

    ``level`` falls back to ``TXN_RECON_LOG_LEVEL`` and then ``INFO``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = _parse_level(level)
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    if redact:
        handler.addFilter(CardNumberRedactor())

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["CardNumberRedactor", "configure_logging", "get_logger", "redact_card_numbers"]
