"""Character set and money normalization for legacy exports."""

from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_CODE_PAGES = ("cp1252", "cp850")

_CENT = Decimal("0.01")


def decode_export(raw: bytes) -> str:
    """Decode tool output, keeping undecodable bytes recoverable for ``fix_encoding``."""
    return raw.decode("utf-8", errors="surrogateescape")


def decodes_every_byte(code_page: str) -> bool:
    """True for single-byte code pages that map all 256 byte values."""
    try:
        bytes(range(256)).decode(code_page)
    except UnicodeDecodeError:
        return False
    return True


def fix_encoding(value: str | bytes | None, code_pages: Sequence[str] = DEFAULT_CODE_PAGES) -> str:
    """Return ``value`` as clean text.

    Valid UTF-8 is returned unchanged. Anything else is decoded with the first
    legacy code page that accepts it, and as a last resort with replacement
    characters.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
            return value
        except UnicodeEncodeError:
            raw = value.encode("utf-8", errors="surrogateescape")
    else:
        raw = value

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    for code_page in code_pages:
        try:
            return raw.decode(code_page)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")


def to_minor_units(value: str | None) -> int:
    """Convert a legacy decimal amount ("12,50", "3.2") to integer cents."""
    if value is None:
        return 0
    text = value.strip().replace(" ", "").replace(",", ".")
    if not text:
        return 0
    try:
        amount = Decimal(text)
    except InvalidOperation:
        logger.debug("Unparseable amount %r stored as 0", value)
        return 0
    if not amount.is_finite():
        return 0
    return int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def to_number(value: str | None) -> float:
    """Parse a legacy numeric field, treating blanks and garbage as zero."""
    if value is None:
        return 0.0
    text = value.strip().replace(" ", "").replace(",", ".")
    if not text:
        return 0.0
    try:
        number = float(text)
    except ValueError:
        logger.debug("Unparseable number %r read as 0", value)
        return 0.0
    return number if math.isfinite(number) else 0.0
