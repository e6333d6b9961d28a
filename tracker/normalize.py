"""Normalization helpers for heterogeneous source fields."""

from __future__ import annotations

import math
import re
from enum import Enum

_UNIT_PREFIX_PATTERN = re.compile(r"^(?:chapter\s*)+", re.IGNORECASE)
_DECIMAL_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


class WorkStatus(str, Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"
    HIATUS = "hiatus"
    CANCELLED = "cancelled"


# Checked in order; the first group with a matching keyword wins.
_STATUS_KEYWORDS: tuple[tuple[WorkStatus, tuple[str, ...]], ...] = (
    (WorkStatus.ONGOING, ("ongoing", "publishing", "releasing")),
    (WorkStatus.COMPLETED, ("completed", "finished")),
    (WorkStatus.HIATUS, ("hiatus", "on hold")),
    (WorkStatus.CANCELLED, ("cancelled", "discontinued")),
)


def normalize_unit_number(raw: str | int | float) -> str:
    """Return the canonical form of a chapter number.

    ``"Chapter 010"`` becomes ``"10"`` and ``"10.50"`` becomes ``"10.5"``.
    Values that are not numbers are returned trimmed, without the prefix.
    """

    cleaned = _UNIT_PREFIX_PATTERN.sub("", str(raw).strip()).strip()
    if not _DECIMAL_PATTERN.match(cleaned):
        return cleaned

    value = float(cleaned)
    if not math.isfinite(value):
        return cleaned
    if value.is_integer():
        return str(int(value))
    return repr(value)


def unit_number_key(number: str | None) -> float | None:
    """Numeric value of a normalized chapter number, ``None`` when not numeric."""

    if number is None:
        return None
    cleaned = number.strip()
    if not _DECIMAL_PATTERN.match(cleaned):
        return None
    value = float(cleaned)
    return value if math.isfinite(value) else None


def normalize_status(raw: str | None) -> WorkStatus:
    if not raw:
        return WorkStatus.ONGOING

    normalized = raw.lower().strip()
    for status, keywords in _STATUS_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return status
    return WorkStatus.ONGOING
