"""Deterministic 1-5 confidence scoring for extracted field values.

Scores follow simple validation rules:

- 5 when a value is present and passes validation (VIN, year, ISO date,
  state code, ZIP)
- 2 when present but failing validation
- 3-4 (caller supplied) when present with no validator
- 1 when missing or blank
"""

import re
from datetime import date
from typing import Any

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
STATE_RE = re.compile(r"^[A-Z]{2}$")
ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def clamp_confidence(confidence: int) -> int:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, int(confidence)))


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def make_field(
    value: Any, confidence: int, source: str | None = None
) -> dict[str, Any]:
    """Build a ``{value, confidence[, source]}`` leaf with a clamped score."""
    field: dict[str, Any] = {"value": value, "confidence": clamp_confidence(confidence)}
    if source is not None:
        field["source"] = source
    return field


def conf_from_present(value: Any, good: int) -> int:
    """Score a value that has no validator: ``good`` when present, else 1."""
    return MIN_CONFIDENCE if is_blank(value) else clamp_confidence(good)


def conf_vin(vin: str | None) -> int:
    if is_blank(vin):
        return MIN_CONFIDENCE
    return 5 if VIN_RE.match(vin.strip().upper()) else 2


def conf_year(year: int | None) -> int:
    if year is None:
        return MIN_CONFIDENCE
    return 5 if 1900 <= year <= 2100 else 2


def conf_date(value: str | None) -> int:
    """Score an ISO ``YYYY-MM-DD`` date; a well-formed but impossible date scores 2."""
    if is_blank(value):
        return MIN_CONFIDENCE
    if not ISO_DATE_RE.match(value):
        return 2
    try:
        date.fromisoformat(value)
    except ValueError:
        return 2
    return 5


def conf_address(
    line1: str | None,
    city: str | None,
    state: str | None,
    zip_code: str | None,
) -> int:
    """Score an address by the strongest component that is present."""
    conf = MIN_CONFIDENCE
    if not is_blank(line1):
        conf = max(conf, 3)
    if not is_blank(city):
        conf = max(conf, 4)
    if state is not None and STATE_RE.match(state):
        conf = max(conf, 5)
    if zip_code is not None and ZIP_RE.match(zip_code):
        conf = max(conf, 5)
    return conf
