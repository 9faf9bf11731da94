"""Regex heuristics over raw OCR text.

Two passes run before the LLM sees the document:

- :func:`pre_parse_fields` builds a low-effort business skeleton from
  the concatenated high-confidence text. It is the first fusion source,
  so LLM partials only replace its values with more confident ones.
- :func:`extract_high_fidelity` scans individual lines and words for
  exact matches (VIN, year, make, ...) trusted above the LLM.
"""

import re
from datetime import date, datetime
from typing import Any

from docai.extraction.scoring import conf_vin, conf_year, make_field
from docai.ocr.elements import LINE, WORD, OcrElement
from docai.utils.logger import get_logger

logger = get_logger(__name__)

HEURISTIC_SOURCE = "heuristic"

VIN_CANDIDATE_RE = re.compile(r"\b([A-HJ-NPR-Z0-9]{11,17})\b")
YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
ZIP_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
OWNER_FIRM_RE = re.compile(
    r"\b(\w+(?:\s+\w+){0,3})(INC|LLC|BANK|CORP|CORPORATION)\b", re.IGNORECASE
)
LIEN_KEYWORD_RE = re.compile(r"\b(?:FINANCE|BANK|CREDIT|MORTGAGE)\b", re.IGNORECASE)

EXACT_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
EXACT_YEAR_RE = re.compile(r"^(?:19|20)\d{2}$")
ODOMETER_RE = re.compile(r"^\d{1,3}(?:,\d{3})*(?:\s*(?:MI|MILES))?$")
DATE_RE = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$")
ADDRESS_RE = re.compile(
    r".*\d+\s+.*\b(RD|ROAD|DR|DRIVE|ST|STREET|AVE|AVENUE|BLVD|LANE|LN|CT)\b.*"
)

KNOWN_MAKES = (
    "FORD",
    "TOYOTA",
    "DODGE",
    "HONDA",
    "CHEVROLET",
    "NISSAN",
    "BMW",
    "MERCEDES",
    "KIA",
    "HYUNDAI",
)
FUEL_TYPES = ("DIESEL", "GAS", "FLEX", "ELECTRIC")
DATE_FORMATS = ("%m/%d/%y", "%m/%d/%Y", "%m-%d-%y", "%m-%d-%Y")

ADDRESS_WINDOW_BEFORE = 40
ADDRESS_WINDOW_AFTER = 20


def _texts(
    elements: list[OcrElement], etype: str, min_confidence: float
) -> list[str]:
    return [
        e.text.strip()
        for e in elements
        if e.type == etype
        and e.meets_confidence(min_confidence)
        and e.text
        and e.text.strip()
    ]


def collect_text(elements: list[OcrElement], min_confidence: float) -> str:
    """Join confident LINE texts, falling back to WORD texts when no line passes."""
    texts = _texts(elements, LINE, min_confidence) or _texts(
        elements, WORD, min_confidence
    )
    return re.sub(r"\s+", " ", " ".join(texts)).strip()


def pre_parse_fields(
    elements: list[OcrElement], min_confidence: float
) -> dict[str, Any]:
    """Build a heuristic business skeleton from confident OCR text.

    Args:
        elements: OCR elements of the document.
        min_confidence: Minimum OCR confidence (0-100) for text to count.

    Returns:
        A business tree whose leaves carry source ``heuristic``.
    """
    text = collect_text(elements, min_confidence)

    vin_match = VIN_CANDIDATE_RE.search(text)
    vin = vin_match.group(1) if vin_match else None

    year_match = YEAR_RE.search(text)
    year = int(year_match.group()) if year_match else None

    address = None
    zip_match = ZIP_RE.search(text)
    if zip_match:
        start = max(0, zip_match.start() - ADDRESS_WINDOW_BEFORE)
        end = min(len(text), zip_match.start() + ADDRESS_WINDOW_AFTER)
        address = text[start:end].strip()

    owner_match = OWNER_FIRM_RE.search(text)
    owner = owner_match.group() if owner_match else None

    lien_match = LIEN_KEYWORD_RE.search(text)
    lien = lien_match.group() if lien_match else None

    logger.debug(
        "heuristics.pre_parse chars=%d vin=%s year=%s", len(text), vin, year
    )

    def field(value: Any, confidence: int) -> dict[str, Any]:
        return make_field(value, confidence, HEURISTIC_SOURCE)

    return {
        "title_information": {
            "vehicle_id_number": field(vin, conf_vin(vin)),
            "year": field(year, conf_year(year)),
        },
        "owner_information": {
            "name": field(owner, 3 if owner else 1),
            "address": field(address, 3 if address else 1),
        },
        "lien_information": {
            "first_lienholder": field(lien, 3 if lien else 1),
        },
        "assignment_of_vehicle": [],
        "officials": {"secretary_of_transportation": field(None, 1)},
    }


def _parse_date(text: str) -> date | None:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def extract_high_fidelity(elements: list[OcrElement]) -> dict[str, Any]:
    """Find exact-match field values in individual LINE and WORD texts.

    Later matches overwrite earlier ones for make, fuel type, address,
    lien line and title brand. The first VIN, the latest year and date,
    and the largest odometer reading win.

    Returns:
        Mapping of business field names to values. Only keys with a
        match are present.
    """
    result: dict[str, Any] = {}
    vins: list[str] = []
    years: list[int] = []
    odometers: list[int] = []
    dates: list[date] = []

    for element in elements:
        if element.type not in (LINE, WORD) or not element.text:
            continue
        raw = element.text
        text = raw.upper().strip()

        if EXACT_VIN_RE.match(text):
            vins.append(text)
        if EXACT_YEAR_RE.match(text):
            years.append(int(text))
        for make in KNOWN_MAKES:
            if make in text:
                result["make"] = make
        if ODOMETER_RE.match(text):
            digits = re.sub(r"\D", "", text)
            if digits:
                odometers.append(int(digits))
        for fuel in FUEL_TYPES:
            if fuel in text:
                result["fuel_type"] = fuel
                break
        if DATE_RE.match(text):
            parsed = _parse_date(text)
            if parsed:
                dates.append(parsed)
        if ADDRESS_RE.match(text):
            result["owner_address"] = raw
        if "LIEN" in text:
            result["lien_info"] = raw
        if "SALVAGE" in text:
            result["title_brand"] = "SALVAGE"
        elif "REBUILT" in text:
            result["title_brand"] = "REBUILT"
        elif "DUP" in text:
            result["title_brand"] = "DUPLICATE"

    if vins:
        result["vehicle_id_number"] = vins[0]
    if years:
        result["year"] = max(years)
    if odometers:
        result["odometer_reading"] = f"{max(odometers):,}"
    if dates:
        result["date"] = max(dates).isoformat()

    logger.info("heuristics.high_fidelity keys=%s", sorted(result))
    return result
