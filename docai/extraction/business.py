"""Mapping of normalized LLM output into the business record tree.

Every leaf is a ``{"value": ..., "confidence": 1..5}`` field scored by
:mod:`docai.extraction.scoring`. Sections the LLM output cannot fill
(title number, weights, release info, officials) are emitted as null
fields with confidence 1 so the tree shape is always complete.
"""

from typing import Any

from docai.extraction.scoring import (
    conf_address,
    conf_date,
    conf_from_present,
    conf_vin,
    conf_year,
    is_blank,
    make_field,
)
from docai.llm.schema import Address, NlpOutput, Owner

BUSINESS_SECTIONS = (
    "title_information",
    "owner_information",
    "lien_information",
    "assignment_of_vehicle",
    "officials",
)


def looks_like_business(data: Any) -> bool:
    """Return whether ``data`` already has at least one business section."""
    return isinstance(data, dict) and any(k in data for k in BUSINESS_SECTIONS)


def format_address(address: Address | None) -> str | None:
    """Format as ``line1, line2, city state zip``, skipping blank parts."""
    if address is None:
        return None
    parts = [p.strip() for p in (address.line1, address.line2) if not is_blank(p)]
    city_state_zip = " ".join(
        p.strip() for p in (address.city, address.state, address.zip) if not is_blank(p)
    )
    if city_state_zip:
        parts.append(city_state_zip)
    return ", ".join(parts) or None


def _address_field(address: Address | None) -> dict[str, Any]:
    if address is None:
        return make_field(None, 1)
    confidence = conf_address(address.line1, address.city, address.state, address.zip)
    return make_field(format_address(address), confidence)


def _owner_display_name(owner: Owner) -> str | None:
    if not is_blank(owner.firm_name):
        return owner.firm_name
    names = [n.strip() for n in (owner.first_name, owner.last_name) if not is_blank(n)]
    return " ".join(names) or None


def _release_fields() -> dict[str, Any]:
    return {
        "status": make_field(None, 1),
        "date": make_field(None, 1),
        "authorized_by": make_field(None, 1),
    }


def to_business_schema(out: NlpOutput) -> dict[str, Any]:
    """Map a normalized :class:`NlpOutput` into the business tree.

    Args:
        out: Normalized LLM output.

    Returns:
        Tree with the five business sections.
    """
    vehicle = out.vehicle
    vin = vehicle.vin if vehicle else None
    year = vehicle.year if vehicle else None
    make = vehicle.make if vehicle else None
    model = vehicle.model if vehicle else None
    body_type = vehicle.body_type if vehicle else None
    mileage = vehicle.mileage if vehicle else None
    issued = out.issuing_date
    prior_state = out.previous_state_title

    title_information = {
        "state": make_field(prior_state, conf_from_present(prior_state, 3)),
        "certificate_type": make_field(None, 1),
        "title_number": make_field(None, 1),
        "duplicate_indicator": make_field(None, 1),
        "vehicle_id_number": make_field(vin, conf_vin(vin)),
        "year": make_field(year, conf_year(year)),
        "make": make_field(make, conf_from_present(make, 5)),
        "model": make_field(model, conf_from_present(model, 4)),
        "body_type": make_field(body_type, conf_from_present(body_type, 4)),
        "fuel_type": make_field(None, 1),
        "prior_title_state": make_field(prior_state, conf_from_present(prior_state, 4)),
        "date_pa_titled": make_field(issued, conf_date(issued)),
        "date_of_issue": make_field(issued, conf_date(issued)),
        "odometer_reading": make_field(
            f"{mileage:,}" if mileage is not None else None,
            conf_from_present(mileage, 4),
        ),
        "odometer_status": make_field(
            "Actual Mileage" if mileage is not None else None,
            conf_from_present(mileage, 3),
        ),
        "odometer_recorded_date": make_field(issued, conf_date(issued)),
        "gvwr": make_field(None, 1),
        "gcwr": make_field(None, 1),
        "unladen_weight": make_field(None, 1),
        "title_brands": make_field([], 5),
    }

    if out.owner is not None:
        name = _owner_display_name(out.owner)
        owner_information = {
            "name": make_field(name, conf_from_present(name, 5)),
            "address": _address_field(out.owner.address),
        }
    else:
        owner_information = {
            "name": make_field(None, 1),
            "address": make_field(None, 1),
        }

    firms = [lh.firm_name for lh in out.lienholders[:2]]
    first_firm = firms[0] if firms else None
    second_firm = firms[1] if len(firms) > 1 else None
    lien_information = {
        "first_lienholder": make_field(first_firm, conf_from_present(first_firm, 4)),
        "first_lien_released": _release_fields(),
        "second_lienholder": make_field(
            second_firm, conf_from_present(second_firm, 4)
        ),
        "second_lien_released": make_field(None, 1),
    }

    return {
        "title_information": title_information,
        "owner_information": owner_information,
        "lien_information": lien_information,
        "assignment_of_vehicle": [],
        "officials": {"secretary_of_transportation": make_field(None, 1)},
    }
