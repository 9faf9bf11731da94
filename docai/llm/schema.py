"""Structured output schema requested from the LLM.

The model answers in the ``NlpOutput`` shape (vehicle, owner,
lienholders, title dates), which is then mapped into the business tree.
"""

import copy
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_COMPOSITE_KEYS = ("anyOf", "oneOf", "allOf")
_DEFINITION_KEYS = ("definitions", "$defs")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Address(_CamelModel):
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = Field(default=None, description="Two-letter US state code")
    zip: str | None = Field(default=None, description="12345 or 12345-6789")


class Vehicle(_CamelModel):
    vin: str | None = Field(default=None, description="17-character VIN")
    make: str | None = None
    model: str | None = None
    year: int | None = None
    body_type: str | None = None
    cylinders: int | None = None
    mileage: int | None = None


class Owner(_CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    firm_name: str | None = None
    address: Address | None = None


class Lienholder(_CamelModel):
    firm_name: str | None = None
    address: Address | None = None


class NlpOutput(_CamelModel):
    """Normalized title fields as returned by the LLM."""

    vehicle: Vehicle | None = None
    owner: Owner | None = None
    lienholders: list[Lienholder] = Field(default_factory=list)
    issuing_date: str | None = Field(default=None, description="ISO yyyy-MM-dd")
    previous_state_title: str | None = None
    previous_title_number: str | None = None


def enforce_no_additional_properties(schema: dict[str, Any]) -> None:
    """Make every object in ``schema`` closed and fully required, in place.

    Strict structured-output modes reject schemas whose objects allow
    extra keys or leave properties optional. Recurses through
    properties, array items, composite members and definitions.
    """
    if schema.get("type") == "object":
        schema["additionalProperties"] = False
        props = schema.get("properties")
        if isinstance(props, dict):
            schema["required"] = list(props)
            for child in props.values():
                if isinstance(child, dict):
                    enforce_no_additional_properties(child)

    if schema.get("type") == "array" and isinstance(schema.get("items"), dict):
        enforce_no_additional_properties(schema["items"])

    for key in _COMPOSITE_KEYS:
        for child in schema.get(key) or []:
            if isinstance(child, dict):
                enforce_no_additional_properties(child)

    for key in _DEFINITION_KEYS:
        defs = schema.get(key)
        if isinstance(defs, dict):
            for child in defs.values():
                if isinstance(child, dict):
                    enforce_no_additional_properties(child)


def strip_defaults(schema: Any) -> None:
    """Drop ``default`` and ``title`` annotations, which strict mode rejects."""
    if isinstance(schema, dict):
        schema.pop("default", None)
        title = schema.get("title")
        if isinstance(title, str):
            schema.pop("title")
        for value in schema.values():
            strip_defaults(value)
    elif isinstance(schema, list):
        for item in schema:
            strip_defaults(item)


def build_nlp_schema() -> dict[str, Any]:
    """Return the strict JSON schema for :class:`NlpOutput` with camelCase keys."""
    schema = copy.deepcopy(NlpOutput.model_json_schema(by_alias=True))
    schema.pop("$schema", None)
    schema.pop("$id", None)
    strip_defaults(schema)
    schema["type"] = "object"
    schema["additionalProperties"] = False
    enforce_no_additional_properties(schema)
    return schema
