"""Tests for mapping normalized LLM output into the business tree."""

from docai.extraction.business import (
    BUSINESS_SECTIONS,
    format_address,
    looks_like_business,
    to_business_schema,
)
from docai.llm.schema import Address, Lienholder, NlpOutput, Owner, Vehicle


def _sample_output() -> NlpOutput:
    return NlpOutput(
        vehicle=Vehicle(
            vin="1HGCM82633A004352",
            make="Honda",
            model="Accord",
            year=2003,
            body_type="4D",
            mileage=123456,
        ),
        owner=Owner(
            first_name="Jane",
            last_name="Doe",
            address=Address(
                line1="123 Main St", city="Harrisburg", state="PA", zip="17101"
            ),
        ),
        lienholders=[
            Lienholder(firm_name="First Bank"),
            Lienholder(firm_name="Second Credit"),
        ],
        issuing_date="2021-03-15",
        previous_state_title="NJ",
    )


class TestFormatAddress:
    """Tests for address formatting."""

    def test_full_address(self) -> None:
        address = Address(
            line1="123 Main St",
            line2="Apt 4",
            city="Harrisburg",
            state="PA",
            zip="17101",
        )
        assert format_address(address) == "123 Main St, Apt 4, Harrisburg PA 17101"

    def test_skips_blank_parts(self) -> None:
        assert format_address(Address(line1=" ", city="Erie")) == "Erie"

    def test_empty(self) -> None:
        assert format_address(Address()) is None
        assert format_address(None) is None


class TestLooksLikeBusiness:
    """Tests for business tree detection."""

    def test_detects_sections(self) -> None:
        assert looks_like_business({"officials": {}})
        assert not looks_like_business({"vehicle": {}})
        assert not looks_like_business(["title_information"])


class TestToBusinessSchema:
    """Tests for the NlpOutput mapping."""

    def test_all_sections_present(self) -> None:
        tree = to_business_schema(NlpOutput())
        assert tuple(tree) == BUSINESS_SECTIONS
        assert tree["title_information"]["vehicle_id_number"] == {
            "value": None,
            "confidence": 1,
        }
        assert tree["owner_information"]["name"]["confidence"] == 1
        assert tree["title_information"]["title_brands"] == {
            "value": [],
            "confidence": 5,
        }

    def test_vehicle_fields(self) -> None:
        info = to_business_schema(_sample_output())["title_information"]
        assert info["vehicle_id_number"] == {
            "value": "1HGCM82633A004352",
            "confidence": 5,
        }
        assert info["year"]["confidence"] == 5
        assert info["make"] == {"value": "Honda", "confidence": 5}
        assert info["model"]["confidence"] == 4
        assert info["odometer_reading"]["value"] == "123,456"
        assert info["odometer_status"]["value"] == "Actual Mileage"
        assert info["date_of_issue"] == {"value": "2021-03-15", "confidence": 5}
        assert info["state"] == {"value": "NJ", "confidence": 3}
        assert info["prior_title_state"]["confidence"] == 4

    def test_invalid_values_score_low(self) -> None:
        out = NlpOutput(vehicle=Vehicle(vin="SHORT", year=1850), issuing_date="3/15/21")
        info = to_business_schema(out)["title_information"]
        assert info["vehicle_id_number"]["confidence"] == 2
        assert info["year"]["confidence"] == 2
        assert info["date_of_issue"]["confidence"] == 2

    def test_owner_and_liens(self) -> None:
        tree = to_business_schema(_sample_output())
        owner = tree["owner_information"]
        assert owner["name"] == {"value": "Jane Doe", "confidence": 5}
        assert owner["address"] == {
            "value": "123 Main St, Harrisburg PA 17101",
            "confidence": 5,
        }
        liens = tree["lien_information"]
        assert liens["first_lienholder"] == {"value": "First Bank", "confidence": 4}
        assert liens["second_lienholder"]["value"] == "Second Credit"
        assert liens["first_lien_released"]["status"]["value"] is None

    def test_firm_owner_preferred(self) -> None:
        out = NlpOutput(owner=Owner(first_name="Jane", firm_name="Acme LLC"))
        assert to_business_schema(out)["owner_information"]["name"]["value"] == (
            "Acme LLC"
        )

    def test_validates_camel_case_partial(self) -> None:
        out = NlpOutput.model_validate(
            {"vehicle": {"vin": "1HGCM82633A004352", "bodyType": "SEDAN"}}
        )
        info = to_business_schema(out)["title_information"]
        assert info["body_type"]["value"] == "SEDAN"
