"""
Unit tests for ListingPayloadBuilder.
"""

from decimal import Decimal

import pytest

from olxsync.exceptions import ArgumentError
from olxsync.models import OlxCategoryTemplate, OlxListing, OlxLocation, ProductSource
from olxsync.services.listing.extractors import TireExtractor, extract_attributes, extractors_for
from olxsync.services.listing.payload_builder import ListingPayloadBuilder, clean_numeric, round_price
from olxsync.settings import settings

SEASONS = ["Zimske", "Ljetne", "All season (Cjelogodišnje)"]
TIRE_ATTRIBUTES = (
    (2918, "Širina", "number", None),
    (2919, "Visina", "number", None),
    (1849, "Promjer", "number", None),
    (1848, "Sezona", "select", SEASONS),
)
BATTERY_ATTRIBUTES = (
    (3001, "Kapacitet", "number", None),
    (3002, "Boja", "select", [{"id": 1, "value": "Crna"}, {"id": 2, "value": "Bijela"}]),
    (3003, "Stanje", "select", {"values": ["Novo", "Korišteno"]}),
)


@pytest.fixture
def builder():
    return ListingPayloadBuilder()


@pytest.fixture
def tire_template(make_category, make_template):
    root = make_category(900, "Dijelovi i oprema")
    tires = make_category(940, "Gume", parent=root, attributes=TIRE_ATTRIBUTES)
    return make_template(tires)


@pytest.fixture
def battery_template(make_category, make_template):
    batteries = make_category(1500, "Akumulatori", attributes=BATTERY_ATTRIBUTES)
    return make_template(batteries)


@pytest.mark.unit
class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        (Decimal("21.9945"), 22),
        (Decimal("19.5"), 20),
        (Decimal("19.49"), 19),
        ("100", 100),
    ])
    def test_round_price(self, value, expected):
        assert round_price(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("77.0 Ah", "77"),
        ("205", "205"),
        ("12,5 V", "12"),
        ("bez broja", "bez broja"),
    ])
    def test_clean_numeric(self, value, expected):
        assert clean_numeric(value) == expected


@pytest.mark.unit
class TestBuild:

    def test_core_fields(self, builder, battery_template, make_product):
        product = make_product(
            title="Akumulator Varta Blue Dynamic 77Ah 780A desno plus, originalno pakovanje",
            price=Decimal("19.995"),
            margin=Decimal("10"),
            sku="VA-77",
            stock=4,
            description="Akumulator za putnička vozila.",
            olx_category_template=battery_template,
        )
        assert len(product.title) > 65
        assert product.final_price == Decimal("21.9945")

        payload = builder.build(product)

        assert payload["title"] == product.title[:65]
        assert len(payload["title"]) == 65
        assert payload["price"] == 22
        assert payload["category_id"] == 1500
        assert payload["listing_type"] == "sell"
        assert payload["state"] == "used"
        assert payload["available"] is True
        assert payload["sku_number"] == "VA-77"
        assert len(payload["short_description"]) <= 100
        assert payload["description"].startswith("Akumulator za putnička vozila.")
        assert payload["description"].endswith("\n\nSKU: VA-77\n\nStock: 4")
        assert payload["attributes"] == []

    def test_template_location_sends_city(self, builder, battery_template, make_product, db_session):
        battery_template.olx_location = OlxLocation(external_id=77, name="Sarajevo", extra={})
        db_session.flush()
        payload = builder.build(make_product(olx_category_template=battery_template))
        assert payload["city_id"] == 77
        assert "location" not in payload

    def test_default_coordinates(self, builder, battery_template, make_product):
        payload = builder.build(make_product(olx_category_template=battery_template))
        assert payload["location"] == {"lat": settings.olx_default_latitude, "lon": settings.olx_default_longitude}

    def test_synced_coordinates(self, builder, battery_template, make_product, shop, db_session):
        product = make_product(olx_category_template=battery_template)
        db_session.add(OlxListing(product=product, shop=shop, extra={"location": {"lat": 44.54, "lon": 18.67}}))
        db_session.flush()
        assert builder.build(product)["location"] == {"lat": 44.54, "lon": 18.67}

    def test_missing_title(self, builder, battery_template, make_product):
        with pytest.raises(ArgumentError):
            builder.validate(make_product(title="  ", olx_category_template=battery_template))

    def test_missing_template(self, builder, make_product):
        with pytest.raises(ArgumentError) as excinfo:
            builder.build(make_product())
        assert "template" in excinfo.value.message

    def test_template_without_category(self, builder, make_product):
        with pytest.raises(ArgumentError):
            builder.validate(make_product(), OlxCategoryTemplate(name="Prazan"))


@pytest.mark.unit
class TestAttributes:

    def test_tire_extraction_and_mapping_override(self, builder, tire_template, make_product):
        tire_template.attribute_mappings = {"Sezona": "fixed:Ljetne"}
        product = make_product(
            title="Michelin Alpin 6 205/55 R16 91H",
            description="Sezona: zima",
            olx_category_template=tire_template,
        )

        attributes = {a["id"]: a["value"] for a in builder.build(product)["attributes"]}

        assert attributes == {2918: "205", 2919: "55", 1849: "16", 1848: "Ljetne"}

    def test_tire_extractor_alone(self, make_product):
        product = make_product(title="Continental 225/45R17", description="All season guma")
        assert TireExtractor().extract(product) == {
            2918: "225",
            2919: "45",
            1849: "17",
            1848: "All season (Cjelogodišnje)",
        }
        assert extract_attributes(product, 1500) == {}
        assert extractors_for(None) == []

    def test_numeric_cleaning_and_option_matching(self, builder, battery_template, make_product):
        battery_template.attribute_mappings = {
            "Kapacitet": "{Kapacitet}",
            "3003": "fixed:novo",
            "boja": "product.brand",
        }
        product = make_product(
            brand="Crni",
            specs='{"Kapacitet": "77.0 Ah"}',
            olx_category_template=battery_template,
        )

        attributes = {a["id"]: a["value"] for a in builder.build(product)["attributes"]}

        assert attributes[3001] == "77"
        assert attributes[3003] == "Novo"
        assert attributes[3002] == "Crna"

    def test_unmatched_option_dropped(self, builder, battery_template, make_product):
        battery_template.attribute_mappings = {"Boja": "fixed:Purple", "Nepostojeći": "fixed:x"}
        payload = builder.build(make_product(olx_category_template=battery_template))
        assert payload["attributes"] == []

    def test_marketplace_origin_passes_attributes_through(self, builder, battery_template, make_product, shop, db_session):
        battery_template.attribute_mappings = {"Boja": "fixed:Bijela"}
        product = make_product(source=ProductSource.OLX.value, source_id="555", olx_category_template=battery_template)
        remote = [{"id": 3002, "value": "Neka boja"}, {"id": 9999, "value": "x"}]
        db_session.add(OlxListing(product=product, shop=shop, external_listing_id="555", extra={"attributes": remote}))
        db_session.flush()

        assert builder.build(product)["attributes"] == remote
