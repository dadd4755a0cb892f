"""
Unit tests for attribute mapping rules and option matching.
"""

from decimal import Decimal

import pytest

from olxsync.models import OlxCategoryTemplate, Product
from olxsync.services.listing.mapping_rules import (
    Extract,
    Fallback,
    Fixed,
    Placeholder,
    ProductField,
    RuleContext,
    RuleSyntaxError,
    TemplateField,
    evaluate,
    parse_rule,
    resolve,
)
from olxsync.services.listing.option_matching import match_option, normalize, stem_match


@pytest.mark.unit
class TestParseRule:

    @pytest.mark.parametrize("text,expected", [
        ("fixed:Novo", Fixed("Novo")),
        ("product.brand", ProductField("brand")),
        ("template.default_state", TemplateField("default_state")),
        ("extract:Sezona", Extract("Sezona")),
        ("{Širina}", Placeholder("Širina")),
        ("{ marka }", Placeholder("marka")),
    ])
    def test_single_rules(self, text, expected):
        assert parse_rule(text) == expected

    def test_fallback_chain(self):
        rule = parse_rule("{marka} | product.brand | fixed:Ostalo")
        assert rule == Fallback((Placeholder("marka"), ProductField("brand"), Fixed("Ostalo")))

    @pytest.mark.parametrize("text", ["", "   ", "brand", "fixed:A || fixed:B", "fixed:A |"])
    def test_invalid_rules(self, text):
        with pytest.raises(RuleSyntaxError):
            parse_rule(text)


@pytest.mark.unit
class TestEvaluate:

    def _context(self, **kwargs):
        product = Product(
            title="Zimska guma Michelin 205/55 R16",
            brand=kwargs.pop("brand", "Michelin"),
            sku="MI-2055516",
            price=Decimal("100.0000"),
            final_price=Decimal("110.0000"),
            description=kwargs.pop("description", "Sezona: Zimska\nStanje: Novo"),
        )
        template = OlxCategoryTemplate(name="Gume", default_state="new", default_listing_type="sell")
        specs = kwargs.pop("specs", {"Širina": "205", "Promjer": "16"})
        return RuleContext(product=product, template=template, specs=specs)

    def test_fixed(self):
        assert evaluate(parse_rule("fixed:Novo"), self._context()) == "Novo"

    def test_product_field(self):
        assert evaluate(parse_rule("product.brand"), self._context()) == "Michelin"

    def test_decimal_field_is_plain(self):
        assert evaluate(parse_rule("product.final_price"), self._context()) == "110"

    def test_template_field(self):
        assert evaluate(parse_rule("template.default_state"), self._context()) == "new"

    def test_unknown_field_is_none(self):
        assert evaluate(parse_rule("product.does_not_exist"), self._context()) is None

    def test_extract_from_description(self):
        assert evaluate(parse_rule("extract:Sezona"), self._context()) == "Zimska"

    def test_extract_falls_back_to_specs(self):
        context = self._context(description="", specs={"Indeks nosivosti": "91"})
        assert evaluate(parse_rule("extract:nosivosti"), context) == "91"

    def test_placeholder_ignores_diacritics(self):
        context = self._context(specs={"Sirina": "205"})
        assert evaluate(parse_rule("{Širina}"), context) == "205"

    def test_placeholder_product_alias(self):
        assert evaluate(parse_rule("{marka}"), self._context(specs={})) == "Michelin"

    def test_fallback_first_non_empty(self):
        context = self._context(brand=None, specs={})
        assert evaluate(parse_rule("{marka} | fixed:Ostalo"), context) == "Ostalo"

    def test_resolve_swallows_syntax_errors(self):
        assert resolve("not a rule", self._context()) is None

    def test_context_for_product_parses_specs(self):
        product = Product(title="x", specs='[{"name": "Boja", "value": "Crna"}]')
        assert RuleContext.for_product(product).specs == {"Boja": "Crna"}


@pytest.mark.unit
class TestOptionMatching:

    def test_exact(self):
        assert match_option("Ljetne", ["Zimske", "Ljetne"]) == "Ljetne"

    def test_case_insensitive(self):
        assert match_option("zimske", ["Zimske", "Ljetne"]) == "Zimske"

    def test_diacritics(self):
        assert match_option("Crna Gora", ["Črna Gora"]) == "Črna Gora"
        assert normalize("Đakovo") == "djakovo"

    def test_stem_gender_endings(self):
        assert match_option("Desno", ["Lijevi", "Desni"]) == "Desni"
        assert match_option("Plava", ["Crveno", "Plavo", "Zeleno"]) == "Plavo"

    def test_stem_ignores_ending_length(self):
        assert match_option("Automatik", ["Manuelni", "Automatski"]) == "Automatski"
        assert stem_match("Sarajevo", "Sarajevski kanton")

    def test_short_stems_do_not_match(self):
        assert not stem_match("Da", "Do")

    def test_substring(self):
        assert match_option("All season", ["Zimske", "All season (Cjelogodišnje)"]) == "All season (Cjelogodišnje)"

    def test_no_match(self):
        assert match_option("Purple", ["Plava", "Crvena", "Zelena"]) is None

    def test_empty_inputs(self):
        assert match_option(None, ["A"]) is None
        assert match_option("A", []) is None
