"""
Attribute mapping rules.

A template maps an OLX attribute (by name or external id) to a rule string:

    fixed:Novo                literal value
    product.brand             product field
    template.default_state    template field
    extract:Sezona            keyword lookup in description, then specs
    {Širina}                  value from product specs (or a product alias)
    {marka} | fixed:Ostalo    fallback chain, first non-empty wins

``parse_rule`` turns the string into a small tree of rule objects and
``evaluate`` interprets it against a ``RuleContext``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

from olxsync.services.listing.option_matching import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fixed:
    value: str


@dataclass(frozen=True)
class ProductField:
    name: str


@dataclass(frozen=True)
class TemplateField:
    name: str


@dataclass(frozen=True)
class Extract:
    keyword: str


@dataclass(frozen=True)
class Placeholder:
    name: str


@dataclass(frozen=True)
class Fallback:
    rules: tuple["Rule", ...]


Rule = Union[Fixed, ProductField, TemplateField, Extract, Placeholder, Fallback]


class RuleSyntaxError(ValueError):
    pass


_PLACEHOLDER = re.compile(r"^\{\s*([^{}]+?)\s*\}$")

# normalized placeholder name -> product attribute
PRODUCT_ALIASES = {
    "brand": "brand",
    "brend": "brand",
    "marka": "brand",
    "proizvodjac": "brand",
    "sku": "sku",
    "sifra": "sku",
    "title": "title",
    "naziv": "title",
    "price": "final_price",
    "cijena": "final_price",
    "stock": "stock",
    "kolicina": "stock",
    "category": "category",
    "kategorija": "category",
}


def parse_rule(text: str) -> Rule:
    if text is None or not str(text).strip():
        raise RuleSyntaxError("Empty mapping rule")
    text = str(text).strip()

    if "|" in text:
        parts = [part.strip() for part in text.split("|")]
        if any(not part for part in parts):
            raise RuleSyntaxError(f"Empty alternative in fallback rule: {text!r}")
        return Fallback(tuple(parse_rule(part) for part in parts))

    if text.startswith("fixed:"):
        return Fixed(text[len("fixed:"):].strip())
    if text.startswith("product."):
        return ProductField(text[len("product."):].strip())
    if text.startswith("template."):
        return TemplateField(text[len("template."):].strip())
    if text.startswith("extract:"):
        return Extract(text[len("extract:"):].strip())
    match = _PLACEHOLDER.match(text)
    if match:
        return Placeholder(match.group(1))
    raise RuleSyntaxError(f"Unrecognized mapping rule: {text!r}")


@dataclass
class RuleContext:
    product: Any
    template: Any = None
    specs: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_product(cls, product, template=None) -> "RuleContext":
        return cls(product=product, template=template, specs=product.spec_map())


def _stringify(value: Any) -> str | None:
    if value is None or callable(value):
        return None
    if isinstance(value, bool):
        return "Da" if value else "Ne"
    if isinstance(value, Decimal):
        value = value.normalize()
        return format(value, "f")
    text = str(value).strip()
    return text or None


def _read_field(obj: Any, name: str) -> str | None:
    if obj is None or not name or name.startswith("_"):
        return None
    return _stringify(getattr(obj, name, None))


def extract_keyword(context: RuleContext, keyword: str) -> str | None:
    description = getattr(context.product, "description", None) or ""
    if description and keyword:
        match = re.search(rf"{re.escape(keyword)}\s*:?\s*([^\n,;]+)", description, re.IGNORECASE)
        if match and match.group(1).strip():
            return match.group(1).strip()

    lowered = keyword.lower()
    for key, value in context.specs.items():
        if key.lower() == lowered:
            return _stringify(value)
    for key, value in context.specs.items():
        if lowered in key.lower():
            return _stringify(value)
    return None


def lookup_placeholder(context: RuleContext, name: str) -> str | None:
    wanted = normalize(name).replace(" ", "_")
    for key, value in context.specs.items():
        if normalize(key).replace(" ", "_") == wanted:
            result = _stringify(value)
            if result:
                return result
    alias = PRODUCT_ALIASES.get(wanted)
    if alias:
        return _read_field(context.product, alias)
    return None


def evaluate(rule: Rule, context: RuleContext) -> str | None:
    try:
        if isinstance(rule, Fixed):
            return rule.value or None
        if isinstance(rule, ProductField):
            return _read_field(context.product, rule.name)
        if isinstance(rule, TemplateField):
            return _read_field(context.template, rule.name)
        if isinstance(rule, Extract):
            return extract_keyword(context, rule.keyword)
        if isinstance(rule, Placeholder):
            return lookup_placeholder(context, rule.name)
        if isinstance(rule, Fallback):
            for alternative in rule.rules:
                value = evaluate(alternative, context)
                if value:
                    return value
            return None
    except Exception as e:
        logger.warning(f"Failed to evaluate mapping rule {rule!r}: {e}")
        return None
    raise TypeError(f"Unknown rule type: {type(rule).__name__}")


def resolve(text: str, context: RuleContext) -> str | None:
    """Parse and evaluate. Unparseable rules resolve to None with a warning."""
    try:
        rule = parse_rule(text)
    except RuleSyntaxError as e:
        logger.warning(str(e))
        return None
    return evaluate(rule, context)
